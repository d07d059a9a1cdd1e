"""Message status state machine.

    sent -> delivered -> read

Transitions only move forward; read is terminal. A transition to the
current state is a no-op rather than an error, so replays are harmless.
"""

from datetime import datetime

from parley.db.models import Message, MessageStatus

_ORDER: dict[MessageStatus, int] = {
    MessageStatus.sent: 0,
    MessageStatus.delivered: 1,
    MessageStatus.read: 2,
}


def can_transition(current: MessageStatus | str, target: MessageStatus | str) -> bool:
    """True when target is at or ahead of current in the status order."""
    return _ORDER[MessageStatus(target)] >= _ORDER[MessageStatus(current)]


def statuses_before(target: MessageStatus) -> list[str]:
    """Statuses from which a conditional UPDATE may advance to target."""
    return [s.value for s, rank in _ORDER.items() if rank < _ORDER[target]]


def advance_status(message: Message, target: MessageStatus, at: datetime) -> bool:
    """Move a loaded message forward to target.

    Returns:
        True if the status changed, False if the message was already at or
        past target.
    """
    current = MessageStatus(message.status)
    if current == target or not can_transition(current, target):
        return False

    message.status = target.value
    if target == MessageStatus.read and message.read_at is None:
        message.read_at = at
    return True
