"""Tests for the message status state machine (sent -> delivered -> read)."""

from datetime import UTC, datetime

import pytest

from parley.db.models import Message, MessageStatus
from parley.services.message_state import advance_status, can_transition, statuses_before

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


def _message(status: MessageStatus) -> Message:
    return Message(status=status.value, read_at=NOW if status == MessageStatus.read else None)


class TestCanTransition:
    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (MessageStatus.sent, MessageStatus.delivered),
            (MessageStatus.sent, MessageStatus.read),
            (MessageStatus.delivered, MessageStatus.read),
            (MessageStatus.read, MessageStatus.read),
        ],
    )
    def test_forward_transitions_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (MessageStatus.read, MessageStatus.delivered),
            (MessageStatus.read, MessageStatus.sent),
            (MessageStatus.delivered, MessageStatus.sent),
        ],
    )
    def test_backward_transitions_rejected(self, current, target):
        assert not can_transition(current, target)

    def test_accepts_plain_strings(self):
        assert can_transition("delivered", "read")
        assert not can_transition("read", "sent")


class TestAdvanceStatus:
    def test_delivered_to_read_sets_read_at(self):
        message = _message(MessageStatus.delivered)

        assert advance_status(message, MessageStatus.read, NOW) is True
        assert message.status == "read"
        assert message.read_at == NOW

    def test_read_never_regresses(self):
        message = _message(MessageStatus.read)

        assert advance_status(message, MessageStatus.delivered, NOW) is False
        assert message.status == "read"

    def test_same_status_is_noop(self):
        message = _message(MessageStatus.delivered)

        assert advance_status(message, MessageStatus.delivered, NOW) is False

    def test_observed_sequence_is_prefix_of_lifecycle(self):
        """Whatever order transitions are attempted in, history only moves forward."""
        message = _message(MessageStatus.sent)
        observed = [message.status]
        for target in (
            MessageStatus.delivered,
            MessageStatus.sent,
            MessageStatus.read,
            MessageStatus.delivered,
        ):
            if advance_status(message, target, NOW):
                observed.append(message.status)

        assert observed == ["sent", "delivered", "read"]


def test_statuses_before_read():
    assert statuses_before(MessageStatus.read) == ["sent", "delivered"]
    assert statuses_before(MessageStatus.sent) == []
