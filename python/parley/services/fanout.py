"""Channel selection and best-effort publishing of message events.

Called by the message service after its transaction has committed. A
publish failure is logged and swallowed: the write is already durable and
real-time delivery is an enhancement on top of it.
"""

from datetime import datetime
from uuid import UUID

from parley.db.models import Conversation
from parley.logging import get_logger
from parley.realtime.channels import ChannelKey
from parley.realtime.events import RealtimeEvent
from parley.realtime.hub import FanoutHub
from parley.schemas.message import MessageOut

logger = get_logger(__name__)


def received_channels(conversation: Conversation, sender_id: UUID) -> list[ChannelKey]:
    """Conversation channel, the recipient's personal channel and the sender's.

    The sender's personal channel reaches their other devices even when
    those have not joined the conversation.
    """
    recipient_id = conversation.other_participant(sender_id)
    return [
        ChannelKey.conversation(conversation.id),
        ChannelKey.user(recipient_id),
        ChannelKey.user(sender_id),
    ]


def participant_channels(conversation: Conversation) -> list[ChannelKey]:
    """Conversation channel plus both participants' personal channels."""
    return [
        ChannelKey.conversation(conversation.id),
        ChannelKey.user(conversation.participant_lo_id),
        ChannelKey.user(conversation.participant_hi_id),
    ]


def _publish(hub: FanoutHub | None, event: RealtimeEvent, channels: list[ChannelKey]) -> None:
    if hub is None:
        return
    try:
        hub.publish(event, channels)
    except Exception as e:
        logger.warning(
            "fanout_publish_failed",
            event_type=event.type,
            conversation_id=str(event.conversation_id),
            error=str(e),
        )


def publish_message_received(
    hub: FanoutHub | None, conversation: Conversation, message: MessageOut, version: int
) -> None:
    event = RealtimeEvent(
        type="message_received",
        conversation_id=conversation.id,
        seq=version,
        message=message,
    )
    _publish(hub, event, received_channels(conversation, message.sender_id))


def publish_message_updated(
    hub: FanoutHub | None,
    conversation: Conversation,
    message: MessageOut,
    version: int,
    action: str,
) -> None:
    event = RealtimeEvent(
        type="message_updated",
        conversation_id=conversation.id,
        seq=version,
        message=message,
        data={"action": action},
    )
    _publish(hub, event, participant_channels(conversation))


def publish_messages_read(
    hub: FanoutHub | None,
    conversation: Conversation,
    reader_id: UUID,
    message_ids: list[UUID],
    read_at: datetime,
    version: int,
) -> None:
    event = RealtimeEvent(
        type="messages_read",
        conversation_id=conversation.id,
        seq=version,
        data={
            "reader_id": str(reader_id),
            "message_ids": [str(m) for m in message_ids],
            "read_at": read_at.isoformat(),
        },
    )
    _publish(hub, event, participant_channels(conversation))
