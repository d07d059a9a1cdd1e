"""Realtime event payloads pushed to live clients."""

from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel

from parley.schemas.message import MessageOut

EventType = Literal["message_received", "message_updated", "messages_read", "user_typing"]


class RealtimeEvent(BaseModel):
    """One state change as seen by a subscriber.

    seq is the conversation version the change committed at; events with a
    seq are delivered in seq order per conversation. Ephemeral events
    (typing) have no seq and skip ordering.
    """

    type: EventType
    conversation_id: UUID
    seq: int | None = None
    message: MessageOut | None = None
    data: dict[str, Any] = {}

    def to_frame(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
