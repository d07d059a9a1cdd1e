"""Message Pydantic schemas.

Contains request and response models for the message endpoints.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator

from parley.schemas.conversation import ConversationOut

# Valid message statuses - must match DB constraint
MESSAGE_STATUSES = Literal["sent", "delivered", "read"]

# Valid PATCH actions
MESSAGE_ACTIONS = Literal["edit", "delete", "react"]

MAX_MESSAGE_CONTENT_LENGTH = 10000
MAX_REACTION_LENGTH = 32

DELETED_MESSAGE_PLACEHOLDER = "This message was deleted"


# =============================================================================
# Response Schemas
# =============================================================================


class MessageOut(BaseModel):
    """Response schema for a message.

    Messages are ordered by seq within a conversation. reactions maps a
    reaction symbol to the sorted ids of the users who applied it; symbols
    with no users never appear.
    """

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    seq: int
    content: str
    status: MESSAGE_STATUSES
    is_edited: bool
    edited_at: datetime | None = None
    is_deleted: bool
    deleted_at: datetime | None = None
    read_at: datetime | None = None
    reactions: dict[str, list[UUID]] = {}
    created_at: datetime
    updated_at: datetime


class SendMessageResult(BaseModel):
    """Response schema for send: the (possibly new) conversation and the message."""

    conversation: ConversationOut
    message: MessageOut


class UnreadCountOut(BaseModel):
    unread_count: int


# =============================================================================
# Request Schemas
# =============================================================================


class SendMessageRequest(BaseModel):
    """Request schema for sending a message.

    Exactly one of recipient_id or conversation_id must be given. Content
    rules (trimmed, non-empty, bounded length) are enforced by the service
    so they surface as typed errors.
    """

    recipient_id: UUID | None = None
    conversation_id: UUID | None = None
    content: str

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def exactly_one_target(self) -> "SendMessageRequest":
        if (self.recipient_id is None) == (self.conversation_id is None):
            raise ValueError("Exactly one of recipient_id or conversation_id is required")
        return self


class UpdateMessageRequest(BaseModel):
    """Request schema for PATCH /messages/{id}.

    - edit: content required
    - delete: no extra fields
    - react: reaction required (toggled for the viewer)
    """

    action: str
    content: str | None = None
    reaction: str | None = None

    model_config = ConfigDict(extra="forbid")
