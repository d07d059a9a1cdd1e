"""Conversation Pydantic schemas.

Response models for the conversation directory and inbox endpoints.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class ConversationOut(BaseModel):
    """Response schema for a conversation.

    Participants are returned in canonical order. unread_count is the
    viewer's unread count for this conversation only.
    """

    id: UUID
    participant_ids: list[UUID]
    other_participant_id: UUID
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LastMessagePreview(BaseModel):
    """Most recent message of a conversation as shown in the inbox."""

    id: UUID
    sender_id: UUID
    content: str
    is_deleted: bool
    created_at: datetime


class ConversationSummaryOut(BaseModel):
    """One inbox row."""

    id: UUID
    other_participant_id: UUID
    other_participant_name: str | None = None
    last_message: LastMessagePreview | None = None
    unread_count: int
    last_message_at: datetime
    created_at: datetime


class PageInfo(BaseModel):
    """Pagination information for list responses."""

    next_cursor: str | None = None
