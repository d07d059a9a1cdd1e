"""Pydantic schemas for request/response validation."""

from parley.schemas.conversation import (
    ConversationOut,
    ConversationSummaryOut,
    LastMessagePreview,
    PageInfo,
)
from parley.schemas.message import (
    MessageOut,
    SendMessageRequest,
    SendMessageResult,
    UnreadCountOut,
    UpdateMessageRequest,
)

__all__ = [
    "ConversationOut",
    "ConversationSummaryOut",
    "LastMessagePreview",
    "PageInfo",
    "MessageOut",
    "SendMessageRequest",
    "SendMessageResult",
    "UnreadCountOut",
    "UpdateMessageRequest",
]
