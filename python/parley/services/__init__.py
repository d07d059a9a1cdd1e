"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations.
"""

from parley.services.bootstrap import ensure_user
from parley.services.conversations import get_conversation_for_participant, resolve_or_create
from parley.services.messages import send_message, update_message

__all__ = [
    "ensure_user",
    "get_conversation_for_participant",
    "resolve_or_create",
    "send_message",
    "update_message",
]
