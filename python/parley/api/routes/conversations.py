"""Conversation API routes.

Routes are transport-only: each calls exactly one service function.
All routes require authentication.
Response envelope: {"data": ...} or {"data": [...], "page": {...}}
Error envelope: {"error": {"code": "...", "message": "...", "request_id": "..."}}
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from parley.api.deps import get_db, get_gate, get_hub
from parley.auth.middleware import Viewer, get_viewer
from parley.realtime.hub import FanoutHub
from parley.responses import page_response, success_response
from parley.services import conversations as conversations_service
from parley.services import messages as messages_service
from parley.services.gate import ConnectionGate

router = APIRouter(tags=["conversations"])


@router.get("/conversations")
def list_conversations(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    gate: Annotated[ConnectionGate, Depends(get_gate)],
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    """List the viewer's conversations, most recent activity first.

    Conversations with users the viewer is no longer connected to are hidden.

    Errors:
        E_INVALID_CURSOR (400): Cursor is malformed or unparseable.
        E_GATE_UNAVAILABLE (503): Connection service unreachable.
    """
    conversations, page = conversations_service.list_conversations(
        db=db,
        viewer_id=viewer.user_id,
        limit=limit,
        cursor=cursor,
        gate=gate,
    )
    return page_response([c.model_dump(mode="json") for c in conversations], page.next_cursor)


@router.get("/conversations/with/{user_id}")
def find_conversation_with(
    user_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Find the existing conversation between the viewer and user_id.

    Errors:
        E_SELF_MESSAGE (400): user_id is the viewer.
        E_CONVERSATION_NOT_FOUND (404): No conversation yet.
    """
    result = conversations_service.find_conversation_between(
        db=db,
        viewer_id=viewer.user_id,
        other_id=user_id,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/conversations/{conversation_id}")
def get_conversation(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Get a conversation with the viewer's unread count.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist.
        E_NOT_PARTICIPANT (403): Viewer is not a participant.
    """
    result = conversations_service.get_conversation(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    hub: Annotated[FanoutHub | None, Depends(get_hub)],
    limit: int = Query(default=50, ge=1, le=100, description="Maximum results (1-100)"),
    cursor: str | None = Query(default=None, description="Pagination cursor"),
) -> dict:
    """List messages oldest first; marks the other participant's messages read.

    Errors:
        E_CONVERSATION_NOT_FOUND (404): Conversation doesn't exist.
        E_NOT_PARTICIPANT (403): Viewer is not a participant.
        E_INVALID_CURSOR (400): Cursor is malformed or unparseable.
    """
    messages, page = messages_service.list_messages(
        db=db,
        viewer_id=viewer.user_id,
        conversation_id=conversation_id,
        limit=limit,
        cursor=cursor,
        hub=hub,
    )
    return page_response([m.model_dump(mode="json") for m in messages], page.next_cursor)
