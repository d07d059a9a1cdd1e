"""Message API routes.

Routes are transport-only: each calls exactly one service function.

- POST /messages: send to a recipient or into a conversation
- PATCH /messages/{id}: edit / delete / react
- GET /messages/unread-count: the viewer's total unread count
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from parley.api.deps import get_db, get_gate, get_hub, get_notifier
from parley.auth.middleware import Viewer, get_viewer
from parley.realtime.hub import FanoutHub
from parley.responses import success_response
from parley.schemas.message import SendMessageRequest, UnreadCountOut, UpdateMessageRequest
from parley.services import messages as messages_service
from parley.services import unread as unread_service
from parley.services.gate import ConnectionGate
from parley.services.notifications import NotificationSink

router = APIRouter(tags=["messages"])


@router.post("/messages", status_code=201)
def send_message(
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    gate: Annotated[ConnectionGate, Depends(get_gate)],
    hub: Annotated[FanoutHub | None, Depends(get_hub)],
    notifier: Annotated[NotificationSink | None, Depends(get_notifier)],
) -> dict:
    """Send a message; the conversation is created on first contact.

    Returns 201 with {"conversation": ..., "message": ...}.

    Errors:
        E_CONTENT_EMPTY / E_CONTENT_TOO_LONG / E_SELF_MESSAGE (400)
        E_CONNECTION_REQUIRED / E_NOT_PARTICIPANT (403)
        E_CONVERSATION_NOT_FOUND (404)
        E_GATE_UNAVAILABLE / E_STORAGE_UNAVAILABLE (503)
    """
    result = messages_service.send_message(
        db=db,
        viewer_id=viewer.user_id,
        content=body.content,
        recipient_id=body.recipient_id,
        conversation_id=body.conversation_id,
        gate=gate,
        hub=hub,
        notifier=notifier,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/messages/unread-count")
def get_unread_count(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Total unread messages for the viewer across all conversations."""
    count = unread_service.unread_count(db, viewer.user_id)
    return success_response(UnreadCountOut(unread_count=count).model_dump(mode="json"))


@router.patch("/messages/{message_id}")
def update_message(
    message_id: UUID,
    body: UpdateMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    hub: Annotated[FanoutHub | None, Depends(get_hub)],
) -> dict:
    """Edit, delete or react to a message.

    Errors:
        E_INVALID_ACTION / E_CONTENT_EMPTY / E_INVALID_REACTION (400)
        E_NOT_MESSAGE_SENDER / E_NOT_PARTICIPANT (403)
        E_MESSAGE_NOT_FOUND (404)
        E_MESSAGE_DELETED (409)
    """
    result = messages_service.update_message(
        db=db,
        viewer_id=viewer.user_id,
        message_id=message_id,
        action=body.action,
        content=body.content,
        reaction=body.reaction,
        hub=hub,
    )
    return success_response(result.model_dump(mode="json"))
