"""Realtime websocket endpoint.

    WS /realtime?token=<jwt>   (or Authorization: Bearer <jwt>)

On connect the client is subscribed to its personal channel. Client frames:

    {"type": "join_conversation", "conversation_id": "..."}
    {"type": "leave_conversation", "conversation_id": "..."}
    {"type": "typing", "conversation_id": "...", "is_typing": true}
    {"type": "ping"}

Server frames are RealtimeEvent payloads, acknowledgements ("joined",
"left", "pong") and error frames. A connection that fails authentication
gets an error frame and is closed with code 4401. A connection evicted
for falling behind is closed with code 1013.
"""

import asyncio
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from parley.auth.middleware import AUTHORIZATION_HEADER, parse_bearer_token
from parley.db.session import get_session_factory
from parley.errors import ApiError, ApiErrorCode
from parley.logging import clear_request_context, get_logger, set_connection_context
from parley.realtime.channels import ChannelKey
from parley.realtime.events import RealtimeEvent
from parley.realtime.hub import FanoutHub, Subscriber
from parley.responses import error_frame
from parley.services.conversations import get_conversation_for_participant

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])

CLOSE_UNAUTHENTICATED = 4401
CLOSE_TRY_AGAIN_LATER = 1013


def _check_participant(conversation_id: UUID, user_id: UUID) -> None:
    db = get_session_factory()()
    try:
        get_conversation_for_participant(db, user_id, conversation_id)
    finally:
        db.close()


def _conversation_id(frame: dict[str, Any]) -> UUID:
    try:
        return UUID(str(frame["conversation_id"]))
    except (KeyError, ValueError):
        raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "conversation_id is required") from None


async def _pump(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Forward hub frames to the socket until the hub closes the subscriber."""
    while True:
        frame = await subscriber.next_frame()
        if frame is None:
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            return
        await websocket.send_json(frame)


async def _handle_frame(
    hub: FanoutHub, subscriber: Subscriber, frame: dict[str, Any]
) -> dict[str, Any] | None:
    """Apply one client frame; return the direct reply, if any."""
    frame_type = frame.get("type")

    if frame_type == "ping":
        return {"type": "pong"}

    if frame_type == "join_conversation":
        conversation_id = _conversation_id(frame)
        await run_in_threadpool(_check_participant, conversation_id, subscriber.user_id)
        hub.join(subscriber, ChannelKey.conversation(conversation_id))
        return {"type": "joined", "conversation_id": str(conversation_id)}

    if frame_type == "leave_conversation":
        conversation_id = _conversation_id(frame)
        hub.leave(subscriber, ChannelKey.conversation(conversation_id))
        return {"type": "left", "conversation_id": str(conversation_id)}

    if frame_type == "typing":
        conversation_id = _conversation_id(frame)
        channel = ChannelKey.conversation(conversation_id)
        if channel not in subscriber.channels:
            raise ApiError(ApiErrorCode.E_NOT_PARTICIPANT, "Join the conversation first")
        event = RealtimeEvent(
            type="user_typing",
            conversation_id=conversation_id,
            data={"user_id": str(subscriber.user_id), "is_typing": bool(frame.get("is_typing"))},
        )
        hub.publish_ephemeral(event, [channel], exclude=subscriber)
        return None

    raise ApiError(ApiErrorCode.E_INVALID_REQUEST, f"Unknown frame type: {frame_type}")


@router.websocket("/realtime")
async def realtime(websocket: WebSocket) -> None:
    hub: FanoutHub = websocket.app.state.hub
    verifier = websocket.app.state.token_verifier

    await websocket.accept()

    token = websocket.query_params.get("token") or parse_bearer_token(
        websocket.headers.get(AUTHORIZATION_HEADER)
    )
    try:
        if not token:
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
        claims = await run_in_threadpool(verifier.verify, token)
    except ApiError as e:
        await websocket.send_json(error_frame(e.code, e.message))
        await websocket.close(code=CLOSE_UNAUTHENTICATED)
        return

    subscriber = hub.connect(UUID(claims["sub"]))
    set_connection_context(subscriber.id, str(subscriber.user_id))
    pump = asyncio.create_task(_pump(websocket, subscriber))

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except (ValueError, KeyError):
                await websocket.send_json(
                    error_frame(ApiErrorCode.E_INVALID_REQUEST, "Frames must be JSON objects")
                )
                continue
            if not isinstance(frame, dict):
                await websocket.send_json(
                    error_frame(ApiErrorCode.E_INVALID_REQUEST, "Frames must be JSON objects")
                )
                continue
            try:
                reply = await _handle_frame(hub, subscriber, frame)
            except ApiError as e:
                reply = error_frame(e.code, e.message)
            if reply is not None:
                await websocket.send_json(reply)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(subscriber)
        pump.cancel()
        clear_request_context()
