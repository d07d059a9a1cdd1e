"""Message store service layer.

Implements send, edit, delete, react and list for direct messages.

Write path for every mutation:
1. Validate input and permissions (no writes)
2. Single DB transaction: lock the conversation row, apply the change,
   bump the conversation version
3. After commit: publish the realtime event (best effort)
4. For sends only: dispatch the recipient notification (best effort)

A failure in step 2 rolls back completely, so a caller never observes a
half-written message. Failures in steps 3 and 4 are logged and swallowed.

Status only moves forward (sent -> delivered -> read). Soft delete
overwrites content with DELETED_MESSAGE_PLACEHOLDER at write time, so
every later read returns the placeholder.

Service functions correspond 1:1 with route handlers.
"""

import base64
import json
from collections.abc import Iterable
from typing import get_args
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from parley.db.models import (
    Conversation,
    Message,
    MessageReaction,
    MessageStatus,
    User,
    utcnow,
)
from parley.db.session import transaction
from parley.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    InvalidStateError,
    NotFoundError,
)
from parley.logging import get_logger
from parley.realtime.hub import FanoutHub
from parley.schemas.conversation import PageInfo
from parley.schemas.message import (
    DELETED_MESSAGE_PLACEHOLDER,
    MAX_MESSAGE_CONTENT_LENGTH,
    MAX_REACTION_LENGTH,
    MESSAGE_ACTIONS,
    MessageOut,
    SendMessageResult,
)
from parley.services.conversations import (
    DEFAULT_LIMIT,
    clamp_limit,
    conversation_to_out,
    get_conversation_for_participant,
    resolve_or_create,
)
from parley.services.fanout import (
    publish_message_received,
    publish_message_updated,
    publish_messages_read,
)
from parley.services.gate import ConnectionGate
from parley.services.message_state import advance_status, statuses_before
from parley.services.notifications import NotificationSink, notify_message_sent
from parley.services.seq import (
    assign_next_message_seq,
    bump_conversation_version,
    lock_conversation,
)
from parley.services.unread import unread_counts_by_conversation

logger = get_logger(__name__)


# =============================================================================
# Cursor Encoding/Decoding
# =============================================================================


def encode_message_cursor(seq: int, id: UUID) -> str:
    """Encode a cursor for message pagination.

    Cursor payload: {"seq": <int>, "id": "<uuid>"}
    Encoding: base64url without padding
    """
    payload = {"seq": seq, "id": str(id)}
    json_bytes = json.dumps(payload).encode("utf-8")
    return base64.urlsafe_b64encode(json_bytes).decode("ascii").rstrip("=")


def decode_message_cursor(cursor: str) -> tuple[int, UUID]:
    """Decode a cursor for message pagination.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed or unparseable.
    """
    try:
        padding = 4 - len(cursor) % 4
        if padding != 4:
            cursor += "=" * padding

        json_bytes = base64.urlsafe_b64decode(cursor)
        payload = json.loads(json_bytes.decode("utf-8"))

        seq = int(payload["seq"])
        id = UUID(payload["id"])
        return seq, id
    except Exception:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None


# =============================================================================
# Validation
# =============================================================================


def validate_content(content: str | None) -> str:
    """Trim content and enforce the non-empty and length rules.

    Raises:
        InvalidRequestError(E_CONTENT_EMPTY): Empty or whitespace-only content.
        InvalidRequestError(E_CONTENT_TOO_LONG): Content over the length limit.
    """
    text = (content or "").strip()
    if not text:
        raise InvalidRequestError(ApiErrorCode.E_CONTENT_EMPTY, "Message content is required")
    if len(text) > MAX_MESSAGE_CONTENT_LENGTH:
        raise InvalidRequestError(
            ApiErrorCode.E_CONTENT_TOO_LONG,
            f"Message content exceeds {MAX_MESSAGE_CONTENT_LENGTH} characters",
        )
    return text


def validate_reaction(reaction: str | None) -> str:
    """Trim a reaction symbol and check its length.

    Raises:
        InvalidRequestError(E_INVALID_REACTION): Missing, blank or too long.
    """
    symbol = (reaction or "").strip()
    if not symbol or len(symbol) > MAX_REACTION_LENGTH:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REACTION, "Invalid reaction")
    return symbol


# =============================================================================
# Helper Functions
# =============================================================================


def reaction_map(reactions: Iterable[MessageReaction]) -> dict[str, list[UUID]]:
    """Group reaction rows as {symbol: [user_id, ...]} with sorted user ids."""
    grouped: dict[str, list[UUID]] = {}
    for reaction in reactions:
        grouped.setdefault(reaction.symbol, []).append(reaction.user_id)
    return {symbol: sorted(users, key=str) for symbol, users in grouped.items()}


def message_to_out(
    message: Message, reactions: dict[str, list[UUID]] | None = None
) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    if reactions is None:
        reactions = reaction_map(message.reactions)
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender_id=message.sender_id,
        seq=message.seq,
        content=message.content,
        status=message.status,
        is_edited=message.is_edited,
        edited_at=message.edited_at,
        is_deleted=message.is_deleted,
        deleted_at=message.deleted_at,
        read_at=message.read_at,
        reactions=reactions,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def get_message_for_participant(
    db: Session, viewer_id: UUID, message_id: UUID
) -> tuple[Message, Conversation]:
    """Load a message and verify the viewer takes part in its conversation.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): If the message doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): If the viewer is not a participant.
    """
    message = db.get(Message, message_id)
    if message is None:
        raise NotFoundError(ApiErrorCode.E_MESSAGE_NOT_FOUND, "Message not found")
    conversation = db.get(Conversation, message.conversation_id)
    if conversation is None or not conversation.has_participant(viewer_id):
        raise ForbiddenError(
            ApiErrorCode.E_NOT_PARTICIPANT, "Not a participant of this conversation"
        )
    return message, conversation


def _require_sender(message: Message, viewer_id: UUID) -> None:
    if message.sender_id != viewer_id:
        raise ForbiddenError(
            ApiErrorCode.E_NOT_MESSAGE_SENDER, "Only the sender can change this message"
        )


# =============================================================================
# Service Functions
# =============================================================================


def send_message(
    db: Session,
    viewer_id: UUID,
    content: str,
    recipient_id: UUID | None = None,
    conversation_id: UUID | None = None,
    *,
    gate: ConnectionGate,
    hub: FanoutHub | None = None,
    notifier: NotificationSink | None = None,
) -> SendMessageResult:
    """Send a message to a user or into an existing conversation.

    Exactly one of recipient_id / conversation_id must be given. The
    conversation is created on first contact. The returned message is
    already delivered.

    Raises:
        InvalidRequestError(E_CONTENT_EMPTY | E_CONTENT_TOO_LONG): Bad content.
        InvalidRequestError(E_INVALID_REQUEST): Zero or two targets given.
        InvalidRequestError(E_SELF_MESSAGE): Recipient is the viewer.
        NotFoundError(E_CONVERSATION_NOT_FOUND): Unknown conversation_id.
        ForbiddenError(E_NOT_PARTICIPANT): Viewer not in the conversation.
        ForbiddenError(E_CONNECTION_REQUIRED): The connection gate denied it.
        UnavailableError: Gate or storage could not answer in time.
    """
    text = validate_content(content)

    if (recipient_id is None) == (conversation_id is None):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            "Exactly one of recipient_id or conversation_id is required",
        )
    if recipient_id is not None and recipient_id == viewer_id:
        raise InvalidRequestError(ApiErrorCode.E_SELF_MESSAGE, "Cannot message yourself")

    if conversation_id is not None:
        existing = get_conversation_for_participant(db, viewer_id, conversation_id)
        recipient_id = existing.other_participant(viewer_id)

    if not gate.can_message(db, viewer_id, recipient_id):
        logger.info("message_send_denied", recipient_id=str(recipient_id))
        raise ForbiddenError(
            ApiErrorCode.E_CONNECTION_REQUIRED, "You can only message your connections"
        )

    with transaction(db):
        conversation = resolve_or_create(db, viewer_id, recipient_id)
        seq = assign_next_message_seq(db, conversation.id)

        now = utcnow()
        message = Message(
            conversation_id=conversation.id,
            sender_id=viewer_id,
            seq=seq,
            content=text,
            status=MessageStatus.sent.value,
            created_at=now,
            updated_at=now,
        )
        db.add(message)
        db.flush()

        # Durably stored: the sender only ever sees the delivered message
        advance_status(message, MessageStatus.delivered, now)
        db.flush()

        version = bump_conversation_version(db, conversation.id, last_message_at=now)

        sender = db.get(User, viewer_id)
        sender_name = sender.display_name if sender is not None else None

    logger.info(
        "message_sent",
        conversation_id=str(conversation.id),
        message_id=str(message.id),
        seq=seq,
    )

    message_out = message_to_out(message, reactions={})
    unread = unread_counts_by_conversation(db, viewer_id, [conversation.id])
    result = SendMessageResult(
        conversation=conversation_to_out(conversation, viewer_id, unread.get(conversation.id, 0)),
        message=message_out,
    )

    publish_message_received(hub, conversation, message_out, version)
    notify_message_sent(
        notifier,
        recipient_id=recipient_id,
        sender_id=viewer_id,
        sender_name=sender_name,
        conversation_id=conversation.id,
        message_id=message.id,
        content=text,
    )

    return result


def edit_message(
    db: Session,
    viewer_id: UUID,
    message_id: UUID,
    content: str | None,
    *,
    hub: FanoutHub | None = None,
) -> MessageOut:
    """Replace the content of the viewer's own message.

    Sets is_edited/edited_at; status and reactions are unchanged.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): Unknown message.
        ForbiddenError(E_NOT_PARTICIPANT | E_NOT_MESSAGE_SENDER): Not allowed.
        InvalidStateError(E_MESSAGE_DELETED): The message was deleted.
        InvalidRequestError(E_CONTENT_EMPTY | E_CONTENT_TOO_LONG): Bad content.
    """
    message, conversation = get_message_for_participant(db, viewer_id, message_id)
    _require_sender(message, viewer_id)

    with transaction(db):
        lock_conversation(db, conversation.id)
        db.refresh(message)

        if message.is_deleted:
            raise InvalidStateError(
                ApiErrorCode.E_MESSAGE_DELETED, "Deleted messages cannot be edited"
            )
        text = validate_content(content)

        now = utcnow()
        message.content = text
        message.is_edited = True
        message.edited_at = now
        message.updated_at = now
        db.flush()

        version = bump_conversation_version(db, conversation.id)

    logger.info("message_edited", message_id=str(message.id), version=version)

    message_out = message_to_out(message)
    publish_message_updated(hub, conversation, message_out, version, action="edit")
    return message_out


def delete_message(
    db: Session,
    viewer_id: UUID,
    message_id: UUID,
    *,
    hub: FanoutHub | None = None,
) -> MessageOut:
    """Soft-delete the viewer's own message.

    Content is overwritten with the placeholder. Deleting an already
    deleted message succeeds without changes and without an event.

    Raises:
        NotFoundError(E_MESSAGE_NOT_FOUND): Unknown message.
        ForbiddenError(E_NOT_PARTICIPANT | E_NOT_MESSAGE_SENDER): Not allowed.
    """
    message, conversation = get_message_for_participant(db, viewer_id, message_id)
    _require_sender(message, viewer_id)

    version = None
    with transaction(db):
        lock_conversation(db, conversation.id)
        db.refresh(message)

        if not message.is_deleted:
            now = utcnow()
            message.content = DELETED_MESSAGE_PLACEHOLDER
            message.is_deleted = True
            message.deleted_at = now
            message.updated_at = now
            db.flush()

            version = bump_conversation_version(db, conversation.id)

    message_out = message_to_out(message)
    if version is None:
        logger.debug("message_delete_noop", message_id=str(message.id))
        return message_out

    logger.info("message_deleted", message_id=str(message.id), version=version)
    publish_message_updated(hub, conversation, message_out, version, action="delete")
    return message_out


def toggle_reaction(
    db: Session,
    viewer_id: UUID,
    message_id: UUID,
    reaction: str | None,
    *,
    hub: FanoutHub | None = None,
) -> MessageOut:
    """Toggle the viewer's reaction symbol on a message.

    Adds the (viewer, symbol) pair when absent and removes it when present,
    so repeated calls alternate. Any participant may react, including on
    deleted messages.

    Raises:
        InvalidRequestError(E_INVALID_REACTION): Bad symbol.
        NotFoundError(E_MESSAGE_NOT_FOUND): Unknown message.
        ForbiddenError(E_NOT_PARTICIPANT): Viewer not in the conversation.
    """
    symbol = validate_reaction(reaction)
    message, conversation = get_message_for_participant(db, viewer_id, message_id)

    with transaction(db):
        lock_conversation(db, conversation.id)
        db.refresh(message)

        existing = db.get(
            MessageReaction, (message.id, viewer_id, symbol), populate_existing=True
        )
        if existing is not None:
            db.delete(existing)
            db.flush()
            added = False
        else:
            try:
                with db.begin_nested():
                    db.add(MessageReaction(message_id=message.id, user_id=viewer_id, symbol=symbol))
            except IntegrityError:
                # Same reaction inserted concurrently; the set already holds it
                logger.info("reaction_insert_race", message_id=str(message.id))
            added = True

        message.updated_at = utcnow()
        db.flush()
        version = bump_conversation_version(db, conversation.id)

    db.expire(message, ["reactions"])
    logger.info(
        "message_reaction_toggled",
        message_id=str(message.id),
        added=added,
        version=version,
    )

    message_out = message_to_out(message)
    publish_message_updated(hub, conversation, message_out, version, action="react")
    return message_out


def update_message(
    db: Session,
    viewer_id: UUID,
    message_id: UUID,
    action: str,
    content: str | None = None,
    reaction: str | None = None,
    *,
    hub: FanoutHub | None = None,
) -> MessageOut:
    """Apply an edit, delete or react action to a message.

    Raises:
        InvalidRequestError(E_INVALID_ACTION): Unknown action.
        Plus whatever the selected action raises.
    """
    if action == "edit":
        return edit_message(db, viewer_id, message_id, content, hub=hub)
    if action == "delete":
        return delete_message(db, viewer_id, message_id, hub=hub)
    if action == "react":
        return toggle_reaction(db, viewer_id, message_id, reaction, hub=hub)
    raise InvalidRequestError(
        ApiErrorCode.E_INVALID_ACTION,
        f"Action must be one of: {', '.join(get_args(MESSAGE_ACTIONS))}",
    )


def mark_conversation_read(
    db: Session,
    viewer_id: UUID,
    conversation: Conversation,
    *,
    hub: FanoutHub | None = None,
) -> list[UUID]:
    """Mark every unread message from the other participant as read.

    Covers the whole conversation, uses a single timestamp for the batch,
    and publishes one messages_read event when anything changed.

    Returns:
        IDs of the messages that became read.
    """
    unread_query = select(Message.id).where(
        Message.conversation_id == conversation.id,
        Message.sender_id != viewer_id,
        Message.status.in_(statuses_before(MessageStatus.read)),
    )

    if not db.scalars(unread_query).first():
        return []

    with transaction(db):
        lock_conversation(db, conversation.id)
        message_ids = list(db.scalars(unread_query.order_by(Message.seq)).all())
        if not message_ids:
            return []

        read_at = utcnow()
        db.execute(
            update(Message)
            .where(
                Message.id.in_(message_ids),
                Message.status.in_(statuses_before(MessageStatus.read)),
            )
            .values(status=MessageStatus.read.value, read_at=read_at, updated_at=read_at)
            .execution_options(synchronize_session=False)
        )
        version = bump_conversation_version(db, conversation.id)

    logger.info(
        "messages_marked_read",
        conversation_id=str(conversation.id),
        count=len(message_ids),
        version=version,
    )

    publish_messages_read(hub, conversation, viewer_id, message_ids, read_at, version)
    return message_ids


def list_messages(
    db: Session,
    viewer_id: UUID,
    conversation_id: UUID,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
    *,
    hub: FanoutHub | None = None,
) -> tuple[list[MessageOut], PageInfo]:
    """List messages in a conversation, oldest first.

    Messages are ordered by (seq, id). Deleted messages stay in place with
    the placeholder content. Listing is the read receipt: before the page
    is read, every unread message from the other participant is marked read.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If conversation doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): If the viewer is not a participant.
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed.
    """
    conversation = get_conversation_for_participant(db, viewer_id, conversation_id)

    limit = clamp_limit(limit)
    cursor_position = decode_message_cursor(cursor) if cursor else None

    mark_conversation_read(db, viewer_id, conversation, hub=hub)

    query = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .options(selectinload(Message.reactions))
        .execution_options(populate_existing=True)
    )
    if cursor_position is not None:
        cursor_seq, cursor_id = cursor_position
        query = query.where(
            or_(
                Message.seq > cursor_seq,
                and_(Message.seq == cursor_seq, Message.id > cursor_id),
            )
        )
    query = query.order_by(Message.seq.asc(), Message.id.asc()).limit(limit + 1)

    rows = list(db.execute(query).scalars().all())

    # Fetch one extra to check for more
    has_more = len(rows) > limit
    if has_more:
        rows = rows[:limit]

    messages = [message_to_out(m) for m in rows]

    next_cursor = None
    if has_more and messages:
        last = messages[-1]
        next_cursor = encode_message_cursor(last.seq, last.id)

    return messages, PageInfo(next_cursor=next_cursor)
