"""Conversation directory service layer.

Resolves the single conversation between two users and serves the
conversation endpoints.

All operations:
- Store participants in canonical order (lower canonical string form first)
- Raise E_CONVERSATION_NOT_FOUND for unknown ids and E_NOT_PARTICIPANT for
  conversations the viewer is not part of
- Support cursor-based pagination

Service functions correspond 1:1 with route handlers.
Routes are transport-only and call exactly one service function.
"""

import base64
import json
from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from parley.db.models import Conversation, Message, User
from parley.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from parley.logging import get_logger
from parley.schemas.conversation import (
    ConversationOut,
    ConversationSummaryOut,
    LastMessagePreview,
    PageInfo,
)
from parley.services.bootstrap import ensure_user_row
from parley.services.gate import ConnectionGate
from parley.services.unread import participant_predicate, unread_counts_by_conversation

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

# Pagination limits
DEFAULT_LIMIT = 50
MIN_LIMIT = 1
MAX_LIMIT = 100


# =============================================================================
# Cursor Encoding/Decoding
# =============================================================================


def _b64_encode(payload: dict) -> str:
    json_bytes = json.dumps(payload).encode("utf-8")
    return base64.urlsafe_b64encode(json_bytes).decode("ascii").rstrip("=")


def _b64_decode(cursor: str) -> dict:
    padding = 4 - len(cursor) % 4
    if padding != 4:
        cursor += "=" * padding
    return json.loads(base64.urlsafe_b64decode(cursor).decode("utf-8"))


def encode_conversation_cursor(last_message_at: datetime, id: UUID) -> str:
    """Encode a cursor for inbox pagination.

    Cursor payload: {"last_message_at": "<iso>", "id": "<uuid>"}
    Encoding: base64url without padding
    """
    return _b64_encode({"last_message_at": last_message_at.isoformat(), "id": str(id)})


def decode_conversation_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Decode a cursor for inbox pagination.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed or unparseable.
    """
    try:
        payload = _b64_decode(cursor)
        last_message_at = datetime.fromisoformat(payload["last_message_at"])
        id = UUID(payload["id"])
        return last_message_at, id
    except Exception:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_CURSOR, "Invalid cursor") from None


# =============================================================================
# Helper Functions
# =============================================================================


def clamp_limit(limit: int) -> int:
    """Clamp limit to valid range [MIN_LIMIT, MAX_LIMIT]."""
    return min(max(limit, MIN_LIMIT), MAX_LIMIT)


def canonical_pair(user_a: UUID, user_b: UUID) -> tuple[UUID, UUID]:
    """Order two distinct user ids as (lo, hi).

    The order is lexicographic over the canonical string form, which is
    total and stable, so callers resolving a pair from either side agree.

    Raises:
        InvalidRequestError(E_SELF_MESSAGE): If both ids are the same user.
    """
    if user_a == user_b:
        raise InvalidRequestError(ApiErrorCode.E_SELF_MESSAGE, "Cannot message yourself")
    if str(user_a) < str(user_b):
        return user_a, user_b
    return user_b, user_a


def find_by_pair(db: Session, lo: UUID, hi: UUID) -> Conversation | None:
    return db.execute(
        select(Conversation).where(
            Conversation.participant_lo_id == lo,
            Conversation.participant_hi_id == hi,
        )
    ).scalar_one_or_none()


def get_conversation_for_participant(
    db: Session, viewer_id: UUID, conversation_id: UUID
) -> Conversation:
    """Load a conversation and verify the viewer takes part in it.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the conversation doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): If the viewer is not a participant.
    """
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    if not conversation.has_participant(viewer_id):
        raise ForbiddenError(
            ApiErrorCode.E_NOT_PARTICIPANT, "Not a participant of this conversation"
        )
    return conversation


def conversation_to_out(
    conversation: Conversation, viewer_id: UUID, unread_count: int = 0
) -> ConversationOut:
    """Convert Conversation ORM model to ConversationOut schema."""
    return ConversationOut(
        id=conversation.id,
        participant_ids=list(conversation.participant_ids),
        other_participant_id=conversation.other_participant(viewer_id),
        unread_count=unread_count,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        last_message_at=conversation.last_message_at,
    )


def resolve_or_create(db: Session, user_a: UUID, user_b: UUID) -> Conversation:
    """Return the single conversation between two users, creating it on first use.

    Runs inside the caller's transaction and does not commit. The insert
    is wrapped in a SAVEPOINT: when a concurrent caller creates the same
    pair first, the unique constraint rejects ours, the savepoint is rolled
    back and the winner's row is returned instead.

    Raises:
        InvalidRequestError(E_SELF_MESSAGE): If user_a == user_b.
    """
    lo, hi = canonical_pair(user_a, user_b)

    conversation = find_by_pair(db, lo, hi)
    if conversation is not None:
        return conversation

    ensure_user_row(db, lo)
    ensure_user_row(db, hi)

    try:
        with db.begin_nested():
            conversation = Conversation(participant_lo_id=lo, participant_hi_id=hi)
            db.add(conversation)
    except IntegrityError:
        # Lost race: another request created the conversation
        conversation = find_by_pair(db, lo, hi)
        if conversation is None:
            logger.error(
                "conversation_resolve_failed", participant_lo=str(lo), participant_hi=str(hi)
            )
            raise
        logger.info("conversation_create_race_lost", conversation_id=str(conversation.id))
        return conversation

    logger.info("conversation_created", conversation_id=str(conversation.id))
    return conversation


# =============================================================================
# Service Functions
# =============================================================================


def get_conversation(db: Session, viewer_id: UUID, conversation_id: UUID) -> ConversationOut:
    """Get a conversation by ID with the viewer's unread count.

    Raises:
        NotFoundError(E_CONVERSATION_NOT_FOUND): If conversation doesn't exist.
        ForbiddenError(E_NOT_PARTICIPANT): If the viewer is not a participant.
    """
    conversation = get_conversation_for_participant(db, viewer_id, conversation_id)
    counts = unread_counts_by_conversation(db, viewer_id, [conversation.id])
    return conversation_to_out(conversation, viewer_id, counts.get(conversation.id, 0))


def find_conversation_between(db: Session, viewer_id: UUID, other_id: UUID) -> ConversationOut:
    """Find the existing conversation between the viewer and another user.

    Does not create one.

    Raises:
        InvalidRequestError(E_SELF_MESSAGE): If other_id is the viewer.
        NotFoundError(E_CONVERSATION_NOT_FOUND): If the pair has no conversation yet.
    """
    lo, hi = canonical_pair(viewer_id, other_id)
    conversation = find_by_pair(db, lo, hi)
    if conversation is None:
        raise NotFoundError(ApiErrorCode.E_CONVERSATION_NOT_FOUND, "Conversation not found")
    counts = unread_counts_by_conversation(db, viewer_id, [conversation.id])
    return conversation_to_out(conversation, viewer_id, counts.get(conversation.id, 0))


def list_conversations(
    db: Session,
    viewer_id: UUID,
    limit: int = DEFAULT_LIMIT,
    cursor: str | None = None,
    gate: ConnectionGate | None = None,
) -> tuple[list[ConversationSummaryOut], PageInfo]:
    """List the viewer's inbox.

    Conversations are ordered by last_message_at DESC, id DESC. Each row
    carries the counterpart, a preview of the latest message and the
    viewer's unread count for that conversation.

    With a gate, conversations whose counterpart is no longer connected to
    the viewer are left out. They are kept, not deleted, and reappear if
    the users reconnect.

    Raises:
        InvalidRequestError(E_INVALID_CURSOR): If cursor is malformed.
        UnavailableError(E_GATE_UNAVAILABLE): If the gate cannot answer.
    """
    limit = clamp_limit(limit)
    after = decode_conversation_cursor(cursor) if cursor else None

    # Fetch one extra visible row to check for more
    conversations: list[Conversation] = []
    while len(conversations) <= limit:
        batch = _inbox_batch(db, viewer_id, after, limit + 1)
        if not batch:
            break
        after = (batch[-1].last_message_at, batch[-1].id)
        exhausted = len(batch) <= limit

        if gate is not None:
            connected = gate.connected_among(
                db, viewer_id, {c.other_participant(viewer_id) for c in batch}
            )
            batch = [c for c in batch if c.other_participant(viewer_id) in connected]
        conversations.extend(batch)

        if exhausted:
            break

    has_more = len(conversations) > limit
    if has_more:
        conversations = conversations[:limit]

    ids = [c.id for c in conversations]
    counts = unread_counts_by_conversation(db, viewer_id, ids)
    previews = _latest_messages(db, ids)
    names = _display_names(db, [c.other_participant(viewer_id) for c in conversations])

    items = []
    for conversation in conversations:
        other_id = conversation.other_participant(viewer_id)
        last = previews.get(conversation.id)
        items.append(
            ConversationSummaryOut(
                id=conversation.id,
                other_participant_id=other_id,
                other_participant_name=names.get(other_id),
                last_message=(
                    LastMessagePreview(
                        id=last.id,
                        sender_id=last.sender_id,
                        content=last.content,
                        is_deleted=last.is_deleted,
                        created_at=last.created_at,
                    )
                    if last is not None
                    else None
                ),
                unread_count=counts.get(conversation.id, 0),
                last_message_at=conversation.last_message_at,
                created_at=conversation.created_at,
            )
        )

    next_cursor = None
    if has_more and conversations:
        last_conversation = conversations[-1]
        next_cursor = encode_conversation_cursor(
            last_conversation.last_message_at, last_conversation.id
        )

    return items, PageInfo(next_cursor=next_cursor)


def _inbox_batch(
    db: Session,
    viewer_id: UUID,
    after: tuple[datetime, UUID] | None,
    size: int,
) -> list[Conversation]:
    query = select(Conversation).where(participant_predicate(viewer_id))
    if after is not None:
        after_at, after_id = after
        query = query.where(
            or_(
                Conversation.last_message_at < after_at,
                and_(Conversation.last_message_at == after_at, Conversation.id < after_id),
            )
        )
    query = query.order_by(Conversation.last_message_at.desc(), Conversation.id.desc()).limit(size)
    return list(db.execute(query).scalars().all())


def _latest_messages(db: Session, conversation_ids: list[UUID]) -> dict[UUID, Message]:
    if not conversation_ids:
        return {}
    latest = (
        select(Message.conversation_id, func.max(Message.seq).label("max_seq"))
        .where(Message.conversation_id.in_(conversation_ids))
        .group_by(Message.conversation_id)
        .subquery()
    )
    rows = db.execute(
        select(Message).join(
            latest,
            and_(
                Message.conversation_id == latest.c.conversation_id,
                Message.seq == latest.c.max_seq,
            ),
        )
    ).scalars()
    return {m.conversation_id: m for m in rows}


def _display_names(db: Session, user_ids: list[UUID]) -> dict[UUID, str | None]:
    if not user_ids:
        return {}
    rows = db.execute(select(User.id, User.display_name).where(User.id.in_(user_ids))).all()
    return {row[0]: row[1] for row in rows}
