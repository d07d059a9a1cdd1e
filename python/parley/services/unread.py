"""Unread message counts.

A message is unread for a user when it sits in a conversation the user
participates in, was sent by the other participant, and has not been read
(read_at IS NULL or status != 'read'). Counts are always derived live from
message rows; nothing is cached.
"""

from uuid import UUID

from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.orm import Session

from parley.db.models import Conversation, Message, MessageStatus


def unread_predicate(user_id: UUID) -> ColumnElement[bool]:
    """SQL predicate selecting messages that are unread for user_id."""
    return (Message.sender_id != user_id) & or_(
        Message.read_at.is_(None), Message.status != MessageStatus.read.value
    )


def participant_predicate(user_id: UUID) -> ColumnElement[bool]:
    return or_(Conversation.participant_lo_id == user_id, Conversation.participant_hi_id == user_id)


def unread_count(db: Session, user_id: UUID) -> int:
    """Total unread messages for user_id across all their conversations."""
    result = db.scalar(
        select(func.count())
        .select_from(Message)
        .join(Conversation, Conversation.id == Message.conversation_id)
        .where(participant_predicate(user_id), unread_predicate(user_id))
    )
    return result or 0


def unread_counts_by_conversation(
    db: Session, user_id: UUID, conversation_ids: list[UUID]
) -> dict[UUID, int]:
    """Unread counts for user_id keyed by conversation.

    Conversations with nothing unread map to 0. Conversations the user does
    not participate in are omitted.
    """
    if not conversation_ids:
        return {}

    rows = db.execute(
        select(Conversation.id, func.count(Message.id))
        .select_from(Conversation)
        .outerjoin(
            Message,
            (Message.conversation_id == Conversation.id) & unread_predicate(user_id),
        )
        .where(Conversation.id.in_(conversation_ids), participant_predicate(user_id))
        .group_by(Conversation.id)
    ).all()

    return {row[0]: row[1] for row in rows}
