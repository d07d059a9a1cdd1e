"""SQLAlchemy ORM models for Parley.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are portable (Uuid, UTCDateTime) so the same models back
PostgreSQL in production and SQLite in tests. Enums are Python enums
stored as text with CHECK constraints.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    PostgreSQL stores timestamptz natively; SQLite drops the offset, so
    naive values coming back are tagged as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# =============================================================================
# Enums
# =============================================================================


class MessageStatus(str, PyEnum):
    """Delivery progress of a message.

    States:
        sent: Pre-persistence value; never returned to a caller
        delivered: Durably stored and visible to the recipient
        read: The recipient has opened the conversation
    """

    sent = "sent"
    delivered = "delivered"
    read = "read"


class ConnectionStatus(str, PyEnum):
    """Relationship states owned by the connection-graph collaborator."""

    pending = "pending"
    accepted = "accepted"
    declined = "declined"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account model.

    The user ID matches the identity provider's user ID (sub claim).
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class UserConnection(Base):
    """Accepted/pending relationship between two users.

    Written by the connection-graph collaborator; this service only reads
    it (SqlConnectionGate).
    """

    __tablename__ = "user_connections"

    requester_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    receiver_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default=ConnectionStatus.pending.value)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_user_connections_status",
        ),
        Index("ix_user_connections_receiver", "receiver_id", "requester_id"),
    )


class Conversation(Base):
    """Conversation model - the single pairwise thread between two users.

    Participants are stored in canonical order (participant_lo_id sorts
    before participant_hi_id by their string form), so the unique
    constraint admits exactly one row per unordered pair.
    """

    __tablename__ = "conversations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    participant_lo_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    participant_hi_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "participant_lo_id", "participant_hi_id", name="uix_conversations_participants"
        ),
        CheckConstraint(
            "participant_lo_id <> participant_hi_id",
            name="ck_conversations_distinct_participants",
        ),
        CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
        CheckConstraint("version >= 0", name="ck_conversations_version_non_negative"),
        Index("ix_conversations_hi_participant", "participant_hi_id"),
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message", back_populates="conversation", cascade="all, delete-orphan"
    )

    @property
    def participant_ids(self) -> tuple[UUID, UUID]:
        return (self.participant_lo_id, self.participant_hi_id)

    def has_participant(self, user_id: UUID) -> bool:
        return user_id in self.participant_ids

    def other_participant(self, user_id: UUID) -> UUID:
        """Return the counterpart of user_id in this conversation."""
        if user_id == self.participant_lo_id:
            return self.participant_hi_id
        if user_id == self.participant_hi_id:
            return self.participant_lo_id
        raise ValueError(f"User {user_id} is not a participant of conversation {self.id}")


class Message(Base):
    """Message model - a single message in a conversation."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    conversation_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    sender_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=MessageStatus.sent.value)
    is_edited: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint(
            "status IN ('sent', 'delivered', 'read')",
            name="ck_messages_status",
        ),
        CheckConstraint(
            "status <> 'read' OR read_at IS NOT NULL",
            name="ck_messages_read_has_read_at",
        ),
        UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
        Index("ix_messages_unread", "conversation_id", "sender_id", "status"),
    )

    conversation: Mapped["Conversation"] = relationship("Conversation", back_populates="messages")
    reactions: Mapped[list["MessageReaction"]] = relationship(
        "MessageReaction",
        back_populates="message",
        cascade="all, delete-orphan",
        order_by="MessageReaction.created_at",
    )


class MessageReaction(Base):
    """One user's reaction symbol on one message.

    The composite primary key makes a (message, user, symbol) triple
    unique, so the reaction set can never hold duplicates.
    """

    __tablename__ = "message_reactions"

    message_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    symbol: Mapped[str] = mapped_column(Text, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "length(symbol) BETWEEN 1 AND 32",
            name="ck_message_reactions_symbol_length",
        ),
    )

    message: Mapped["Message"] = relationship("Message", back_populates="reactions")
