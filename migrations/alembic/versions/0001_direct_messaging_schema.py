"""Direct messaging schema - users, user_connections, conversations, messages, message_reactions

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Creates the schema for pairwise direct messaging. Conversations keep their
participants in canonical order so one row exists per unordered pair;
messages carry a per-conversation sequence number allocated from
conversations.next_seq.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Enable pgcrypto extension for gen_random_uuid()
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    # ==========================================================================
    # users table
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # user_connections table (written by the connection-graph service)
    # ==========================================================================
    op.create_table(
        "user_connections",
        sa.Column("requester_id", sa.UUID(), nullable=False),
        sa.Column("receiver_id", sa.UUID(), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("requester_id", "receiver_id"),
        sa.ForeignKeyConstraint(["requester_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["receiver_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')",
            name="ck_user_connections_status",
        ),
    )
    op.create_index(
        "ix_user_connections_receiver",
        "user_connections",
        ["receiver_id", "requester_id"],
    )

    # ==========================================================================
    # conversations table
    # ==========================================================================
    op.create_table(
        "conversations",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("participant_lo_id", sa.UUID(), nullable=False),
        sa.Column("participant_hi_id", sa.UUID(), nullable=False),
        sa.Column("next_seq", sa.Integer(), server_default="1", nullable=False),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_message_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["participant_lo_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["participant_hi_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "participant_lo_id",
            "participant_hi_id",
            name="uix_conversations_participants",
        ),
        sa.CheckConstraint(
            "participant_lo_id <> participant_hi_id",
            name="ck_conversations_distinct_participants",
        ),
        sa.CheckConstraint("next_seq >= 1", name="ck_conversations_next_seq_positive"),
        sa.CheckConstraint("version >= 0", name="ck_conversations_version_non_negative"),
    )
    op.create_index(
        "ix_conversations_hi_participant",
        "conversations",
        ["participant_hi_id"],
    )
    # Inbox ordering: newest activity first, id as tiebreaker
    op.create_index(
        "ix_conversations_last_message",
        "conversations",
        [sa.text("last_message_at DESC"), sa.text("id DESC")],
    )

    # ==========================================================================
    # messages table
    # ==========================================================================
    op.create_table(
        "messages",
        sa.Column(
            "id",
            sa.UUID(),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("conversation_id", sa.UUID(), nullable=False),
        sa.Column("sender_id", sa.UUID(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), server_default="sent", nullable=False),
        sa.Column("is_edited", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("edited_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("deleted_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("conversation_id", "seq", name="uix_messages_conversation_seq"),
        sa.CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        sa.CheckConstraint(
            "status IN ('sent', 'delivered', 'read')",
            name="ck_messages_status",
        ),
        sa.CheckConstraint(
            "status <> 'read' OR read_at IS NOT NULL",
            name="ck_messages_read_has_read_at",
        ),
    )
    op.create_index(
        "ix_messages_unread",
        "messages",
        ["conversation_id", "sender_id", "status"],
    )

    # ==========================================================================
    # message_reactions table
    # ==========================================================================
    op.create_table(
        "message_reactions",
        sa.Column("message_id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("symbol", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("message_id", "user_id", "symbol"),
        sa.ForeignKeyConstraint(["message_id"], ["messages.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "length(symbol) BETWEEN 1 AND 32",
            name="ck_message_reactions_symbol_length",
        ),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign key dependencies)
    op.drop_table("message_reactions")
    op.drop_index("ix_messages_unread", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_last_message", table_name="conversations")
    op.drop_index("ix_conversations_hi_participant", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("ix_user_connections_receiver", table_name="user_connections")
    op.drop_table("user_connections")
    op.drop_table("users")

    # Note: We don't drop pgcrypto extension as it may be used by other things
