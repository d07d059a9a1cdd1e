"""Per-conversation counters: message sequence and event version.

Both counters live on the conversation row and are only touched while that
row is locked (SELECT ... FOR UPDATE on PostgreSQL; SQLite transactions
already hold the write lock from BEGIN IMMEDIATE). Consequently:
- Each conversation has a `next_seq` counter (starts at 1); seq assignment
  reads it and increments it, and the read value is the new message's seq
- Each conversation has a `version` counter (starts at 0); every committed
  mutation that produces a realtime event bumps it, and the bumped value
  is carried by that event so the hub can restore commit order

Must be called within an existing transaction context.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, literal, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from parley.db.models import Conversation, UTCDateTime, utcnow
from parley.logging import get_logger

logger = get_logger(__name__)


def lock_conversation(db: Session, conversation_id: UUID) -> Conversation:
    """Lock the conversation row for the rest of the transaction.

    The returned object is refreshed from the locked row.

    Raises:
        ValueError: If the conversation does not exist
    """
    conversation = db.execute(
        select(Conversation)
        .where(Conversation.id == conversation_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()

    if conversation is None:
        raise ValueError(f"Conversation {conversation_id} not found")

    return conversation


def assign_next_message_seq(db: Session, conversation_id: UUID) -> int:
    """Atomically assign the next message sequence number for a conversation.

    This function MUST be called within an existing transaction context.
    It does NOT open or commit its own transaction.

    Returns:
        The sequence number to use for the new message

    Raises:
        ValueError: If the conversation does not exist
    """
    conversation = lock_conversation(db, conversation_id)
    current_seq = conversation.next_seq

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(next_seq=Conversation.next_seq + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    set_committed_value(conversation, "next_seq", current_seq + 1)

    logger.debug(
        "assigned_message_seq",
        conversation_id=str(conversation_id),
        seq=current_seq,
    )

    return current_seq


def bump_conversation_version(
    db: Session,
    conversation_id: UUID,
    last_message_at: datetime | None = None,
) -> int:
    """Increment the conversation's event version and return the new value.

    When last_message_at is given it is applied as a monotonic max, so a
    racing writer with an older timestamp can never move it backwards.

    Raises:
        ValueError: If the conversation does not exist
    """
    conversation = lock_conversation(db, conversation_id)
    now = utcnow()

    values: dict = {"version": Conversation.version + 1, "updated_at": now}
    if last_message_at is not None:
        ts = literal(last_message_at, UTCDateTime())
        values["last_message_at"] = case(
            (Conversation.last_message_at < ts, ts),
            else_=Conversation.last_message_at,
        )

    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    db.refresh(conversation)
    version = conversation.version

    logger.debug(
        "bumped_conversation_version",
        conversation_id=str(conversation_id),
        version=version,
    )

    return version
