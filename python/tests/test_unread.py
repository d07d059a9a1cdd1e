"""Tests for unread counts.

Unread = sent by the other participant, in one of the user's
conversations, and not yet read. Counts are derived live.
"""

from sqlalchemy.orm import Session

from parley.services.messages import list_messages, send_message
from parley.services.unread import unread_count, unread_counts_by_conversation
from tests.factories import create_conversation
from tests.support.fakes import StaticGate


def _send(db: Session, sender, recipient, content="Hi"):
    return send_message(db, sender, content, recipient_id=recipient, gate=StaticGate())


class TestUnreadCount:
    def test_zero_without_messages(self, db_session: Session, alice):
        assert unread_count(db_session, alice) == 0

    def test_counts_only_messages_from_others(self, db_session: Session, alice, bob):
        _send(db_session, alice, bob, "one")
        _send(db_session, alice, bob, "two")
        _send(db_session, bob, alice, "reply")

        assert unread_count(db_session, bob) == 2
        assert unread_count(db_session, alice) == 1

    def test_spans_conversations(self, db_session: Session, alice, bob, carol):
        _send(db_session, bob, alice)
        _send(db_session, carol, alice)

        assert unread_count(db_session, alice) == 2

    def test_outsider_sees_nothing(self, db_session: Session, alice, bob, carol):
        _send(db_session, alice, bob)

        assert unread_count(db_session, carol) == 0

    def test_listing_clears_then_new_message_counts(self, db_session: Session, alice, bob):
        """After B lists, prior messages from A are excluded; a new one is included."""
        _send(db_session, alice, bob, "one")
        result = _send(db_session, alice, bob, "two")

        list_messages(db_session, bob, result.conversation.id)
        assert unread_count(db_session, bob) == 0

        _send(db_session, alice, bob, "three")
        assert unread_count(db_session, bob) == 1


class TestUnreadCountsByConversation:
    def test_per_conversation_counts(self, db_session: Session, alice, bob, carol):
        with_bob = _send(db_session, bob, alice).conversation.id
        _send(db_session, bob, alice)
        with_carol = create_conversation(db_session, alice, carol).id

        counts = unread_counts_by_conversation(db_session, alice, [with_bob, with_carol])

        assert counts == {with_bob: 2, with_carol: 0}

    def test_omits_foreign_conversations(self, db_session: Session, alice, bob, carol):
        conversation_id = _send(db_session, alice, bob).conversation.id

        assert unread_counts_by_conversation(db_session, carol, [conversation_id]) == {}

    def test_empty_input(self, db_session: Session, alice):
        assert unread_counts_by_conversation(db_session, alice, []) == {}
