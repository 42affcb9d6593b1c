"""
Tests for cluster messaging
"""

import pytest
from datetime import datetime, timedelta, timezone

from family_ledger.errors import NotFound, Unauthorized, ValidationError
from family_ledger.messaging import MessageBoard
from family_ledger.models import BROADCAST, Role
from family_ledger.registry import IdentityRegistry
from family_ledger.sessions import SessionManager
from family_ledger.storage import MESSAGES, EntityStore, InMemoryStorage

SECRET = "session-secret-for-tests-0123456789abcdef"


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return EntityStore(InMemoryStorage(), namespace="test")


@pytest.fixture
def registry(store, clock):
    sessions = SessionManager(store, secret=SECRET, clock=clock)
    return IdentityRegistry(store, sessions, clock=clock)


@pytest.fixture
def board(store, registry, clock):
    return MessageBoard(store, registry, clock=clock)


@pytest.fixture
def people(registry):
    """Host alice with members bob and carol in fam1, host zed in fam2"""
    alice = registry.signup_cluster("fam1", "alice", "pw")
    alice_s = registry.login("fam1", "alice", "pw")
    bob = registry.provision_member(alice_s, "bob", "pw")
    carol = registry.provision_member(alice_s, "carol", "pw")
    zed = registry.signup_cluster("fam2", "zed", "pw")
    return {
        'alice': alice, 'bob': bob, 'carol': carol, 'zed': zed,
        'alice_s': alice_s,
        'bob_s': registry.login("fam1", "bob", "pw"),
        'carol_s': registry.login("fam1", "carol", "pw"),
        'zed_s': registry.login("fam2", "zed", "pw"),
    }


class TestSendMessage:

    def test_broadcast(self, board, people):
        message = board.send_message(people['bob_s'], "  dinner at 7 ")

        assert message.to_id == BROADCAST
        assert message.is_broadcast
        assert message.text == "dinner at 7"
        assert message.cluster_id == "fam1"
        assert message.from_id == people['bob'].id
        assert message.from_role == Role.MEMBER
        assert message.is_read is False

    def test_direct_message(self, board, people):
        message = board.send_message(people['alice_s'], "allowance sent", people['bob'].id)
        assert message.to_id == people['bob'].id
        assert not message.is_broadcast

    def test_cannot_message_other_cluster(self, board, people, store):
        with pytest.raises(Unauthorized):
            board.send_message(people['bob_s'], "hi", people['zed'].id)
        assert store.all(MESSAGES) == []

    def test_unknown_recipient(self, board, people):
        with pytest.raises(NotFound):
            board.send_message(people['bob_s'], "hi", "nobody")

    def test_blank_text(self, board, people):
        with pytest.raises(ValidationError):
            board.send_message(people['bob_s'], "   ")

    def test_expired_session(self, board, people, clock):
        clock.now += timedelta(hours=24)
        with pytest.raises(Unauthorized):
            board.send_message(people['bob_s'], "late")

    def test_missing_session(self, board, people):
        with pytest.raises(Unauthorized):
            board.send_message(None, "hi")


class TestReplies:

    def test_reply_links_original(self, board, people):
        original = board.send_message(people['alice_s'], "chores?")
        reply = board.send_message(people['bob_s'], "done", reply_to_id=original.id)
        assert reply.reply_to_id == original.id

    def test_reply_to_unknown_message(self, board, people):
        with pytest.raises(NotFound):
            board.send_message(people['bob_s'], "re", reply_to_id="missing")

    def test_cannot_reply_to_hidden_direct_message(self, board, people):
        private = board.send_message(people['alice_s'], "secret", people['carol'].id)
        with pytest.raises(NotFound):
            board.send_message(people['bob_s'], "re", reply_to_id=private.id)

    def test_cannot_reply_across_clusters(self, board, people):
        foreign = board.send_message(people['zed_s'], "hello fam2")
        with pytest.raises(NotFound):
            board.send_message(people['bob_s'], "re", reply_to_id=foreign.id)


class TestListMessages:

    def test_visibility(self, board, people):
        board.send_message(people['alice_s'], "family meeting")
        board.send_message(people['alice_s'], "bob only", people['bob'].id)
        board.send_message(people['carol_s'], "carol to alice", people['alice'].id)
        board.send_message(people['zed_s'], "other family")

        def texts(session):
            return [m.text for m in board.list_messages(session)]

        assert texts(people['bob_s']) == ["family meeting", "bob only"]
        assert texts(people['carol_s']) == ["family meeting", "carol to alice"]
        assert texts(people['alice_s']) == ["family meeting", "bob only", "carol to alice"]
        assert texts(people['zed_s']) == ["other family"]

    def test_listing_requires_live_session(self, board, people, clock):
        clock.now += timedelta(days=1)
        with pytest.raises(Unauthorized):
            board.list_messages(people['alice_s'])
