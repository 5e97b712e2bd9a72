"""
Unit tests for the conversation/message service.
Covers participant rules, read-set bookkeeping, authorization and the
live push on send.
"""
import asyncio
import json
import pytest
from datetime import datetime, timedelta
from typing import List
from sqlalchemy.orm import Session
from core.exceptions import InvalidContent, InvalidParticipants, NotFound, NotParticipant
from db.models import Message, MessageRead, User
from db.repository import Repository
from services.conversation_service import ConversationService


@pytest.fixture
def service(repository, dispatcher, registry) -> ConversationService:
    return ConversationService(repository, dispatcher, registry)


class TestCreateConversation:
    """Tests for conversation creation."""

    def test_direct_conversation(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[0], seed_test_users[1]

        conversation = service.create_conversation(alice.id, [bob.id])

        assert conversation.participant_ids == [alice.id, bob.id]
        assert conversation.is_group is False
        assert conversation.read_receipt_enabled is True
        assert conversation.is_muted is False
        assert conversation.last_message_at is None

    def test_group_conversation_dedupes_participants(self, service, seed_test_users: List[User]):
        alice, bob, carol = seed_test_users[:3]

        conversation = service.create_conversation(
            alice.id, [bob.id, carol.id, bob.id, alice.id], title="trip"
        )

        assert conversation.participant_ids == [alice.id, bob.id, carol.id]
        assert conversation.is_group is True
        assert conversation.title == "trip"

    def test_conversation_with_only_self_is_rejected(self, service, seed_test_users: List[User]):
        alice = seed_test_users[0]

        with pytest.raises(InvalidParticipants):
            service.create_conversation(alice.id, [alice.id])

        with pytest.raises(InvalidParticipants):
            service.create_conversation(alice.id, [])

    def test_unknown_participant_is_rejected(self, service, seed_test_users: List[User]):
        with pytest.raises(InvalidParticipants):
            service.create_conversation(seed_test_users[0].id, [9999])


class TestSendMessage:
    """Tests for sending messages."""

    def test_sender_is_in_read_set(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        message = asyncio.run(service.send_message(alice.id, conversation.id, "hi"))

        assert message.read_by == [alice.id]
        assert message.sender.id == alice.id
        assert message.content == "hi"

    def test_send_bumps_last_activity(self, service, repository, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        message = asyncio.run(service.send_message(alice.id, conversation.id, "hi"))

        stored = repository.get_conversation_by_id(conversation.id)
        assert stored.last_message_at == message.created_at

    def test_non_participant_cannot_send(self, service, test_db, seed_test_users: List[User]):
        alice, bob, carol = seed_test_users[:3]
        conversation = service.create_conversation(alice.id, [bob.id])

        with pytest.raises(NotParticipant):
            asyncio.run(service.send_message(carol.id, conversation.id, "hi"))

        assert test_db.query(Message).count() == 0

    def test_missing_conversation(self, service, seed_test_users: List[User]):
        with pytest.raises(NotFound):
            asyncio.run(service.send_message(seed_test_users[0].id, 9999, "hi"))

    @pytest.mark.parametrize("content", ["", "   \n\t"])
    def test_empty_content_is_rejected(self, service, test_db, seed_test_users: List[User], content):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        with pytest.raises(InvalidContent):
            asyncio.run(service.send_message(alice.id, conversation.id, content))

        assert test_db.query(Message).count() == 0

    def test_content_length_bound(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        asyncio.run(service.send_message(alice.id, conversation.id, "x" * 2000))
        with pytest.raises(InvalidContent):
            asyncio.run(service.send_message(alice.id, conversation.id, "x" * 2001))

    def test_push_goes_to_other_online_participants_only(
        self, service, registry, fake_socket, seed_test_users: List[User]
    ):
        alice, bob, carol = seed_test_users[:3]
        conversation = service.create_conversation(alice.id, [bob.id, carol.id])
        alice_socket, bob_socket = fake_socket(), fake_socket()
        registry.register(alice.id, alice_socket)
        registry.register(bob.id, bob_socket)

        message = asyncio.run(service.send_message(alice.id, conversation.id, "hello group"))

        assert alice_socket.sent == []
        assert len(bob_socket.sent) == 1
        frame = json.loads(bob_socket.sent[0])
        assert frame["type"] == "message"
        assert frame["data"]["id"] == message.id
        assert frame["data"]["sender"]["isOnline"] is True

    def test_broken_socket_does_not_fail_send(
        self, service, registry, test_db, fake_socket, seed_test_users: List[User]
    ):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        registry.register(bob.id, fake_socket(fail=True))

        message = asyncio.run(service.send_message(alice.id, conversation.id, "hi"))

        assert test_db.query(Message).filter(Message.id == message.id).count() == 1
        assert registry.lookup(bob.id) is None


class TestReadMarking:
    """Tests for fetch-marks-read behavior."""

    def test_fetch_marks_everything_read(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        for text in ("one", "two", "three"):
            asyncio.run(service.send_message(alice.id, conversation.id, text))

        first_fetch = service.get_messages(conversation.id, bob.id)

        assert [m.content for m in first_fetch] == ["one", "two", "three"]
        assert all(m.read_by == [alice.id] for m in first_fetch)

        second_fetch = service.get_messages(conversation.id, bob.id)
        assert all(m.read_by == [alice.id, bob.id] for m in second_fetch)

        summaries = service.list_conversations(bob.id)
        assert summaries[0].unread_count == 0

    def test_read_marking_is_idempotent(self, service, test_db, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        asyncio.run(service.send_message(alice.id, conversation.id, "hi"))

        service.get_messages(conversation.id, bob.id)
        service.get_messages(conversation.id, bob.id)

        assert test_db.query(MessageRead).filter(MessageRead.user_id == bob.id).count() == 1

    def test_non_participant_fetch_leaves_read_sets_unchanged(
        self, service, test_db, seed_test_users: List[User]
    ):
        alice, bob, carol = seed_test_users[:3]
        conversation = service.create_conversation(alice.id, [bob.id])
        asyncio.run(service.send_message(alice.id, conversation.id, "hi"))

        with pytest.raises(NotParticipant):
            service.get_messages(conversation.id, carol.id)

        assert test_db.query(MessageRead).filter(MessageRead.user_id == carol.id).count() == 0

    def test_concurrent_read_marking_keeps_one_marker(
        self, service, repository, test_db, monkeypatch, seed_test_users: List[User]
    ):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        asyncio.run(service.send_message(alice.id, conversation.id, "one"))
        asyncio.run(service.send_message(alice.id, conversation.id, "two"))

        # A second request for the same reader commits its markers between
        # this request's unread query and its insert.
        other_session = Session(bind=test_db.get_bind())
        other_repository = Repository(other_session)
        unread_message_ids = repository._unread_message_ids

        def read_elsewhere_first(conversation_id, user_id):
            ids = unread_message_ids(conversation_id, user_id)
            assert other_repository.mark_conversation_as_read(conversation_id, user_id) == 2
            return ids

        monkeypatch.setattr(repository, "_unread_message_ids", read_elsewhere_first)
        try:
            fetched = service.get_messages(conversation.id, bob.id)
        finally:
            other_session.close()

        assert [m.content for m in fetched] == ["one", "two"]
        markers = test_db.query(MessageRead).filter(MessageRead.user_id == bob.id).all()
        assert len(markers) == 2
        assert len({marker.message_id for marker in markers}) == 2
        assert service.list_conversations(bob.id)[0].unread_count == 0

    def test_unread_count_excludes_own_messages(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        asyncio.run(service.send_message(alice.id, conversation.id, "one"))
        asyncio.run(service.send_message(alice.id, conversation.id, "two"))

        assert service.list_conversations(alice.id)[0].unread_count == 0
        assert service.list_conversations(bob.id)[0].unread_count == 2

    def test_disabled_read_receipts_hide_other_readers(self, service, seed_test_users: List[User]):
        alice, bob, carol = seed_test_users[:3]
        conversation = service.create_conversation(alice.id, [bob.id, carol.id])
        asyncio.run(service.send_message(alice.id, conversation.id, "hi"))
        service.get_messages(conversation.id, bob.id)

        service.get_messages(conversation.id, carol.id)

        service.toggle_read_receipts(alice.id, conversation.id)

        carol_view = service.get_messages(conversation.id, carol.id)
        assert carol_view[0].read_by == [alice.id, carol.id]
        alice_view = service.get_messages(conversation.id, alice.id)
        assert alice_view[0].read_by == [alice.id]

        service.toggle_read_receipts(alice.id, conversation.id)
        assert service.get_messages(conversation.id, carol.id)[0].read_by == [alice.id, bob.id, carol.id]


class TestListConversations:
    """Tests for the conversation list."""

    def test_most_recently_active_first(self, service, seed_test_users: List[User]):
        alice, bob, carol = seed_test_users[:3]
        with_bob = service.create_conversation(alice.id, [bob.id])
        with_carol = service.create_conversation(alice.id, [carol.id])
        asyncio.run(service.send_message(bob.id, with_bob.id, "ping"))

        summaries = service.list_conversations(alice.id)

        assert [s.id for s in summaries] == [with_bob.id, with_carol.id]
        assert summaries[0].last_message.content == "ping"
        assert summaries[1].last_message is None
        assert [p.id for p in summaries[0].participants] == [alice.id, bob.id]

    def test_each_summary_gets_its_own_last_message_and_unread_count(
        self, service, seed_test_users: List[User]
    ):
        alice, bob, carol, dave = seed_test_users[:4]
        with_bob = service.create_conversation(alice.id, [bob.id])
        group = service.create_conversation(carol.id, [alice.id, dave.id], title="team")
        quiet = service.create_conversation(alice.id, [dave.id])
        asyncio.run(service.send_message(bob.id, with_bob.id, "first"))
        asyncio.run(service.send_message(bob.id, with_bob.id, "second"))
        asyncio.run(service.send_message(carol.id, group.id, "hello team"))
        service.get_messages(group.id, alice.id)

        summaries = {s.id: s for s in service.list_conversations(alice.id)}

        assert summaries[with_bob.id].last_message.content == "second"
        assert summaries[with_bob.id].unread_count == 2
        assert summaries[group.id].last_message.content == "hello team"
        assert summaries[group.id].unread_count == 0
        assert [p.id for p in summaries[group.id].participants] == [carol.id, alice.id, dave.id]
        assert summaries[group.id].participants[0].display_name == "Test User 3"
        assert summaries[quiet.id].last_message is None
        assert summaries[quiet.id].unread_count == 0

    def test_only_own_conversations(self, service, seed_test_users: List[User]):
        alice, bob, carol = seed_test_users[:3]
        service.create_conversation(alice.id, [bob.id])

        assert service.list_conversations(carol.id) == []


class TestConversationFlags:
    """Tests for mute and read-receipt flags."""

    def test_mute_for_duration(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        before = datetime.utcnow()
        muted = service.mute_conversation(alice.id, conversation.id, duration_minutes=60)

        assert muted.is_muted is True
        assert muted.muted_until > before

    def test_mute_indefinitely_then_unmute(self, service, repository, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        muted = service.mute_conversation(alice.id, conversation.id)
        assert muted.is_muted is True
        assert muted.muted_until is None
        assert repository.get_conversation_by_id(conversation.id).is_muted_at(datetime.utcnow())

        unmuted = service.mute_conversation(alice.id, conversation.id, muted=False)
        assert unmuted.is_muted is False

    def test_expired_mute_reads_as_unmuted(self, service, repository, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        service.mute_conversation(alice.id, conversation.id, duration_minutes=5)

        row = repository.get_conversation_by_id(conversation.id)
        repository.set_conversation_mute(row, True, datetime.utcnow() - timedelta(minutes=1))

        summary = service.list_conversations(alice.id)[0]
        assert summary.is_muted is False
        assert summary.muted_until is None
        toggled = service.toggle_read_receipts(alice.id, conversation.id)
        assert toggled.is_muted is False

    def test_muted_conversation_still_pushes(
        self, service, registry, fake_socket, seed_test_users: List[User]
    ):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])
        service.mute_conversation(bob.id, conversation.id)
        bob_socket = fake_socket()
        registry.register(bob.id, bob_socket)

        asyncio.run(service.send_message(alice.id, conversation.id, "still here"))

        assert len(bob_socket.sent) == 1

    def test_toggle_read_receipts_twice(self, service, seed_test_users: List[User]):
        alice, bob = seed_test_users[:2]
        conversation = service.create_conversation(alice.id, [bob.id])

        assert service.toggle_read_receipts(alice.id, conversation.id).read_receipt_enabled is False
        assert service.toggle_read_receipts(bob.id, conversation.id).read_receipt_enabled is True

    def test_flags_require_participation(self, service, seed_test_users: List[User]):
        alice, bob, carol = seed_test_users[:3]
        conversation = service.create_conversation(alice.id, [bob.id])

        with pytest.raises(NotParticipant):
            service.mute_conversation(carol.id, conversation.id)
        with pytest.raises(NotParticipant):
            service.toggle_read_receipts(carol.id, conversation.id)
        with pytest.raises(NotFound):
            service.toggle_read_receipts(alice.id, 9999)
