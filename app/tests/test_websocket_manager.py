"""
Unit tests for the connection registry and event dispatcher.
"""
import asyncio
import json
from datetime import datetime
from api.schemas import MessageEvent, MessageOut, NotificationEvent, NotificationOut, UserSummary
from api.websocket_manager import ConnectionRegistry, EventDispatcher


def _message_event(content: str = "hi") -> MessageEvent:
    return MessageEvent(data=MessageOut(
        id=1,
        conversation_id=7,
        sender_id=2,
        content=content,
        created_at=datetime(2026, 1, 1, 12, 0, 0),
        read_by=[2],
        sender=UserSummary(id=2, username="user2")
    ))


def _notification_event() -> NotificationEvent:
    return NotificationEvent(data=NotificationOut(
        id=5,
        user_id=1,
        actor_id=2,
        type="like",
        target_id="post-9",
        created_at=datetime(2026, 1, 1, 12, 0, 0),
        actor=UserSummary(id=2, username="user2")
    ))


class TestConnectionRegistry:
    """Tests for the user -> socket mapping."""

    def test_register_and_lookup(self, registry: ConnectionRegistry, fake_socket):
        socket = fake_socket()
        assert registry.register(1, socket) is None
        assert registry.lookup(1) is socket
        assert registry.is_online(1)
        assert not registry.is_online(2)
        assert registry.connection_count() == 1

    def test_last_connection_wins(self, registry: ConnectionRegistry, fake_socket):
        first, second = fake_socket(), fake_socket()
        registry.register(1, first)

        previous = registry.register(1, second)

        assert previous is first
        assert registry.lookup(1) is second
        assert registry.connection_count() == 1

    def test_stale_unregister_keeps_newer_connection(self, registry: ConnectionRegistry, fake_socket):
        first, second = fake_socket(), fake_socket()
        registry.register(1, first)
        registry.register(1, second)

        assert registry.unregister(1, first) is False
        assert registry.lookup(1) is second

        assert registry.unregister(1, second) is True
        assert registry.lookup(1) is None

    def test_unregister_unknown_user(self, registry: ConnectionRegistry, fake_socket):
        assert registry.unregister(42, fake_socket()) is False


class TestEventDispatcher:
    """Tests for best-effort pushes."""

    def test_push_to_offline_user_is_noop(self, dispatcher: EventDispatcher):
        assert asyncio.run(dispatcher.push(1, _message_event())) is False

    def test_push_sends_tagged_camel_case_frame(self, registry, dispatcher, fake_socket):
        socket = fake_socket()
        registry.register(1, socket)

        assert asyncio.run(dispatcher.push(1, _message_event("hello"))) is True

        assert len(socket.sent) == 1
        frame = json.loads(socket.sent[0])
        assert frame["type"] == "message"
        assert frame["data"]["content"] == "hello"
        assert frame["data"]["conversationId"] == 7
        assert frame["data"]["readBy"] == [2]
        assert frame["data"]["sender"]["username"] == "user2"

    def test_notification_frame(self, registry, dispatcher, fake_socket):
        socket = fake_socket()
        registry.register(1, socket)

        asyncio.run(dispatcher.push(1, _notification_event()))

        frame = json.loads(socket.sent[0])
        assert frame["type"] == "notification"
        assert frame["data"]["type"] == "like"
        assert frame["data"]["actorId"] == 2
        assert frame["data"]["targetId"] == "post-9"

    def test_push_skips_socket_that_is_not_open(self, registry, dispatcher, fake_socket):
        socket = fake_socket(is_open=False)
        registry.register(1, socket)

        assert asyncio.run(dispatcher.push(1, _message_event())) is False
        assert socket.sent == []
        # A socket that has not finished its handshake keeps its registration
        assert registry.lookup(1) is socket

    def test_send_error_is_swallowed_and_unregisters(self, registry, dispatcher, fake_socket):
        socket = fake_socket(fail=True)
        registry.register(1, socket)

        assert asyncio.run(dispatcher.push(1, _message_event())) is False
        assert registry.lookup(1) is None

    def test_send_error_does_not_evict_replacement(self, registry, dispatcher, fake_socket):
        broken, replacement = fake_socket(fail=True), fake_socket()
        registry.register(1, broken)

        class SwapOnSend:
            """Looks like the broken socket but swaps in a new one mid-send."""
            client_state = broken.client_state
            application_state = broken.application_state

            async def send_text(self, data):
                registry.register(1, replacement)
                raise RuntimeError("socket broken")

        swapping = SwapOnSend()
        registry.register(1, swapping)

        assert asyncio.run(dispatcher.push(1, _message_event())) is False
        assert registry.lookup(1) is replacement

    def test_push_many_counts_deliveries(self, registry, dispatcher, fake_socket):
        online = fake_socket()
        registry.register(2, online)
        registry.register(3, fake_socket(fail=True))

        delivered = asyncio.run(dispatcher.push_many([2, 3, 4], _message_event()))

        assert delivered == 1
        assert len(online.sent) == 1

    def test_push_times_out_on_stuck_socket(self, registry, fake_socket):
        dispatcher = EventDispatcher(registry, send_timeout_seconds=0.05)

        class StuckSocket:
            client_state = fake_socket().client_state
            application_state = fake_socket().application_state

            async def send_text(self, data):
                await asyncio.sleep(1)

        registry.register(1, StuckSocket())

        assert asyncio.run(dispatcher.push(1, _message_event())) is False
        # A stuck socket is dropped so later pushes do not wait on it again
        assert registry.lookup(1) is None

    def test_timeout_does_not_evict_replacement(self, registry, fake_socket):
        dispatcher = EventDispatcher(registry, send_timeout_seconds=0.05)
        replacement = fake_socket()

        class StuckThenReplaced:
            client_state = fake_socket().client_state
            application_state = fake_socket().application_state

            async def send_text(self, data):
                registry.register(1, replacement)
                await asyncio.sleep(1)

        registry.register(1, StuckThenReplaced())

        assert asyncio.run(dispatcher.push(1, _message_event())) is False
        assert registry.lookup(1) is replacement
