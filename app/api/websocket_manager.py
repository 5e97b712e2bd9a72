"""
WebSocket connection registry and event dispatcher for live pushes.

The registry maps each user to at most one live socket (last connection
wins). The dispatcher pushes tagged events to whatever socket the registry
holds at the instant of the call; delivery is best-effort and never raises.
Clients reconcile through the REST fetch endpoints.
"""
import asyncio
import logging
import threading
import time
from typing import Dict, Iterable, Optional
from fastapi import WebSocket
from starlette.websockets import WebSocketState
from api.metrics import (
    websocket_connections_active, websocket_connections_total,
    websocket_disconnections_total, websocket_events_pushed_total, websocket_push_latency_seconds
)
from api.schemas import ServerEvent
from core.config import settings

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """
    In-process mapping from user ID to a single live socket handle.

    All methods are synchronous and never await, so a lookup followed by a
    state check in the dispatcher sees a consistent snapshot. The lock
    serializes callers that run outside the event loop (threadpool
    endpoints).
    """

    def __init__(self):
        self._connections: Dict[int, WebSocket] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, websocket: WebSocket) -> Optional[WebSocket]:
        """
        Store the handle for a user, replacing any previous one.

        The previous handle is abandoned, not closed; its own endpoint
        unregisters it when it eventually closes.

        Returns:
            The replaced handle, if any
        """
        with self._lock:
            previous = self._connections.get(user_id)
            self._connections[user_id] = websocket
            websocket_connections_active.labels(instance="api").set(len(self._connections))

        websocket_connections_total.labels(instance="api").inc()
        if previous is not None and previous is not websocket:
            logger.info(f"User {user_id} reconnected; previous socket replaced")
        else:
            logger.info(f"User {user_id} registered a live socket")
        return previous

    def unregister(self, user_id: int, websocket: WebSocket) -> bool:
        """
        Remove the mapping only if it still points at this exact handle.

        A stale socket closing late must not evict a newer connection.

        Returns:
            True if the mapping was removed
        """
        with self._lock:
            if self._connections.get(user_id) is not websocket:
                return False
            del self._connections[user_id]
            websocket_connections_active.labels(instance="api").set(len(self._connections))

        logger.info(f"User {user_id} unregistered its live socket")
        return True

    def lookup(self, user_id: int) -> Optional[WebSocket]:
        """Return the user's live handle, or None."""
        with self._lock:
            return self._connections.get(user_id)

    def is_online(self, user_id: int) -> bool:
        """Display hint: whether the user currently holds a socket."""
        return self.lookup(user_id) is not None

    def connection_count(self) -> int:
        """Number of users with a registered socket."""
        with self._lock:
            return len(self._connections)


def _is_open(websocket: WebSocket) -> bool:
    """Both sides of the socket have completed the handshake and not closed."""
    return (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    )


class EventDispatcher:
    """
    Best-effort, at-most-once push of events to connected users.

    ``push`` never raises: an absent, closed or failing socket is a silent
    no-op from the caller's point of view.
    """

    def __init__(self, registry: ConnectionRegistry, send_timeout_seconds: float = 5.0):
        self.registry = registry
        self.send_timeout_seconds = send_timeout_seconds

    async def push(self, user_id: int, event: ServerEvent) -> bool:
        """
        Send an event to the user's live socket if one is open.

        Args:
            user_id: Target user
            event: MessageEvent or NotificationEvent

        Returns:
            True if the frame was handed to the socket, False otherwise
        """
        event_type = event.type
        websocket = self.registry.lookup(user_id)
        if websocket is None:
            logger.debug(f"No live socket for user {user_id}; {event_type} push skipped")
            websocket_events_pushed_total.labels(event_type=event_type, outcome="offline").inc()
            return False

        if not _is_open(websocket):
            logger.debug(f"Socket for user {user_id} not open; {event_type} push skipped")
            websocket_events_pushed_total.labels(event_type=event_type, outcome="not_open").inc()
            return False

        start = time.perf_counter()
        try:
            frame = event.model_dump_json(by_alias=True)
            await asyncio.wait_for(websocket.send_text(frame), timeout=self.send_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Timed out pushing {event_type} to user {user_id}")
            websocket_events_pushed_total.labels(event_type=event_type, outcome="timeout").inc()
            if self.registry.unregister(user_id, websocket):
                websocket_disconnections_total.labels(instance="api", reason="send_timeout").inc()
            return False
        except Exception as e:
            logger.warning(f"Error pushing {event_type} to user {user_id}: {e}")
            websocket_events_pushed_total.labels(event_type=event_type, outcome="error").inc()
            if self.registry.unregister(user_id, websocket):
                websocket_disconnections_total.labels(instance="api", reason="send_error").inc()
            return False

        websocket_push_latency_seconds.labels(event_type=event_type).observe(time.perf_counter() - start)
        websocket_events_pushed_total.labels(event_type=event_type, outcome="sent").inc()
        logger.debug(f"Pushed {event_type} to user {user_id}")
        return True

    async def push_many(self, user_ids: Iterable[int], event: ServerEvent) -> int:
        """
        Fan an event out to several users.

        Returns:
            Number of sockets the event was handed to
        """
        delivered = 0
        for user_id in user_ids:
            if await self.push(user_id, event):
                delivered += 1
        return delivered


# Process-wide registry and dispatcher
connection_registry = ConnectionRegistry()
event_dispatcher = EventDispatcher(
    connection_registry,
    send_timeout_seconds=settings.ws_send_timeout_seconds
)


def get_connection_registry() -> ConnectionRegistry:
    """FastAPI dependency returning the process-wide registry."""
    return connection_registry


def get_event_dispatcher() -> EventDispatcher:
    """FastAPI dependency returning the process-wide dispatcher."""
    return event_dispatcher
