"""
Prometheus metrics for the API service.

Tracks live socket connections, push outcomes, and messaging business
metrics. HTTP request metrics come from prometheus-fastapi-instrumentator.
"""
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

# Create registry
registry = CollectorRegistry()

# WebSocket connection metrics
websocket_connections_active = Gauge(
    "websocket_connections_active",
    "Number of users with a registered live socket",
    labelnames=["instance"],
    registry=registry
)

websocket_connections_total = Counter(
    "websocket_connections_total",
    "Total number of WebSocket connections registered",
    labelnames=["instance"],
    registry=registry
)

websocket_disconnections_total = Counter(
    "websocket_disconnections_total",
    "Total number of WebSocket disconnections",
    labelnames=["instance", "reason"],
    registry=registry
)

websocket_rejections_total = Counter(
    "websocket_rejections_total",
    "Socket upgrades closed for a missing or invalid credential",
    labelnames=["instance"],
    registry=registry
)

websocket_events_pushed_total = Counter(
    "websocket_events_pushed_total",
    "Live push attempts by event type and outcome",
    labelnames=["event_type", "outcome"],
    registry=registry
)

websocket_push_latency_seconds = Histogram(
    "websocket_push_latency_seconds",
    "Time to hand one event frame to a live socket",
    labelnames=["event_type"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=registry
)

# Business metrics
conversations_created_total = Counter(
    "conversations_created_total",
    "Total number of conversations created",
    labelnames=["conversation_type", "instance"],
    registry=registry
)

messages_created_total = Counter(
    "messages_created_total",
    "Total number of messages created",
    labelnames=["conversation_type", "instance"],
    registry=registry
)

messages_marked_read_total = Counter(
    "messages_marked_read_total",
    "Read receipts recorded by conversation fetches",
    labelnames=["instance"],
    registry=registry
)

notifications_created_total = Counter(
    "notifications_created_total",
    "Total number of notifications persisted",
    labelnames=["type", "instance"],
    registry=registry
)

notifications_suppressed_total = Counter(
    "notifications_suppressed_total",
    "Self-notifications dropped before persistence",
    labelnames=["type", "instance"],
    registry=registry
)

# Authentication metrics
auth_token_validations_total = Counter(
    "auth_token_validations_total",
    "Total number of token validation attempts",
    labelnames=["type", "status", "instance"],
    registry=registry
)
