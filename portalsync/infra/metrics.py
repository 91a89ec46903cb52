"""Prometheus metrics export."""

from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Push channel metrics
push_frames_received_total = Counter(
    "push_frames_received_total",
    "Total push frames received",
)

push_frames_dropped_total = Counter(
    "push_frames_dropped_total",
    "Total malformed push frames dropped",
)

push_reconnect_attempts_total = Counter(
    "push_reconnect_attempts_total",
    "Total scheduled push channel reconnect attempts",
)

push_status_events_total = Counter(
    "push_status_events_total",
    "Total push channel status events emitted",
    ["status"],
)

push_connected = Gauge(
    "push_connected",
    "1 while the push channel is open, else 0",
)

# Dispatcher metrics
dispatch_callback_errors_total = Counter(
    "dispatch_callback_errors_total",
    "Total subscriber callbacks that raised during fan-out",
    ["kind"],
)

# Conversation metrics
live_messages_total = Counter(
    "live_messages_total",
    "Live messages offered to a conversation history",
    ["result"],  # result: merged, duplicate, ignored
)

# Notification metrics
notification_polls_total = Counter(
    "notification_polls_total",
    "Total notification poll ticks",
    ["status"],
)

notifications_unread = Gauge(
    "notifications_unread",
    "Unread notifications after the last successful poll",
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
