"""In-process metrics for chat traffic and realtime delivery."""

from .metrics import (
    chat_messages_total,
    realtime_connections,
    realtime_events_total,
    realtime_publish_errors_total,
    realtime_subscriptions,
)
from .registry import MetricsRegistry, registry

__all__ = [
    "MetricsRegistry",
    "registry",
    "chat_messages_total",
    "realtime_connections",
    "realtime_events_total",
    "realtime_publish_errors_total",
    "realtime_subscriptions",
]
