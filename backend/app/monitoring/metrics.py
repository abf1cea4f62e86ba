"""Metric definitions for chat traffic and realtime fan-out."""

from __future__ import annotations

from .registry import registry


chat_messages_total = registry.counter(
    "chat_messages_total",
    "Number of chat messages persisted, including system notices.",
    label_names=("channel", "type"),
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime events routed by the broadcaster.",
    label_names=("event", "direction"),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of active websocket connections handled locally.",
    label_names=("scope",),
)

realtime_subscriptions = registry.gauge(
    "realtime_channel_subscriptions",
    "Number of socket subscriptions to scoped channels.",
    label_names=("kind",),
)

realtime_publish_errors_total = registry.counter(
    "realtime_publish_errors_total",
    "Number of realtime events that could not be relayed to the backplane.",
    label_names=("backend", "reason"),
)
