"""Metric definitions for the realtime gateway and voice broker."""

from __future__ import annotations

from .registry import registry

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of websocket sessions currently joined to a context.",
    label_names=("scope",),
)

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime frames handled by the gateway.",
    label_names=("event", "direction"),
)

chat_messages_total = registry.counter(
    "chat_messages_total",
    "Messages persisted and broadcast, per context kind.",
    label_names=("context",),
)

chat_rate_limited_total = registry.counter(
    "chat_rate_limited_total",
    "Messages rejected by the sliding window limiter.",
    label_names=("context",),
)

room_expirations_total = registry.counter(
    "room_expirations_total",
    "Ephemeral rooms torn down after reaching their expiry.",
)

voice_sessions_active = registry.gauge(
    "voice_sessions_active",
    "Voice sessions opened and not yet terminated by this process.",
)

sfu_failures_total = registry.counter(
    "sfu_failures_total",
    "Failed calls to the media server admin API.",
    label_names=("operation",),
)
