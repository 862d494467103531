"""In-process metrics for the realtime services."""

from .metrics import (
    chat_messages_total,
    chat_rate_limited_total,
    realtime_connections,
    realtime_events_total,
    room_expirations_total,
    sfu_failures_total,
    voice_sessions_active,
)
from .registry import registry

__all__ = [
    "chat_messages_total",
    "chat_rate_limited_total",
    "realtime_connections",
    "realtime_events_total",
    "registry",
    "room_expirations_total",
    "sfu_failures_total",
    "voice_sessions_active",
]
