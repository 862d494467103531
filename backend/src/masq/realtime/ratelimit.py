"""Per-connection sliding window limiter for chat sends."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable


class ContextKind(str, Enum):
    """The three kinds of chat context a socket can join."""

    ROOM = "room"
    DM = "dm"
    CHANNEL = "channel"


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass(slots=True)
class SlidingWindow:
    """Timestamps (ms) of the accepted sends inside the trailing window."""

    window_ms: int
    max_count: int
    timestamps: list[int] = field(default_factory=list)

    def allow(self, now_ms: int) -> bool:
        self.timestamps = [ts for ts in self.timestamps if now_ms - ts <= self.window_ms]
        if len(self.timestamps) >= self.max_count:
            return False
        self.timestamps.append(now_ms)
        return True


class MessageRateLimiter:
    """Builds and checks the independent windows held by each socket session."""

    def __init__(
        self,
        *,
        window_ms: int = 4000,
        room_count: int = 8,
        dm_count: int = 10,
        channel_count: int = 10,
        clock_ms: Callable[[], int] = monotonic_ms,
    ) -> None:
        self.window_ms = window_ms
        self._limits = {
            ContextKind.ROOM: room_count,
            ContextKind.DM: dm_count,
            ContextKind.CHANNEL: channel_count,
        }
        self._clock_ms = clock_ms

    def limit_for(self, kind: ContextKind) -> int:
        return self._limits[kind]

    def new_windows(self) -> dict[ContextKind, SlidingWindow]:
        return {kind: SlidingWindow(self.window_ms, count) for kind, count in self._limits.items()}

    def allow(self, windows: dict[ContextKind, SlidingWindow], kind: ContextKind) -> bool:
        window = windows.get(kind)
        if window is None:
            window = windows[kind] = SlidingWindow(self.window_ms, self._limits[kind])
        return window.allow(self._clock_ms())


__all__ = ["ContextKind", "MessageRateLimiter", "SlidingWindow", "monotonic_ms"]
