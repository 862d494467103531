"""One cancelable timer per expiring room."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Awaitable, Callable

from fastapi.websockets import WebSocket

from app.models.enums import ContextType
from app.monitoring.metrics import room_expirations_total
from app.schemas.socket import RoomExpiredPayload, encode_server_event
from masq.domain.records import RoomRecord
from masq.domain.repository import Repository

from .presence import PresenceRegistry
from .ratelimit import ContextKind
from .state import StateBroadcaster, utcnow

logger = logging.getLogger(__name__)

EXPIRED_ROOM_MEMORY = 1024

VoiceTerminator = Callable[[ContextType, str], Awaitable[Any]]


class RoomExpiryScheduler:
    """Arms, fires and cancels the expiry timers of rooms.

    A room gets at most one timer. Expiring a room broadcasts ``ROOM_EXPIRED``,
    ends its voice session and drops every live socket from it without
    individual ``MEMBER_LEFT`` events. Expiring twice is harmless.
    """

    def __init__(
        self,
        repository: Repository,
        presence: PresenceRegistry,
        state: StateBroadcaster,
        *,
        clock: Callable[[], datetime] = utcnow,
        terminate_voice: VoiceTerminator | None = None,
        expired_memory: int = EXPIRED_ROOM_MEMORY,
    ) -> None:
        self.repository = repository
        self.presence = presence
        self.state = state
        self.clock = clock
        self.terminate_voice = terminate_voice
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self.expired_memory = expired_memory
        # Most recently expired room ids, oldest first.
        self._expired: OrderedDict[str, None] = OrderedDict()

    def has_timer(self, room_id: str) -> bool:
        return room_id in self._timers

    async def ensure_timer(self, room: RoomRecord) -> None:
        if room.expires_at is None or room.id in self._timers:
            return
        delay = (room.expires_at - self.clock()).total_seconds()
        if delay <= 0:
            await self.expire_room(room.id)
            return
        loop = asyncio.get_running_loop()
        self._timers[room.id] = loop.call_later(delay, self._fire, room.id)

    def _fire(self, room_id: str) -> None:
        self._timers.pop(room_id, None)
        task = asyncio.ensure_future(self.expire_room(room_id))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Room expiry failed", exc_info=exc)

    async def expire_room(self, room_id: str, *, notify: WebSocket | None = None) -> None:
        """Tear the room down; *notify* also gets ``ROOM_EXPIRED`` if it is not in the room."""

        handle = self._timers.pop(room_id, None)
        if handle is not None:
            handle.cancel()

        sessions = self.presence.sessions_in(ContextKind.ROOM, room_id)
        payload = RoomExpiredPayload(room_id=room_id)
        if notify is not None and all(session.websocket is not notify for session in sessions):
            await self.presence.send(notify, encode_server_event("ROOM_EXPIRED", payload))

        if room_id in self._expired and not sessions:
            return
        if room_id not in self._expired:
            self._remember_expired(room_id)
            room_expirations_total.inc()
            logger.info("Expiring room %s (%d live sockets)", room_id, len(sessions))

        await self.state.publish(ContextKind.ROOM, room_id, "ROOM_EXPIRED", payload)
        if self.terminate_voice is not None:
            await self.terminate_voice(ContextType.EPHEMERAL_ROOM, room_id)
        for session in sessions:
            await self.presence.leave_room(session, should_broadcast=False)

    def _remember_expired(self, room_id: str) -> None:
        self._expired[room_id] = None
        while len(self._expired) > self.expired_memory:
            self._expired.popitem(last=False)

    async def sweep(self) -> None:
        """Expire overdue rooms and arm timers for the rest."""

        now = self.clock()
        expired = armed = 0
        for room in await self.repository.list_rooms_with_expiry():
            if room.is_expired(now):
                await self.expire_room(room.id)
                expired += 1
            else:
                await self.ensure_timer(room)
                armed += 1
        logger.info("Room expiry sweep: %d expired, %d timers armed", expired, armed)

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()


__all__ = ["EXPIRED_ROOM_MEMORY", "RoomExpiryScheduler", "VoiceTerminator"]
