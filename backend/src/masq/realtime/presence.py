"""In-process registry of live sockets and the chat contexts they joined."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import realtime_connections, realtime_events_total
from app.schemas.payloads import ChannelMemberState, RoomMemberState
from app.schemas.socket import ChannelMemberPayload, RoomMemberPayload, encode_server_event

from .ratelimit import ContextKind, MessageRateLimiter, SlidingWindow

logger = logging.getLogger(__name__)


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Send a frame, skipping sockets that are no longer open.

    Returns True if the frame was handed to the socket, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
    except (WebSocketDisconnect, RuntimeError) as exc:
        logger.debug("Dropping %s frame for closed socket: %s", data.get("type"), exc)
        return False
    realtime_events_total.labels(data.get("type", "UNKNOWN"), "out").inc()
    return True


@dataclass(eq=False)
class SocketSession:
    """Per-connection state: who is connected and where they are joined."""

    websocket: WebSocket
    user_id: str
    rate_windows: dict[ContextKind, SlidingWindow] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    room_id: str | None = None
    room_member: RoomMemberState | None = None

    dm_thread_id: str | None = None
    dm_mask_id: str | None = None

    channel_id: str | None = None
    channel_member: ChannelMemberState | None = None


class PresenceRegistry:
    """Track sockets per room, DM thread and server channel.

    A session is joined to at most one context of each kind. Join and leave
    events are de-duplicated per identity: the mask for rooms and the user for
    channels, so several tabs of the same identity look like one member.
    """

    def __init__(self, rate_limiter: MessageRateLimiter | None = None) -> None:
        self._rate_limiter = rate_limiter or MessageRateLimiter()
        self._sessions: dict[WebSocket, SocketSession] = {}
        self._contexts: dict[ContextKind, dict[str, set[WebSocket]]] = {kind: {} for kind in ContextKind}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def register(self, websocket: WebSocket, user_id: str) -> SocketSession:
        session = SocketSession(
            websocket=websocket,
            user_id=user_id,
            rate_windows=self._rate_limiter.new_windows(),
        )
        self._sessions[websocket] = session
        realtime_connections.labels("sockets").inc()
        return session

    def get(self, websocket: WebSocket) -> SocketSession | None:
        return self._sessions.get(websocket)

    def sessions(self) -> list[SocketSession]:
        return list(self._sessions.values())

    def sessions_for_user(self, user_id: str) -> list[SocketSession]:
        return [session for session in self._sessions.values() if session.user_id == user_id]

    async def unregister(self, websocket: WebSocket) -> SocketSession | None:
        """Leave every joined context and forget the session."""

        session = self._sessions.get(websocket)
        if session is None:
            return None
        await self.leave_room(session)
        self.leave_dm(session)
        await self.leave_channel(session)
        self._sessions.pop(websocket, None)
        realtime_connections.labels("sockets").dec()
        return session

    # ------------------------------------------------------------------
    # Context socket sets
    # ------------------------------------------------------------------

    def add(self, kind: ContextKind, context_id: str, websocket: WebSocket) -> None:
        bucket = self._contexts[kind].setdefault(context_id, set())
        if websocket not in bucket:
            bucket.add(websocket)
            realtime_connections.labels(kind.value).inc()

    def discard(self, kind: ContextKind, context_id: str, websocket: WebSocket) -> None:
        bucket = self._contexts[kind].get(context_id)
        if not bucket or websocket not in bucket:
            return
        bucket.remove(websocket)
        realtime_connections.labels(kind.value).dec()
        if not bucket:
            self._contexts[kind].pop(context_id, None)

    def sockets(self, kind: ContextKind, context_id: str) -> list[WebSocket]:
        return list(self._contexts[kind].get(context_id, ()))

    def sessions_in(self, kind: ContextKind, context_id: str) -> list[SocketSession]:
        result: list[SocketSession] = []
        for websocket in self.sockets(kind, context_id):
            session = self._sessions.get(websocket)
            if session is not None:
                result.append(session)
        return result

    def context_ids(self, kind: ContextKind) -> list[str]:
        return list(self._contexts[kind])

    def _iter_others(
        self, kind: ContextKind, context_id: str, excluding: WebSocket | None
    ) -> Iterator[SocketSession]:
        for websocket in self._contexts[kind].get(context_id, ()):
            if websocket is excluding:
                continue
            session = self._sessions.get(websocket)
            if session is not None:
                yield session

    # ------------------------------------------------------------------
    # Presence queries
    # ------------------------------------------------------------------

    def is_mask_present(self, room_id: str, mask_id: str, excluding: WebSocket | None = None) -> bool:
        return any(
            session.room_member is not None and session.room_member.mask_id == mask_id
            for session in self._iter_others(ContextKind.ROOM, room_id, excluding)
        )

    def is_user_present(self, channel_id: str, user_id: str, excluding: WebSocket | None = None) -> bool:
        return any(
            session.channel_member is not None and session.channel_member.user_id == user_id
            for session in self._iter_others(ContextKind.CHANNEL, channel_id, excluding)
        )

    def connected_room_members(self, room_id: str) -> list[RoomMemberState]:
        members: dict[str, RoomMemberState] = {}
        for session in self._iter_others(ContextKind.ROOM, room_id, None):
            if session.room_member is not None:
                members[session.room_member.mask_id] = session.room_member
        return list(members.values())

    def connected_channel_members(self, channel_id: str) -> list[ChannelMemberState]:
        members: dict[str, ChannelMemberState] = {}
        for session in self._iter_others(ContextKind.CHANNEL, channel_id, None):
            if session.channel_member is not None:
                members[session.channel_member.user_id] = session.channel_member
        return list(members.values())

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send(self, websocket: WebSocket, frame: dict[str, Any]) -> bool:
        return await safe_send_json(websocket, frame)

    async def send_error(self, websocket: WebSocket, message: str) -> bool:
        return await safe_send_json(websocket, encode_server_event("ERROR", {"message": message}))

    async def broadcast(
        self,
        kind: ContextKind,
        context_id: str,
        frame: dict[str, Any],
        *,
        exclude: Iterable[WebSocket] | None = None,
    ) -> None:
        exclude_set = set(exclude or [])
        for websocket in self.sockets(kind, context_id):
            if websocket in exclude_set:
                continue
            await safe_send_json(websocket, frame)

    # ------------------------------------------------------------------
    # Leaving
    # ------------------------------------------------------------------

    async def leave_room(self, session: SocketSession, should_broadcast: bool = True) -> None:
        room_id, member = session.room_id, session.room_member
        if room_id is None or member is None:
            return
        self.discard(ContextKind.ROOM, room_id, session.websocket)
        session.room_id = None
        session.room_member = None

        if should_broadcast and not self.is_mask_present(room_id, member.mask_id):
            frame = encode_server_event("MEMBER_LEFT", RoomMemberPayload(room_id=room_id, member=member))
            await self.broadcast(ContextKind.ROOM, room_id, frame)

    def leave_dm(self, session: SocketSession) -> None:
        if session.dm_thread_id is None:
            return
        self.discard(ContextKind.DM, session.dm_thread_id, session.websocket)
        session.dm_thread_id = None
        session.dm_mask_id = None

    async def leave_channel(self, session: SocketSession, should_broadcast: bool = True) -> None:
        channel_id, member = session.channel_id, session.channel_member
        if channel_id is None or member is None:
            return
        self.discard(ContextKind.CHANNEL, channel_id, session.websocket)
        session.channel_id = None
        session.channel_member = None

        if should_broadcast and not self.is_user_present(channel_id, member.user_id):
            frame = encode_server_event(
                "CHANNEL_MEMBER_LEFT", ChannelMemberPayload(channel_id=channel_id, member=member)
            )
            await self.broadcast(ContextKind.CHANNEL, channel_id, frame)

    async def close_all(self, code: int = 1001) -> None:
        """Close every registered socket and clear all state."""

        for websocket in list(self._sessions):
            if websocket.application_state == WebSocketState.CONNECTED:
                try:
                    await websocket.close(code=code)
                except RuntimeError:
                    logger.debug("Socket already closed during shutdown")
        for kind in ContextKind:
            for context_id in list(self._contexts[kind]):
                realtime_connections.labels(kind.value).dec(len(self._contexts[kind][context_id]))
            self._contexts[kind].clear()
        realtime_connections.labels("sockets").dec(len(self._sessions))
        self._sessions.clear()


__all__ = ["PresenceRegistry", "SocketSession", "safe_send_json"]
