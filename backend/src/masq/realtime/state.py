"""Full-state snapshots and incremental events for each context kind."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi.websockets import WebSocket

from app.schemas.payloads import (
    ChannelMessageOut,
    ChannelOut,
    DmMessageOut,
    DmParticipantOut,
    RoomMessageOut,
    RoomOut,
)
from app.schemas.socket import (
    ChannelStatePayload,
    DmStatePayload,
    RoomStatePayload,
    ServerEventType,
    ServerPayload,
    encode_server_event,
)
from masq.domain.repository import Repository

from .presence import PresenceRegistry
from .ratelimit import ContextKind

logger = logging.getLogger(__name__)

MAX_RECENT_MESSAGES = 50


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StateBroadcaster:
    """Builds context snapshots from the repository and the live registry."""

    def __init__(
        self,
        repository: Repository,
        presence: PresenceRegistry,
        *,
        max_recent_messages: int = MAX_RECENT_MESSAGES,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.presence = presence
        self.max_recent_messages = max_recent_messages
        self.clock = clock

    # Snapshots ---------------------------------------------------------

    async def room_state(self, room_id: str) -> RoomStatePayload | None:
        room = await self.repository.find_room_by_id(room_id)
        if room is None:
            return None
        # Rooms decay quickly, so the whole history is sent.
        messages = await self.repository.list_room_messages(room_id)
        return RoomStatePayload(
            room=RoomOut.model_validate(room),
            members=self.presence.connected_room_members(room_id),
            recent_messages=[RoomMessageOut.from_record(message) for message in messages],
            server_time=self.clock(),
        )

    async def dm_state(self, thread_id: str) -> DmStatePayload | None:
        thread = await self.repository.find_dm_thread_by_id(thread_id)
        if thread is None:
            return None
        participants = await self.repository.list_dm_participants(thread.id)
        messages = await self.repository.list_dm_messages(thread.id)
        return DmStatePayload(
            thread_id=thread.id,
            participants=[DmParticipantOut.from_record(participant) for participant in participants],
            recent_messages=[DmMessageOut.from_record(message) for message in self._recent(messages)],
        )

    async def channel_state(self, channel_id: str) -> ChannelStatePayload | None:
        channel = await self.repository.find_channel_by_id(channel_id)
        if channel is None:
            return None
        messages = await self.repository.list_server_messages(channel_id)
        return ChannelStatePayload(
            channel=ChannelOut.from_record(channel),
            members=self.presence.connected_channel_members(channel_id),
            recent_messages=[ChannelMessageOut.from_record(message) for message in self._recent(messages)],
        )

    def _recent(self, messages: list[Any]) -> list[Any]:
        return messages[-self.max_recent_messages :]

    # Emission ----------------------------------------------------------

    async def emit_room_state(self, room_id: str, target: WebSocket | None = None) -> None:
        payload = await self.room_state(room_id)
        if payload is not None:
            await self._emit(ContextKind.ROOM, room_id, "ROOM_STATE", payload, target)

    async def emit_dm_state(self, thread_id: str, target: WebSocket | None = None) -> None:
        payload = await self.dm_state(thread_id)
        if payload is not None:
            await self._emit(ContextKind.DM, thread_id, "DM_STATE", payload, target)

    async def emit_channel_state(self, channel_id: str, target: WebSocket | None = None) -> None:
        payload = await self.channel_state(channel_id)
        if payload is not None:
            await self._emit(ContextKind.CHANNEL, channel_id, "CHANNEL_STATE", payload, target)

    async def _emit(
        self,
        kind: ContextKind,
        context_id: str,
        event_type: ServerEventType,
        payload: ServerPayload,
        target: WebSocket | None,
    ) -> None:
        frame = encode_server_event(event_type, payload)
        if target is not None:
            await self.presence.send(target, frame)
            return
        await self.presence.broadcast(kind, context_id, frame)

    async def publish(
        self,
        kind: ContextKind,
        context_id: str,
        event_type: ServerEventType,
        payload: ServerPayload | dict[str, Any],
        *,
        exclude: WebSocket | None = None,
    ) -> None:
        """Broadcast an incremental event to every socket in the context."""

        frame = encode_server_event(event_type, payload)
        await self.presence.broadcast(kind, context_id, frame, exclude=[exclude] if exclude else None)


__all__ = ["MAX_RECENT_MESSAGES", "StateBroadcaster", "utcnow"]
