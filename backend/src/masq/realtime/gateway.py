"""WebSocket protocol handler: decodes client frames and runs the join and send flows."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable

from fastapi.websockets import WebSocket
from pydantic import ValidationError

from app.monitoring.metrics import realtime_events_total
from app.schemas.payloads import ChannelMemberState, RoomMemberState
from app.schemas.socket import (
    ChannelMemberPayload,
    ClientEvent,
    JoinChannelEvent,
    JoinChannelPayload,
    JoinDmEvent,
    JoinDmPayload,
    JoinRoomEvent,
    JoinRoomPayload,
    PingEvent,
    RoomMemberPayload,
    SendChannelMessageEvent,
    SendDmEvent,
    SendMessageEvent,
    encode_server_event,
    parse_client_event,
)
from app.services.permissions import resolve_effective_channel_mask
from masq.domain.errors import DomainError, ForbiddenError, NotFoundError
from masq.domain.repository import Repository

from .expiry import RoomExpiryScheduler
from .pipeline import MessagePipeline
from .presence import PresenceRegistry, SocketSession
from .ratelimit import ContextKind
from .state import StateBroadcaster, utcnow

logger = logging.getLogger(__name__)

INVALID_JSON_MESSAGE = "Invalid JSON payload"
INVALID_EVENT_MESSAGE = "Invalid socket event payload"
INTERNAL_ERROR_MESSAGE = "Internal server error"


class RealtimeGateway:
    """Per-connection protocol state machine on top of the presence registry."""

    def __init__(
        self,
        repository: Repository,
        presence: PresenceRegistry,
        state: StateBroadcaster,
        expiry: RoomExpiryScheduler,
        pipeline: MessagePipeline,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.repository = repository
        self.presence = presence
        self.state = state
        self.expiry = expiry
        self.pipeline = pipeline
        self.clock = clock

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self, websocket: WebSocket, user_id: str) -> SocketSession:
        session = self.presence.register(websocket, user_id)
        logger.info("Socket %s connected for user %s", session.id, user_id)
        return session

    async def disconnect(self, websocket: WebSocket) -> None:
        session = await self.presence.unregister(websocket)
        if session is not None:
            logger.info("Socket %s disconnected for user %s", session.id, session.user_id)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    async def handle_text(self, session: SocketSession, text: str) -> None:
        """Decode one text frame and dispatch it. Never raises for client mistakes."""

        try:
            raw: Any = json.loads(text)
        except ValueError:
            await self.presence.send_error(session.websocket, INVALID_JSON_MESSAGE)
            return
        await self.handle_raw(session, raw)

    async def handle_raw(self, session: SocketSession, raw: Any) -> None:
        try:
            event = parse_client_event(raw, max_body_length=self.pipeline.max_message_length)
        except ValidationError:
            await self.presence.send_error(session.websocket, INVALID_EVENT_MESSAGE)
            return

        realtime_events_total.labels(event.type, "in").inc()
        try:
            await self.dispatch(session, event)
        except DomainError as exc:
            await self.presence.send_error(session.websocket, exc.message)
        except Exception:
            logger.exception("Unhandled error while processing %s from user %s", event.type, session.user_id)
            await self.presence.send_error(session.websocket, INTERNAL_ERROR_MESSAGE)

    async def dispatch(self, session: SocketSession, event: ClientEvent) -> None:
        if isinstance(event, JoinRoomEvent):
            await self.join_room(session, event.data)
        elif isinstance(event, SendMessageEvent):
            await self.pipeline.send_room_message(session, event.data)
        elif isinstance(event, JoinDmEvent):
            await self.join_dm(session, event.data)
        elif isinstance(event, SendDmEvent):
            await self.pipeline.send_dm_message(session, event.data)
        elif isinstance(event, JoinChannelEvent):
            await self.join_channel(session, event.data)
        elif isinstance(event, SendChannelMessageEvent):
            await self.pipeline.send_channel_message(session, event.data)
        elif isinstance(event, PingEvent):
            await self.presence.send(session.websocket, encode_server_event("PONG", {}))

    # ------------------------------------------------------------------
    # Joins
    # ------------------------------------------------------------------

    async def join_room(self, session: SocketSession, payload: JoinRoomPayload) -> None:
        websocket = session.websocket
        mask = await self.repository.find_mask_by_id_for_user(payload.mask_id, session.user_id)
        if mask is None:
            raise ForbiddenError("Mask is not owned by the authenticated user")

        room = await self.repository.find_room_by_id(payload.room_id)
        if room is None:
            raise NotFoundError("Room not found")
        if room.is_expired(self.clock()):
            await self.expiry.expire_room(room.id, notify=websocket)
            return

        membership = await self.repository.find_room_membership_with_mask(room.id, mask.id)
        if membership is None:
            raise ForbiddenError("Mask is not a member of this room")

        was_present = self.presence.is_mask_present(room.id, mask.id, excluding=websocket)
        await self.presence.leave_room(session)

        member = RoomMemberState.from_membership(membership)
        session.room_id = room.id
        session.room_member = member
        self.presence.add(ContextKind.ROOM, room.id, websocket)
        await self.expiry.ensure_timer(room)
        if session.room_id != room.id:
            # The timer fired inline for a room that expired meanwhile.
            return

        await self.state.emit_room_state(room.id, target=websocket)
        if not was_present:
            await self.state.publish(
                ContextKind.ROOM,
                room.id,
                "MEMBER_JOINED",
                RoomMemberPayload(room_id=room.id, member=member),
                exclude=websocket,
            )
        await self.state.emit_room_state(room.id)

    async def join_dm(self, session: SocketSession, payload: JoinDmPayload) -> None:
        websocket = session.websocket
        mask = await self.repository.find_mask_by_id_for_user(payload.mask_id, session.user_id)
        if mask is None:
            raise ForbiddenError("Mask is not owned by the authenticated user")

        thread = await self.repository.find_dm_thread_by_id(payload.thread_id)
        if thread is None:
            raise NotFoundError("DM thread not found")
        participant = None
        if thread.peer_of(session.user_id) is not None:
            participant = await self.repository.find_dm_participant(thread.id, session.user_id)
        if participant is None:
            raise ForbiddenError("Not authorized for this DM thread")

        await self.repository.upsert_dm_participant(
            thread_id=thread.id, user_id=session.user_id, active_mask_id=mask.id
        )
        self.presence.leave_dm(session)
        session.dm_thread_id = thread.id
        session.dm_mask_id = mask.id
        self.presence.add(ContextKind.DM, thread.id, websocket)

        await self.state.emit_dm_state(thread.id, target=websocket)
        await self.state.emit_dm_state(thread.id)

    async def join_channel(self, session: SocketSession, payload: JoinChannelPayload) -> None:
        websocket = session.websocket
        channel = await self.repository.find_channel_by_id(payload.channel_id)
        if channel is None:
            raise NotFoundError("Channel not found")
        server = await self.repository.find_server_by_id(channel.server_id)
        member = await self.repository.find_server_member(channel.server_id, session.user_id)
        if server is None or member is None:
            raise ForbiddenError("You are not a member of this server")

        mask = await resolve_effective_channel_mask(self.repository, server, channel, member)
        was_present = self.presence.is_user_present(channel.id, session.user_id, excluding=websocket)
        await self.presence.leave_channel(session)

        snapshot = ChannelMemberState.from_member(member, mask)
        session.channel_id = channel.id
        session.channel_member = snapshot
        self.presence.add(ContextKind.CHANNEL, channel.id, websocket)

        await self.state.emit_channel_state(channel.id, target=websocket)
        if not was_present:
            await self.state.publish(
                ContextKind.CHANNEL,
                channel.id,
                "CHANNEL_MEMBER_JOINED",
                ChannelMemberPayload(channel_id=channel.id, member=snapshot),
                exclude=websocket,
            )
        await self.state.emit_channel_state(channel.id)


__all__ = ["INTERNAL_ERROR_MESSAGE", "INVALID_EVENT_MESSAGE", "INVALID_JSON_MESSAGE", "RealtimeGateway"]
