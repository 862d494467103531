"""Send path shared by room, DM and channel messages.

Each send re-checks the sender against repository state, applies the rate
limiter and the sanitizer, validates an optional image attachment, persists
the message and only then broadcasts it to the whole context.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from app.models.enums import ContextType, UploadKind
from app.monitoring.metrics import chat_messages_total, chat_rate_limited_total
from app.schemas.payloads import ChannelMemberState, ChannelMessageOut, DmMessageOut, RoomMessageOut
from app.schemas.socket import (
    NewChannelMessagePayload,
    NewDmMessagePayload,
    NewMessagePayload,
    SendChannelMessagePayload,
    SendDmPayload,
    SendMessagePayload,
)
from app.services.permissions import resolve_effective_channel_mask
from masq.domain.errors import (
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    ValidationFailedError,
)
from masq.domain.records import DmMessageRecord, MessageRecord, ServerMessageRecord, UploadRecord
from masq.domain.repository import Repository

from .expiry import RoomExpiryScheduler
from .presence import PresenceRegistry, SocketSession
from .ratelimit import ContextKind, MessageRateLimiter
from .sanitize import MAX_MESSAGE_LENGTH, sanitize_message_body
from .state import StateBroadcaster, utcnow

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Slow down message sending."
EMPTY_BODY_MESSAGE = "Message body is empty after sanitization"


def isoformat_z(value: datetime) -> str:
    """``2024-05-01T12:00:00.000Z`` style timestamp."""

    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class MessagePipeline:
    def __init__(
        self,
        repository: Repository,
        presence: PresenceRegistry,
        state: StateBroadcaster,
        expiry: RoomExpiryScheduler,
        rate_limiter: MessageRateLimiter,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_message_length: int = MAX_MESSAGE_LENGTH,
    ) -> None:
        self.repository = repository
        self.presence = presence
        self.state = state
        self.expiry = expiry
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.max_message_length = max_message_length

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def validate_upload(
        self,
        user_id: str,
        upload_id: str | None,
        context_type: ContextType,
        context_id: str,
    ) -> UploadRecord | None:
        if not upload_id:
            return None
        upload = await self.repository.find_upload_by_id(upload_id)
        if upload is None:
            raise NotFoundError("Attachment not found")
        if upload.owner_user_id != user_id:
            raise ForbiddenError("Attachment is not owned by the authenticated user")
        if upload.kind != UploadKind.MESSAGE_IMAGE:
            raise ValidationFailedError("Attachment type is not valid for messages")
        if upload.context_type != context_type or upload.context_id != context_id:
            raise ValidationFailedError("Attachment does not belong to this chat context")
        return upload

    def _check_rate(self, session: SocketSession, kind: ContextKind) -> None:
        if not self.rate_limiter.allow(session.rate_windows, kind):
            chat_rate_limited_total.labels(kind.value).inc()
            logger.debug("Rate limited %s send from user %s", kind.value, session.user_id)
            raise RateLimitedError(RATE_LIMIT_MESSAGE)

    async def _prepare(
        self,
        session: SocketSession,
        kind: ContextKind,
        context_type: ContextType,
        context_id: str,
        body: str,
        image_upload_id: str | None,
    ) -> tuple[str, UploadRecord | None]:
        self._check_rate(session, kind)
        clean = sanitize_message_body(body, self.max_message_length)
        upload = await self.validate_upload(session.user_id, image_upload_id, context_type, context_id)
        if not clean and upload is None:
            raise ValidationFailedError(EMPTY_BODY_MESSAGE)
        return clean, upload

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def send_room_message(self, session: SocketSession, payload: SendMessagePayload) -> MessageRecord | None:
        if session.room_id is None or session.room_member is None:
            raise ValidationFailedError("Join a room before sending messages")
        if session.room_id != payload.room_id or session.room_member.mask_id != payload.mask_id:
            raise ValidationFailedError("Message does not match active room or mask")

        room = await self.repository.find_room_by_id(payload.room_id)
        if room is None:
            await self.presence.leave_room(session)
            raise NotFoundError("Room not found")
        if room.is_expired(self.clock()):
            await self.expiry.expire_room(room.id, notify=session.websocket)
            return None

        membership = await self.repository.find_room_membership_with_mask(room.id, payload.mask_id)
        if membership is None or membership.mask.user_id != session.user_id:
            raise ForbiddenError("Mask is not authorized for this room")

        mute = await self.repository.find_active_mute(room.id, payload.mask_id, self.clock())
        if mute is not None:
            until = isoformat_z(mute.expires_at) if mute.expires_at else "unknown"
            raise ForbiddenError(f"Muted until {until}")

        body, upload = await self._prepare(
            session, ContextKind.ROOM, ContextType.EPHEMERAL_ROOM, room.id, payload.body, payload.image_upload_id
        )
        message = await self.repository.create_message(
            room_id=room.id,
            mask_id=payload.mask_id,
            body=body,
            image_upload_id=upload.id if upload else None,
        )
        chat_messages_total.labels(ContextKind.ROOM.value).inc()
        await self.state.publish(
            ContextKind.ROOM,
            room.id,
            "NEW_MESSAGE",
            NewMessagePayload(message=RoomMessageOut.from_record(message)),
        )
        return message

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    async def send_dm_message(self, session: SocketSession, payload: SendDmPayload) -> DmMessageRecord:
        if session.dm_thread_id is None or session.dm_mask_id is None:
            raise ValidationFailedError("Join a DM before sending messages")
        if session.dm_thread_id != payload.thread_id or session.dm_mask_id != payload.mask_id:
            raise ValidationFailedError("Message does not match active DM or mask")

        thread = await self.repository.find_dm_thread_by_id(payload.thread_id)
        if thread is None:
            self.presence.leave_dm(session)
            raise NotFoundError("DM thread not found")
        participant = None
        if thread.peer_of(session.user_id) is not None:
            participant = await self.repository.find_dm_participant(thread.id, session.user_id)
        if participant is None:
            self.presence.leave_dm(session)
            raise ForbiddenError("Not authorized for this DM thread")
        if participant.active_mask_id != payload.mask_id:
            raise ForbiddenError("Mask does not match DM participant state")

        mask = await self.repository.find_mask_by_id_for_user(payload.mask_id, session.user_id)
        if mask is None:
            raise ForbiddenError("Mask is not owned by the authenticated user")

        body, upload = await self._prepare(
            session, ContextKind.DM, ContextType.DM_THREAD, thread.id, payload.body, payload.image_upload_id
        )
        message = await self.repository.create_dm_message(
            thread_id=thread.id,
            mask_id=mask.id,
            body=body,
            image_upload_id=upload.id if upload else None,
        )
        chat_messages_total.labels(ContextKind.DM.value).inc()
        await self.state.publish(
            ContextKind.DM,
            thread.id,
            "NEW_DM_MESSAGE",
            NewDmMessagePayload(thread_id=thread.id, message=DmMessageOut.from_record(message)),
        )
        return message

    # ------------------------------------------------------------------
    # Server channels
    # ------------------------------------------------------------------

    async def send_channel_message(
        self, session: SocketSession, payload: SendChannelMessagePayload
    ) -> ServerMessageRecord:
        if session.channel_id is None or session.channel_member is None:
            raise ValidationFailedError("Join a channel before sending messages")
        if session.channel_id != payload.channel_id:
            raise ValidationFailedError("Message does not match active channel")

        channel = await self.repository.find_channel_by_id(payload.channel_id)
        if channel is None:
            await self.presence.leave_channel(session)
            raise NotFoundError("Channel not found")
        server = await self.repository.find_server_by_id(channel.server_id)
        member = await self.repository.find_server_member(channel.server_id, session.user_id)
        if server is None or member is None:
            await self.presence.leave_channel(session)
            raise ForbiddenError("You are not a member of this server")

        body, upload = await self._prepare(
            session,
            ContextKind.CHANNEL,
            ContextType.SERVER_CHANNEL,
            channel.id,
            payload.body,
            payload.image_upload_id,
        )

        mask = await resolve_effective_channel_mask(self.repository, server, channel, member)
        if mask.user_id != session.user_id:
            raise ForbiddenError("Mask is not owned by the authenticated user")
        session.channel_member = ChannelMemberState.from_member(member, mask)

        message = await self.repository.create_server_message(
            channel_id=channel.id,
            mask_id=mask.id,
            body=body,
            image_upload_id=upload.id if upload else None,
        )
        chat_messages_total.labels(ContextKind.CHANNEL.value).inc()
        await self.state.publish(
            ContextKind.CHANNEL,
            channel.id,
            "NEW_CHANNEL_MESSAGE",
            NewChannelMessagePayload(message=ChannelMessageOut.from_record(message)),
        )
        return message


__all__ = ["EMPTY_BODY_MESSAGE", "MessagePipeline", "RATE_LIMIT_MESSAGE", "isoformat_z"]
