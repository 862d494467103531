"""Voice session broker between chat contexts and the media server."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from app.models.enums import ContextType, MembershipRole, ServerMemberRole
from app.monitoring.metrics import sfu_failures_total, voice_sessions_active
from app.services.permissions import resolve_effective_channel_mask
from masq.domain.errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ServiceUnavailableError,
    UpstreamFailureError,
    ValidationFailedError,
)
from masq.domain.records import (
    ChannelRecord,
    DmParticipantRecord,
    DmThreadRecord,
    MaskRecord,
    RoomMembershipRecord,
    RoomRecord,
    ServerMemberRecord,
    ServerRecord,
    VoiceParticipantRecord,
    VoiceSessionRecord,
)
from masq.domain.repository import Repository
from masq.realtime.state import utcnow

from .sfu import SFU, SFUError, ParticipantMetadata, parse_participant_metadata

logger = logging.getLogger(__name__)

SFU_UNAVAILABLE_MESSAGE = "LiveKit is not configured on this environment"
SERVER_ADMIN_ROLES = frozenset({ServerMemberRole.OWNER, ServerMemberRole.ADMIN})
SERVER_ROLE_WEIGHT = {ServerMemberRole.MEMBER: 0, ServerMemberRole.ADMIN: 1, ServerMemberRole.OWNER: 2}


def role_at_least(role: ServerMemberRole, minimum: ServerMemberRole) -> bool:
    return SERVER_ROLE_WEIGHT[role] >= SERVER_ROLE_WEIGHT[minimum]


@dataclass(slots=True, frozen=True)
class RtcContext:
    """An actor authorized to take part in the voice call of one context."""

    context_type: ContextType
    context_id: str
    mask: MaskRecord
    server: ServerRecord | None = None
    channel: ChannelRecord | None = None
    member: ServerMemberRecord | None = None
    thread: DmThreadRecord | None = None
    participant: DmParticipantRecord | None = None
    room: RoomRecord | None = None
    membership: RoomMembershipRecord | None = None


@dataclass(slots=True, frozen=True)
class VoiceJoin:
    session: VoiceSessionRecord
    token: str
    livekit_url: str
    participant_cap: int | None
    can_screenshare: bool
    participants: list[VoiceParticipantRecord]


def build_room_name(context_type: ContextType, context_id: str) -> str:
    return f"masq-{context_type.value.lower()}-{context_id}-{uuid.uuid4().hex[:8]}"


def build_identity(user_id: str, mask_id: str) -> str:
    return f"{user_id}:{mask_id}:{uuid.uuid4().hex[:8]}"


class VoiceBroker:
    def __init__(
        self,
        repository: Repository,
        sfu: SFU | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        server_participant_cap: int = 12,
    ) -> None:
        self.repository = repository
        self.sfu = sfu
        self.clock = clock
        self.server_participant_cap = server_participant_cap
        # Sessions this process opened; only those count towards the gauge.
        self._opened: set[str] = set()

    def participant_cap_for(self, server: ServerRecord) -> int | None:
        """Call cap of a server; its own override wins over the configured one and 0 means no cap."""

        cap = self.server_participant_cap if server.rtc_participant_cap is None else server.rtc_participant_cap
        return cap if cap > 0 else None

    def _require_sfu(self) -> SFU:
        if self.sfu is None:
            raise ServiceUnavailableError(SFU_UNAVAILABLE_MESSAGE)
        return self.sfu

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    async def authorize_context(
        self, user_id: str, context_type: ContextType, context_id: str, mask_id: str
    ) -> RtcContext:
        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")

        if context_type is ContextType.SERVER_CHANNEL:
            channel = await self.repository.find_channel_by_id(context_id)
            if channel is None:
                raise NotFoundError("Channel not found")
            server = await self.repository.find_server_by_id(channel.server_id)
            member = await self.repository.find_server_member(channel.server_id, user_id)
            if server is None:
                raise NotFoundError("Server not found")
            if member is None:
                raise ForbiddenError("You are not a member of this server")
            effective = await resolve_effective_channel_mask(self.repository, server, channel, member)
            if effective.id != mask.id:
                raise ForbiddenError("Mask does not match your active channel identity")
            return RtcContext(context_type, context_id, mask, server=server, channel=channel, member=member)

        if context_type is ContextType.DM_THREAD:
            thread = await self.repository.find_dm_thread_by_id(context_id)
            if thread is None:
                raise NotFoundError("DM thread not found")
            participant = await self.repository.find_dm_participant(thread.id, user_id)
            peer_id = thread.peer_of(user_id)
            if participant is None or peer_id is None:
                raise ForbiddenError("Not authorized for this DM thread")
            if not await self.repository.find_friendship_between_users(user_id, peer_id):
                raise ForbiddenError("Only friends can join DM calls")
            return RtcContext(context_type, context_id, mask, thread=thread, participant=participant)

        room = await self.repository.find_room_by_id(context_id)
        if room is None:
            raise NotFoundError("Room not found")
        if room.is_expired(self.clock()):
            raise GoneError("Room is expired")
        membership = await self.repository.find_room_membership_with_mask(room.id, mask.id)
        if membership is None:
            raise ForbiddenError("Mask is not a member of this room")
        return RtcContext(context_type, context_id, mask, room=room, membership=membership)

    def _require_moderator(self, actor: RtcContext, verb: str) -> None:
        if actor.context_type is ContextType.SERVER_CHANNEL:
            if actor.member is None or actor.member.role not in SERVER_ADMIN_ROLES:
                raise ForbiddenError(f"Only server owners/admins can {verb}")
        elif actor.context_type is ContextType.EPHEMERAL_ROOM:
            if actor.membership is None or actor.membership.role is not MembershipRole.HOST:
                raise ForbiddenError(f"Only room hosts can {verb}")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def ensure_active_session(self, context_type: ContextType, context_id: str) -> VoiceSessionRecord:
        session = await self.repository.find_active_voice_session_by_context(context_type, context_id)
        if session is not None:
            return session
        session = await self.repository.create_voice_session(
            context_type=context_type,
            context_id=context_id,
            livekit_room_name=build_room_name(context_type, context_id),
        )
        self._opened.add(session.id)
        voice_sessions_active.inc()
        logger.info("Opened voice session %s for %s %s", session.id, context_type.value, context_id)
        return session

    async def join(self, user_id: str, context_type: ContextType, context_id: str, mask_id: str) -> VoiceJoin:
        sfu = self._require_sfu()
        actor = await self.authorize_context(user_id, context_type, context_id, mask_id)

        participant_cap: int | None = None
        can_screenshare = True
        if actor.server is not None and actor.member is not None:
            participant_cap = self.participant_cap_for(actor.server)
            can_screenshare = role_at_least(actor.member.role, actor.server.screenshare_minimum_role)

        session = await self.ensure_active_session(context_type, context_id)
        existing = await self.repository.list_active_voice_participants(session.id)
        mine = [p for p in existing if p.user_id == user_id and p.mask_id == actor.mask.id]
        was_muted = any(p.is_server_muted for p in mine)
        projected = len(existing) if mine else len(existing) + 1
        if participant_cap is not None and projected > participant_cap:
            raise ConflictError(f"Participant cap reached for this server call ({participant_cap})")

        await self.repository.mark_voice_participants_left(session.id, user_id, self.clock())
        await self.repository.create_voice_participant(
            voice_session_id=session.id,
            user_id=user_id,
            mask_id=actor.mask.id,
            is_server_muted=was_muted,
        )
        participants = await self.repository.list_active_voice_participants(session.id)

        metadata = ParticipantMetadata(
            user_id=user_id,
            mask_id=actor.mask.id,
            display_name=actor.mask.display_name,
            color=actor.mask.color,
            avatar_seed=actor.mask.avatar_seed,
            context_type=context_type.value,
            context_id=context_id,
        )
        token = sfu.issue_token(
            room_name=session.livekit_room_name,
            identity=build_identity(user_id, actor.mask.id),
            display_name=actor.mask.display_name,
            metadata=metadata,
            can_publish=not was_muted,
        )
        return VoiceJoin(
            session=session,
            token=token,
            livekit_url=sfu.url,
            participant_cap=participant_cap,
            can_screenshare=can_screenshare,
            participants=participants,
        )

    async def leave(self, user_id: str, voice_session_id: str) -> None:
        session = await self.repository.find_voice_session_by_id(voice_session_id)
        if session is None:
            raise NotFoundError("Voice session not found")
        if session.ended_at is not None:
            return

        active = await self.repository.list_active_voice_participants(session.id)
        if not any(participant.user_id == user_id for participant in active):
            raise ForbiddenError("Not authorized for this voice session")

        await self.repository.mark_voice_participants_left(session.id, user_id, self.clock())
        if not await self.repository.list_active_voice_participants(session.id):
            await self.terminate(session)

    async def _load_live_session(self, voice_session_id: str) -> VoiceSessionRecord:
        session = await self.repository.find_voice_session_by_id(voice_session_id)
        if session is None or session.ended_at is not None:
            raise NotFoundError("Voice session not found")
        return session

    async def mute(
        self, user_id: str, voice_session_id: str, *, actor_mask_id: str, target_mask_id: str
    ) -> list[VoiceParticipantRecord]:
        session = await self._load_live_session(voice_session_id)
        sfu = self._require_sfu()
        actor = await self.authorize_context(user_id, session.context_type, session.context_id, actor_mask_id)
        if session.context_type is ContextType.DM_THREAD:
            raise ValidationFailedError("DM voice calls do not support server mute")
        self._require_moderator(actor, "mute participants")
        if actor_mask_id == target_mask_id:
            raise ValidationFailedError("Cannot mute your own mask")

        active = await self.repository.list_active_voice_participants(session.id)
        if not any(participant.mask_id == target_mask_id for participant in active):
            raise NotFoundError("Target participant is not active in this voice session")

        try:
            live = await sfu.list_participants(session.livekit_room_name)
            for participant in live:
                metadata = parse_participant_metadata(participant.metadata)
                if metadata is not None and metadata.mask_id == target_mask_id:
                    await sfu.revoke_publish(session.livekit_room_name, participant.identity)
        except SFUError as exc:
            sfu_failures_total.labels("mute").inc()
            logger.warning(
                "Failed to apply mute policy for mask %s in session %s", target_mask_id, session.id, exc_info=exc
            )
            raise UpstreamFailureError("Failed to apply mute policy to media session") from exc

        await self.repository.set_voice_participants_muted(session.id, target_mask_id, True)
        return await self.repository.list_active_voice_participants(session.id)

    async def end(self, user_id: str, voice_session_id: str, *, actor_mask_id: str) -> VoiceSessionRecord:
        session = await self._load_live_session(voice_session_id)
        actor = await self.authorize_context(user_id, session.context_type, session.context_id, actor_mask_id)
        self._require_moderator(actor, "end calls")
        return await self.terminate(session)

    async def terminate(self, session: VoiceSessionRecord) -> VoiceSessionRecord:
        """End *session*, mark everyone left and drop the media room (best effort)."""

        if session.ended_at is not None:
            return session
        ended_at = self.clock()
        active = await self.repository.list_active_voice_participants(session.id)
        for user_id in {participant.user_id for participant in active}:
            await self.repository.mark_voice_participants_left(session.id, user_id, ended_at)
        ended = await self.repository.end_voice_session(session.id, ended_at)
        if session.id in self._opened:
            self._opened.discard(session.id)
            voice_sessions_active.dec()
        logger.info("Ended voice session %s", session.id)

        if self.sfu is not None:
            try:
                await self.sfu.delete_room(session.livekit_room_name)
            except SFUError as exc:
                sfu_failures_total.labels("delete_room").inc()
                logger.warning("Failed to delete media room %s: %s", session.livekit_room_name, exc)
        return ended

    async def terminate_for_context(
        self, context_type: ContextType, context_id: str
    ) -> VoiceSessionRecord | None:
        session = await self.repository.find_active_voice_session_by_context(context_type, context_id)
        if session is None:
            return None
        return await self.terminate(session)


__all__ = ["RtcContext", "VoiceBroker", "VoiceJoin", "build_identity", "build_room_name", "role_at_least"]
