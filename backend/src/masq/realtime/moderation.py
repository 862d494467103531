"""Room lifecycle and host moderation: create, join, mute, exile and lock."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from app.models.enums import MembershipRole, ModerationAction, RoomKind
from app.schemas.socket import ModerationEventPayload
from masq.domain.errors import (
    ForbiddenError,
    GoneError,
    LockedError,
    NotFoundError,
    ValidationFailedError,
)
from masq.domain.records import (
    MaskRecord,
    MaskRoomRecord,
    RoomMembershipRecord,
    RoomModerationRecord,
    RoomRecord,
)
from masq.domain.repository import Repository

from .expiry import RoomExpiryScheduler
from .presence import PresenceRegistry
from .ratelimit import ContextKind
from .state import StateBroadcaster, utcnow

logger = logging.getLogger(__name__)

EXILED_MESSAGE = "You were exiled from this room"


@dataclass(slots=True, frozen=True)
class HostActor:
    room: RoomRecord
    mask: MaskRecord
    membership: RoomMembershipRecord


class RoomModerationService:
    def __init__(
        self,
        repository: Repository,
        presence: PresenceRegistry,
        state: StateBroadcaster,
        expiry: RoomExpiryScheduler,
        *,
        clock: Callable[[], datetime] = utcnow,
        default_mute_minutes: int = 10,
        max_mute_minutes: int = 60,
        default_message_decay_minutes: int = 8,
        ephemeral_room_ttl_minutes: int = 120,
    ) -> None:
        self.repository = repository
        self.presence = presence
        self.state = state
        self.expiry = expiry
        self.clock = clock
        self.default_mute_minutes = default_mute_minutes
        self.max_mute_minutes = max_mute_minutes
        self.default_message_decay_minutes = default_message_decay_minutes
        self.ephemeral_room_ttl = timedelta(minutes=ephemeral_room_ttl_minutes)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_room(
        self,
        user_id: str,
        *,
        mask_id: str,
        title: str,
        kind: RoomKind,
        expires_at: datetime | None = None,
        locked: bool = False,
        fog_level: int | None = None,
        message_decay_minutes: int | None = None,
    ) -> RoomRecord:
        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")

        now = self.clock()
        if expires_at is None and kind is RoomKind.EPHEMERAL:
            expires_at = now + self.ephemeral_room_ttl
        if expires_at is not None and expires_at <= now:
            raise ValidationFailedError("expiresAt must be in the future")

        room = await self.repository.create_room(
            title=title,
            kind=kind,
            locked=locked,
            fog_level=fog_level if fog_level is not None else 0,
            message_decay_minutes=(
                message_decay_minutes
                if message_decay_minutes is not None
                else self.default_message_decay_minutes
            ),
            expires_at=expires_at,
        )
        await self.repository.add_room_membership(room_id=room.id, mask_id=mask.id, role=MembershipRole.HOST)
        await self.expiry.ensure_timer(room)
        return room

    async def join_room(self, user_id: str, room_id: str, mask_id: str) -> RoomMembershipRecord:
        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")

        room = await self.repository.find_room_by_id(room_id)
        if room is None:
            raise NotFoundError("Room not found")
        if room.is_expired(self.clock()):
            raise GoneError("Room is expired")

        membership = await self.repository.find_room_membership_with_mask(room.id, mask.id)
        if membership is not None:
            return membership
        if await self.repository.is_exiled(room.id, mask.id):
            raise ForbiddenError(EXILED_MESSAGE)
        if room.locked:
            raise LockedError("Room is locked")
        return await self.repository.add_room_membership(
            room_id=room.id, mask_id=mask.id, role=MembershipRole.MEMBER
        )

    async def list_rooms(self, user_id: str, mask_id: str) -> list[MaskRoomRecord]:
        """Unexpired rooms one of the caller's masks belongs to."""

        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")
        return await self.repository.list_rooms_for_mask(mask.id, self.clock())

    # ------------------------------------------------------------------
    # Host actions
    # ------------------------------------------------------------------

    async def authorize_host_actor(self, user_id: str, room_id: str, actor_mask_id: str) -> HostActor:
        mask = await self.repository.find_mask_by_id_for_user(actor_mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Actor mask is not owned by the authenticated user")

        room = await self.repository.find_room_by_id(room_id)
        if room is None:
            raise NotFoundError("Room not found")
        if room.is_expired(self.clock()):
            raise GoneError("Room is expired")

        membership = await self.repository.find_room_membership_with_mask(room.id, mask.id)
        if membership is None or membership.role is not MembershipRole.HOST:
            raise ForbiddenError("Only room hosts can perform this action")
        return HostActor(room=room, mask=mask, membership=membership)

    async def _require_member_target(self, room_id: str, target_mask_id: str, verb: str) -> RoomMembershipRecord:
        target = await self.repository.find_room_membership_with_mask(room_id, target_mask_id)
        if target is None:
            raise NotFoundError("Target mask is not in this room")
        if target.role is not MembershipRole.MEMBER:
            raise ValidationFailedError(f"Only member masks can be {verb}")
        return target

    async def mute(
        self,
        user_id: str,
        room_id: str,
        *,
        actor_mask_id: str,
        target_mask_id: str,
        minutes: int | None = None,
    ) -> RoomModerationRecord:
        await self.authorize_host_actor(user_id, room_id, actor_mask_id)
        if target_mask_id == actor_mask_id:
            raise ValidationFailedError("Host cannot mute themselves")
        await self._require_member_target(room_id, target_mask_id, "muted")

        requested = minutes if minutes is not None else self.default_mute_minutes
        duration = max(1, min(requested, self.max_mute_minutes))
        expires_at = self.clock() + timedelta(minutes=duration)

        moderation = await self.repository.create_room_moderation(
            room_id=room_id,
            actor_mask_id=actor_mask_id,
            target_mask_id=target_mask_id,
            action_type=ModerationAction.MUTE,
            expires_at=expires_at,
        )
        await self._announce(
            room_id,
            ModerationEventPayload(
                room_id=room_id,
                action_type=ModerationAction.MUTE,
                actor_mask_id=actor_mask_id,
                target_mask_id=target_mask_id,
                expires_at=expires_at,
                created_at=moderation.created_at,
            ),
        )
        return moderation

    async def exile(
        self, user_id: str, room_id: str, *, actor_mask_id: str, target_mask_id: str
    ) -> RoomModerationRecord:
        await self.authorize_host_actor(user_id, room_id, actor_mask_id)
        if target_mask_id == actor_mask_id:
            raise ValidationFailedError("Host cannot exile themselves")
        await self._require_member_target(room_id, target_mask_id, "exiled")

        await self.repository.remove_room_membership(room_id, target_mask_id)
        moderation = await self.repository.create_room_moderation(
            room_id=room_id,
            actor_mask_id=actor_mask_id,
            target_mask_id=target_mask_id,
            action_type=ModerationAction.EXILE,
            expires_at=None,
        )
        await self.disconnect_mask(room_id, target_mask_id)
        await self._announce(
            room_id,
            ModerationEventPayload(
                room_id=room_id,
                action_type=ModerationAction.EXILE,
                actor_mask_id=actor_mask_id,
                target_mask_id=target_mask_id,
                created_at=moderation.created_at,
            ),
        )
        return moderation

    async def set_locked(self, user_id: str, room_id: str, *, actor_mask_id: str, locked: bool) -> RoomRecord:
        await self.authorize_host_actor(user_id, room_id, actor_mask_id)
        room = await self.repository.set_room_locked(room_id, locked)
        await self._announce(
            room_id,
            ModerationEventPayload(
                room_id=room_id,
                action_type=ModerationAction.LOCK,
                actor_mask_id=actor_mask_id,
                locked=locked,
                created_at=self.clock(),
            ),
        )
        return room

    async def disconnect_mask(self, room_id: str, mask_id: str) -> None:
        """Drop every live socket presenting *mask_id* without a MEMBER_LEFT event."""

        for session in self.presence.sessions_in(ContextKind.ROOM, room_id):
            if session.room_member is None or session.room_member.mask_id != mask_id:
                continue
            await self.presence.send_error(session.websocket, EXILED_MESSAGE)
            await self.presence.leave_room(session, should_broadcast=False)

    async def _announce(self, room_id: str, event: ModerationEventPayload) -> None:
        logger.info("Room %s moderation %s by %s", room_id, event.action_type.value, event.actor_mask_id)
        await self.state.publish(ContextKind.ROOM, room_id, "MODERATION_EVENT", event)
        await self.state.emit_room_state(room_id)


__all__ = ["EXILED_MESSAGE", "HostActor", "RoomModerationService"]
