"""Keeps cached channel and DM identities of live sockets in step with the repository.

Whenever the mask a member presents can change (server identity mode, server
mask, per-channel override, assigned roles), every affected live session is
re-resolved from repository state and the channel state is re-broadcast.
"""

from __future__ import annotations

import logging
from typing import Sequence

from app.models.enums import ChannelIdentityMode, ServerMemberRole, ServerPermission
from app.schemas.payloads import ChannelMemberState
from app.services.permissions import has_any_permission, has_permission, resolve_effective_channel_mask
from masq.domain.errors import ForbiddenError, NotFoundError, ValidationFailedError
from masq.domain.records import (
    ChannelMemberIdentityRecord,
    DmParticipantRecord,
    ServerMemberRecord,
    ServerRecord,
)
from masq.domain.repository import Repository

from .presence import PresenceRegistry, SocketSession
from .ratelimit import ContextKind
from .state import StateBroadcaster

logger = logging.getLogger(__name__)

REMOVED_FROM_SERVER_MESSAGE = "You were removed from this server"
CHANNEL_DELETED_MESSAGE = "Channel was deleted by server owner"


class IdentityService:
    def __init__(self, repository: Repository, presence: PresenceRegistry, state: StateBroadcaster) -> None:
        self.repository = repository
        self.presence = presence
        self.state = state

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_member(self, server_id: str, user_id: str) -> tuple[ServerRecord, ServerMemberRecord]:
        server = await self.repository.find_server_by_id(server_id)
        if server is None:
            raise NotFoundError("Server not found")
        member = await self.repository.find_server_member(server_id, user_id)
        if member is None:
            raise ForbiddenError("You are not a member of this server")
        return server, member

    async def _channel_sessions_in_server(
        self, server_id: str, user_id: str | None = None
    ) -> list[tuple[SocketSession, str]]:
        channel_ids = {channel.id for channel in await self.repository.list_server_channels(server_id)}
        return [
            (session, session.channel_id)
            for session in self.presence.sessions()
            if session.channel_id in channel_ids and (user_id is None or session.user_id == user_id)
        ]

    async def _refresh(self, sessions: list[tuple[SocketSession, str]], server_id: str) -> None:
        server = await self.repository.find_server_by_id(server_id)
        if server is None:
            return
        touched: list[str] = []
        for session, channel_id in sessions:
            channel = await self.repository.find_channel_by_id(channel_id)
            member = await self.repository.find_server_member(server_id, session.user_id)
            if channel is None or member is None:
                continue
            mask = await resolve_effective_channel_mask(self.repository, server, channel, member)
            session.channel_member = ChannelMemberState.from_member(member, mask)
            if channel_id not in touched:
                touched.append(channel_id)
        for channel_id in touched:
            await self.state.emit_channel_state(channel_id)

    async def refresh_server_sessions(self, server_id: str, user_id: str | None = None) -> None:
        """Re-resolve the channel identity of live sessions in *server_id*."""

        await self._refresh(await self._channel_sessions_in_server(server_id, user_id), server_id)

    # ------------------------------------------------------------------
    # Identity mutations
    # ------------------------------------------------------------------

    async def update_server_settings(
        self, user_id: str, server_id: str, *, channel_identity_mode: ChannelIdentityMode
    ) -> ServerRecord:
        _, member = await self._require_member(server_id, user_id)
        if not has_permission(member, ServerPermission.MANAGE_MEMBERS):
            raise ForbiddenError("Missing ManageMembers permission")
        server = await self.repository.update_server_settings(server_id, channel_identity_mode=channel_identity_mode)
        logger.info("Server %s identity mode set to %s", server_id, channel_identity_mode.value)
        await self.refresh_server_sessions(server_id)
        return server

    async def update_server_mask(self, user_id: str, server_id: str, mask_id: str) -> ServerMemberRecord:
        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")
        if await self.repository.find_server_member(server_id, user_id) is None:
            raise ForbiddenError("You are not a member of this server")
        updated = await self.repository.update_server_member_mask(server_id, user_id, mask.id)
        await self.refresh_server_sessions(server_id, user_id)
        return updated

    async def set_member_roles(
        self, actor_user_id: str, server_id: str, target_user_id: str, role_ids: Sequence[str]
    ) -> ServerMemberRecord:
        _, actor = await self._require_member(server_id, actor_user_id)
        if not has_permission(actor, ServerPermission.MANAGE_MEMBERS):
            raise ForbiddenError("Missing ManageMembers permission")
        target = await self.repository.find_server_member(server_id, target_user_id)
        if target is None:
            raise NotFoundError("Member not found")
        if target.role is ServerMemberRole.OWNER:
            raise ValidationFailedError("Owner roles are fixed and cannot be reassigned")

        unique_ids = list(dict.fromkeys(role_ids))
        if unique_ids:
            known = {role.id for role in await self.repository.list_server_roles(server_id)}
            if any(role_id not in known for role_id in unique_ids):
                raise ValidationFailedError("One or more roles do not belong to this server")

        updated = await self.repository.set_server_member_roles(server_id, target_user_id, unique_ids)
        await self.refresh_server_sessions(server_id, target_user_id)
        return updated

    async def set_channel_mask(self, user_id: str, channel_id: str, mask_id: str) -> ChannelMemberIdentityRecord:
        channel = await self.repository.find_channel_by_id(channel_id)
        if channel is None:
            raise NotFoundError("Channel not found")
        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")
        server, _ = await self._require_member(channel.server_id, user_id)
        if server.channel_identity_mode is not ChannelIdentityMode.CHANNEL_MASK:
            raise ValidationFailedError("Channel mask selection is only available in CHANNEL_MASK mode")

        identity = await self.repository.upsert_channel_member_identity(channel.id, user_id, mask.id)
        sessions = [
            (session, channel.id)
            for session in self.presence.sessions_in(ContextKind.CHANNEL, channel.id)
            if session.user_id == user_id
        ]
        await self._refresh(sessions, channel.server_id)
        return identity

    # ------------------------------------------------------------------
    # Membership removal
    # ------------------------------------------------------------------

    async def kick_member(self, actor_user_id: str, server_id: str, target_user_id: str) -> None:
        _, actor = await self._require_member(server_id, actor_user_id)
        target = await self.repository.find_server_member(server_id, target_user_id)
        if target is None:
            raise NotFoundError("Member not found")
        if not has_any_permission(actor, (ServerPermission.MANAGE_MEMBERS, ServerPermission.MODERATE_CHAT)):
            raise ForbiddenError("Missing ModerateChat or ManageMembers permission")
        if target_user_id == actor_user_id:
            raise ValidationFailedError("You cannot kick yourself")
        if target.role is ServerMemberRole.OWNER:
            raise ValidationFailedError("Cannot kick the server owner")

        if not await self.repository.remove_server_member(server_id, target_user_id):
            raise NotFoundError("Member not found")
        logger.info("User %s removed from server %s by %s", target_user_id, server_id, actor_user_id)
        await self.disconnect_user_from_server(server_id, target_user_id)

    async def disconnect_user_from_server(self, server_id: str, user_id: str) -> None:
        """Drop the user's live channel sessions in *server_id* through the normal leave path."""

        for session, channel_id in await self._channel_sessions_in_server(server_id, user_id):
            await self.presence.send_error(session.websocket, REMOVED_FROM_SERVER_MESSAGE)
            await self.presence.leave_channel(session)
            await self.state.emit_channel_state(channel_id)

    async def delete_channel(self, actor_user_id: str, server_id: str, channel_id: str) -> None:
        """Delete a channel and drop its live sockets without member-left events."""

        _, actor = await self._require_member(server_id, actor_user_id)
        if not has_permission(actor, ServerPermission.MANAGE_CHANNELS):
            raise ForbiddenError("Missing ManageChannels permission")
        if not await self.repository.delete_server_channel(server_id, channel_id):
            raise NotFoundError("Channel not found")
        logger.info("Channel %s of server %s deleted by %s", channel_id, server_id, actor_user_id)

        for session in self.presence.sessions_in(ContextKind.CHANNEL, channel_id):
            await self.presence.send_error(session.websocket, CHANNEL_DELETED_MESSAGE)
            await self.presence.leave_channel(session, should_broadcast=False)

    # ------------------------------------------------------------------
    # Direct messages
    # ------------------------------------------------------------------

    async def switch_dm_mask(self, user_id: str, thread_id: str, mask_id: str) -> DmParticipantRecord:
        mask = await self.repository.find_mask_by_id_for_user(mask_id, user_id)
        if mask is None:
            raise ForbiddenError("Mask does not belong to the authenticated user")
        thread = await self.repository.find_dm_thread_by_id(thread_id)
        if thread is None:
            raise NotFoundError("DM thread not found")
        if thread.peer_of(user_id) is None:
            raise ForbiddenError("Not authorized for this DM thread")

        participant = await self.repository.upsert_dm_participant(
            thread_id=thread.id, user_id=user_id, active_mask_id=mask.id
        )
        for session in self.presence.sessions_in(ContextKind.DM, thread.id):
            if session.user_id == user_id:
                session.dm_mask_id = mask.id
        await self.state.emit_dm_state(thread.id)
        return participant


__all__ = ["CHANNEL_DELETED_MESSAGE", "IdentityService", "REMOVED_FROM_SERVER_MESSAGE"]
