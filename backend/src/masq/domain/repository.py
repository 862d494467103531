"""Persistence port consumed by the realtime core.

Every lookup returns ``None`` (or ``False`` / an empty list) when the entity is
absent. Implementations raise :class:`~masq.domain.errors.DuplicateKeyError`
for unique constraint violations and nothing else for expected conditions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol, Sequence

from app.models.enums import (
    ChannelIdentityMode,
    ChannelType,
    ContextType,
    FriendRequestStatus,
    MembershipRole,
    ModerationAction,
    RoomKind,
    ServerMemberRole,
    UploadKind,
)

from .records import (
    ChannelMemberIdentityRecord,
    ChannelRecord,
    DmMessageRecord,
    DmParticipantRecord,
    DmThreadRecord,
    FriendRequestRecord,
    MaskRecord,
    MaskRoomRecord,
    MessageRecord,
    RoomMembershipRecord,
    RoomModerationRecord,
    RoomRecord,
    ServerInviteRecord,
    ServerMemberRecord,
    ServerMessageRecord,
    ServerRecord,
    ServerRoleRecord,
    UploadRecord,
    UserRecord,
    UserServerRecord,
    VoiceParticipantRecord,
    VoiceSessionRecord,
)


class Repository(Protocol):
    # Users and masks
    async def find_user_by_id(self, user_id: str) -> UserRecord | None: ...

    async def find_user_by_email(self, email: str) -> UserRecord | None: ...

    async def find_user_by_friend_code(self, friend_code: str) -> UserRecord | None: ...

    async def create_user(self, *, email: str, friend_code: str, password_hash: str) -> UserRecord: ...

    async def update_user_default_mask(self, user_id: str, mask_id: str | None) -> UserRecord: ...

    async def find_mask_by_id_for_user(self, mask_id: str, user_id: str) -> MaskRecord | None: ...

    async def list_masks_by_user(self, user_id: str) -> list[MaskRecord]: ...

    async def count_masks_by_user(self, user_id: str) -> int: ...

    async def create_mask(
        self, *, user_id: str, display_name: str, color: str, avatar_seed: str
    ) -> MaskRecord: ...

    async def is_mask_in_use(self, mask_id: str) -> bool: ...

    async def delete_mask(self, mask_id: str) -> None: ...

    async def list_rooms_for_mask(self, mask_id: str, now: datetime) -> list[MaskRoomRecord]: ...

    # Uploads
    async def create_upload(
        self,
        *,
        owner_user_id: str,
        kind: UploadKind,
        context_type: ContextType | None,
        context_id: str | None,
        file_name: str,
        content_type: str,
        size_bytes: int,
        storage_path: str,
    ) -> UploadRecord: ...

    async def find_upload_by_id(self, upload_id: str) -> UploadRecord | None: ...

    # Rooms
    async def create_room(
        self,
        *,
        title: str,
        kind: RoomKind,
        locked: bool,
        fog_level: int,
        message_decay_minutes: int,
        expires_at: datetime | None,
    ) -> RoomRecord: ...

    async def find_room_by_id(self, room_id: str) -> RoomRecord | None: ...

    async def list_rooms_with_expiry(self) -> list[RoomRecord]: ...

    async def set_room_locked(self, room_id: str, locked: bool) -> RoomRecord: ...

    async def add_room_membership(
        self, *, room_id: str, mask_id: str, role: MembershipRole
    ) -> RoomMembershipRecord: ...

    async def remove_room_membership(self, room_id: str, mask_id: str) -> None: ...

    async def find_room_membership_with_mask(
        self, room_id: str, mask_id: str
    ) -> RoomMembershipRecord | None: ...

    async def list_room_messages(self, room_id: str) -> list[MessageRecord]: ...

    async def create_message(
        self, *, room_id: str, mask_id: str, body: str, image_upload_id: str | None = None
    ) -> MessageRecord: ...

    async def create_room_moderation(
        self,
        *,
        room_id: str,
        actor_mask_id: str,
        target_mask_id: str | None,
        action_type: ModerationAction,
        expires_at: datetime | None,
    ) -> RoomModerationRecord: ...

    async def find_active_mute(
        self, room_id: str, target_mask_id: str, now: datetime
    ) -> RoomModerationRecord | None: ...

    async def is_exiled(self, room_id: str, mask_id: str) -> bool: ...

    # Servers and channels
    async def create_server(self, *, name: str, owner_user_id: str) -> ServerRecord: ...

    async def find_server_by_id(self, server_id: str) -> ServerRecord | None: ...

    async def update_server_settings(
        self, server_id: str, *, channel_identity_mode: ChannelIdentityMode
    ) -> ServerRecord: ...

    async def update_server_rtc_policy(
        self,
        server_id: str,
        *,
        rtc_participant_cap: int | None,
        stage_mode_enabled: bool,
        screenshare_minimum_role: ServerMemberRole,
    ) -> ServerRecord: ...

    async def list_servers_for_user(self, user_id: str) -> list[UserServerRecord]: ...

    async def find_server_member(self, server_id: str, user_id: str) -> ServerMemberRecord | None: ...

    async def list_server_members(self, server_id: str) -> list[ServerMemberRecord]: ...

    async def add_server_member(
        self, *, server_id: str, user_id: str, role: ServerMemberRole, server_mask_id: str
    ) -> ServerMemberRecord: ...

    async def update_server_member_mask(
        self, server_id: str, user_id: str, server_mask_id: str
    ) -> ServerMemberRecord: ...

    async def set_server_member_roles(
        self, server_id: str, user_id: str, role_ids: Sequence[str]
    ) -> ServerMemberRecord: ...

    async def remove_server_member(self, server_id: str, user_id: str) -> bool: ...

    async def create_server_role(
        self, *, server_id: str, name: str, permissions: Iterable[str]
    ) -> ServerRoleRecord: ...

    async def list_server_roles(self, server_id: str) -> list[ServerRoleRecord]: ...

    async def find_server_role_by_name(self, server_id: str, name: str) -> ServerRoleRecord | None: ...

    async def find_server_role_by_id(self, server_id: str, role_id: str) -> ServerRoleRecord | None: ...

    async def update_server_role(
        self,
        server_id: str,
        role_id: str,
        *,
        name: str | None = None,
        permissions: Iterable[str] | None = None,
    ) -> ServerRoleRecord: ...

    async def create_server_invite(
        self, *, server_id: str, code: str, expires_at: datetime | None, max_uses: int | None
    ) -> ServerInviteRecord: ...

    async def find_server_invite_by_code(self, code: str) -> ServerInviteRecord | None: ...

    async def increment_server_invite_uses(self, invite_id: str) -> ServerInviteRecord: ...

    async def create_server_channel(
        self, *, server_id: str, name: str, type: ChannelType = ChannelType.TEXT
    ) -> ChannelRecord: ...

    async def find_channel_by_id(self, channel_id: str) -> ChannelRecord | None: ...

    async def list_server_channels(self, server_id: str) -> list[ChannelRecord]: ...

    async def delete_server_channel(self, server_id: str, channel_id: str) -> bool: ...

    async def find_channel_member_identity(
        self, channel_id: str, user_id: str
    ) -> ChannelMemberIdentityRecord | None: ...

    async def upsert_channel_member_identity(
        self, channel_id: str, user_id: str, mask_id: str
    ) -> ChannelMemberIdentityRecord: ...

    async def list_server_messages(self, channel_id: str) -> list[ServerMessageRecord]: ...

    async def create_server_message(
        self, *, channel_id: str, mask_id: str, body: str, image_upload_id: str | None = None
    ) -> ServerMessageRecord: ...

    # Friends and direct messages
    async def find_friendship_between_users(self, user_a_id: str, user_b_id: str) -> bool: ...

    async def create_friendship(self, user_a_id: str, user_b_id: str) -> None: ...

    async def delete_friendship_between_users(self, user_a_id: str, user_b_id: str) -> bool: ...

    async def list_friends_for_user(self, user_id: str) -> list[UserRecord]: ...

    async def find_friend_request_by_id(self, request_id: str) -> FriendRequestRecord | None: ...

    async def find_friend_request_between_users(
        self, user_a_id: str, user_b_id: str
    ) -> FriendRequestRecord | None: ...

    async def upsert_friend_request(
        self, *, from_user_id: str, to_user_id: str, status: FriendRequestStatus
    ) -> FriendRequestRecord: ...

    async def update_friend_request_status(
        self, request_id: str, status: FriendRequestStatus
    ) -> FriendRequestRecord: ...

    async def list_incoming_friend_requests(self, user_id: str) -> list[FriendRequestRecord]: ...

    async def list_outgoing_friend_requests(self, user_id: str) -> list[FriendRequestRecord]: ...

    async def list_dm_threads_for_user(self, user_id: str) -> list[DmThreadRecord]: ...

    async def find_dm_thread_by_id(self, thread_id: str) -> DmThreadRecord | None: ...

    async def find_dm_thread_between_users(
        self, user_a_id: str, user_b_id: str
    ) -> DmThreadRecord | None: ...

    async def create_dm_thread(self, user_a_id: str, user_b_id: str) -> DmThreadRecord: ...

    async def upsert_dm_participant(
        self, *, thread_id: str, user_id: str, active_mask_id: str
    ) -> DmParticipantRecord: ...

    async def find_dm_participant(self, thread_id: str, user_id: str) -> DmParticipantRecord | None: ...

    async def list_dm_participants(self, thread_id: str) -> list[DmParticipantRecord]: ...

    async def list_dm_messages(self, thread_id: str) -> list[DmMessageRecord]: ...

    async def create_dm_message(
        self, *, thread_id: str, mask_id: str, body: str, image_upload_id: str | None = None
    ) -> DmMessageRecord: ...

    # Voice
    async def find_voice_session_by_id(self, voice_session_id: str) -> VoiceSessionRecord | None: ...

    async def find_active_voice_session_by_context(
        self, context_type: ContextType, context_id: str
    ) -> VoiceSessionRecord | None: ...

    async def create_voice_session(
        self, *, context_type: ContextType, context_id: str, livekit_room_name: str
    ) -> VoiceSessionRecord: ...

    async def end_voice_session(self, voice_session_id: str, ended_at: datetime) -> VoiceSessionRecord: ...

    async def create_voice_participant(
        self, *, voice_session_id: str, user_id: str, mask_id: str, is_server_muted: bool
    ) -> VoiceParticipantRecord: ...

    async def list_active_voice_participants(
        self, voice_session_id: str
    ) -> list[VoiceParticipantRecord]: ...

    async def mark_voice_participants_left(
        self, voice_session_id: str, user_id: str, left_at: datetime
    ) -> int: ...

    async def set_voice_participants_muted(
        self, voice_session_id: str, mask_id: str, is_server_muted: bool
    ) -> int: ...
