"""Immutable value records exchanged with the repository port.

Records are plain snapshots: the realtime core never mutates them and always
re-reads them from the repository when a decision depends on current state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from app.models.enums import (
    ChannelIdentityMode,
    ChannelType,
    ContextType,
    FriendRequestStatus,
    MembershipRole,
    ModerationAction,
    RoomKind,
    ServerMemberRole,
    ServerPermission,
    UploadKind,
)


@dataclass(slots=True, frozen=True)
class UserRecord:
    id: str
    email: str
    friend_code: str
    password_hash: str
    default_mask_id: str | None
    created_at: datetime


@dataclass(slots=True, frozen=True)
class MaskRecord:
    id: str
    user_id: str
    display_name: str
    color: str
    avatar_seed: str
    avatar_upload_id: str | None
    created_at: datetime


@dataclass(slots=True, frozen=True)
class UploadRecord:
    id: str
    owner_user_id: str
    kind: UploadKind
    context_type: ContextType | None
    context_id: str | None
    file_name: str
    content_type: str
    size_bytes: int
    storage_path: str
    created_at: datetime


@dataclass(slots=True, frozen=True)
class RoomRecord:
    id: str
    title: str
    kind: RoomKind
    locked: bool
    fog_level: int
    message_decay_minutes: int
    expires_at: datetime | None
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(slots=True, frozen=True)
class RoomMembershipRecord:
    room_id: str
    mask_id: str
    role: MembershipRole
    joined_at: datetime
    mask: MaskRecord


@dataclass(slots=True, frozen=True)
class RoomModerationRecord:
    id: str
    room_id: str
    actor_mask_id: str
    target_mask_id: str | None
    action_type: ModerationAction
    expires_at: datetime | None
    created_at: datetime


@dataclass(slots=True, frozen=True)
class MessageRecord:
    id: str
    room_id: str
    mask_id: str
    body: str
    image_upload: UploadRecord | None
    created_at: datetime
    mask: MaskRecord


@dataclass(slots=True, frozen=True)
class ServerRecord:
    id: str
    name: str
    owner_user_id: str
    channel_identity_mode: ChannelIdentityMode
    created_at: datetime
    rtc_participant_cap: int | None = None
    stage_mode_enabled: bool = False
    screenshare_minimum_role: ServerMemberRole = ServerMemberRole.MEMBER


@dataclass(slots=True, frozen=True)
class ServerRoleRecord:
    id: str
    server_id: str
    name: str
    permissions: tuple[ServerPermission, ...]
    created_at: datetime


@dataclass(slots=True, frozen=True)
class ServerMemberRecord:
    server_id: str
    user_id: str
    role: ServerMemberRole
    server_mask_id: str
    server_mask: MaskRecord
    joined_at: datetime
    role_ids: tuple[str, ...] = ()
    # Union of the raw permission names of every assigned role. Unknown names
    # survive here and are filtered by the permission resolver.
    permissions: tuple[str, ...] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class ServerInviteRecord:
    id: str
    server_id: str
    code: str
    expires_at: datetime | None
    max_uses: int | None
    uses: int
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.uses >= self.max_uses


@dataclass(slots=True, frozen=True)
class ChannelRecord:
    id: str
    server_id: str
    name: str
    type: ChannelType
    created_at: datetime


@dataclass(slots=True, frozen=True)
class ChannelMemberIdentityRecord:
    channel_id: str
    user_id: str
    mask_id: str
    mask: MaskRecord


@dataclass(slots=True, frozen=True)
class ServerMessageRecord:
    id: str
    channel_id: str
    mask_id: str
    body: str
    image_upload: UploadRecord | None
    created_at: datetime
    mask: MaskRecord


@dataclass(slots=True, frozen=True)
class DmThreadRecord:
    id: str
    user_a_id: str
    user_b_id: str
    created_at: datetime

    def peer_of(self, user_id: str) -> str | None:
        """Return the other participant, or ``None`` if *user_id* is not in the thread."""

        if user_id == self.user_a_id:
            return self.user_b_id
        if user_id == self.user_b_id:
            return self.user_a_id
        return None


@dataclass(slots=True, frozen=True)
class DmParticipantRecord:
    thread_id: str
    user_id: str
    active_mask_id: str
    active_mask: MaskRecord


@dataclass(slots=True, frozen=True)
class DmMessageRecord:
    id: str
    thread_id: str
    mask_id: str
    body: str
    image_upload: UploadRecord | None
    created_at: datetime
    mask: MaskRecord


@dataclass(slots=True, frozen=True)
class VoiceSessionRecord:
    id: str
    context_type: ContextType
    context_id: str
    livekit_room_name: str
    created_at: datetime
    ended_at: datetime | None


@dataclass(slots=True, frozen=True)
class VoiceParticipantRecord:
    id: str
    voice_session_id: str
    user_id: str
    mask_id: str
    joined_at: datetime
    left_at: datetime | None
    is_server_muted: bool
    mask: MaskRecord


@dataclass(slots=True, frozen=True)
class FriendRequestRecord:
    id: str
    from_user_id: str
    to_user_id: str
    status: FriendRequestStatus
    created_at: datetime
    updated_at: datetime

    def is_pending(self) -> bool:
        return self.status is FriendRequestStatus.PENDING


@dataclass(slots=True, frozen=True)
class MaskRoomRecord:
    """A room a mask belongs to, with the membership details."""

    room: RoomRecord
    role: MembershipRole
    joined_at: datetime


@dataclass(slots=True, frozen=True)
class UserServerRecord:
    """A server the user belongs to, with the membership details."""

    server: ServerRecord
    role: ServerMemberRole
    joined_at: datetime
    server_mask: MaskRecord


def order_user_pair(first_user_id: str, second_user_id: str) -> tuple[str, str]:
    """Canonical ordering of a DM user pair."""

    return (first_user_id, second_user_id) if first_user_id <= second_user_id else (second_user_id, first_user_id)
