"""Outbound representations of repository records.

The same shapes are returned by the HTTP routes and carried inside socket
events, so both surfaces render a room, a message or a member identically.
"""

from __future__ import annotations

from datetime import datetime

from app.models.enums import (
    ChannelIdentityMode,
    ChannelType,
    ContextType,
    MembershipRole,
    ModerationAction,
    RoomKind,
    ServerMemberRole,
    ServerPermission,
    UploadKind,
)
from app.schemas.common import CamelModel
from app.services.permissions import effective_permissions, normalize_permissions
from masq.domain.records import (
    ChannelRecord,
    DmMessageRecord,
    DmParticipantRecord,
    MaskRecord,
    MessageRecord,
    RoomMembershipRecord,
    ServerMemberRecord,
    ServerMessageRecord,
    ServerRoleRecord,
    UploadRecord,
    VoiceParticipantRecord,
)

IMAGE_CONTENT_TYPES: dict[str, str] = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


class UserOut(CamelModel):
    id: str
    email: str
    friend_code: str
    default_mask_id: str | None = None
    created_at: datetime


class MaskOut(CamelModel):
    id: str
    user_id: str
    display_name: str
    color: str
    avatar_seed: str
    avatar_upload_id: str | None = None
    created_at: datetime


class MaskSummary(CamelModel):
    id: str
    display_name: str
    color: str
    avatar_seed: str
    avatar_upload_id: str | None = None


class MaskIdentity(CamelModel):
    """How a mask appears inside realtime payloads."""

    mask_id: str
    display_name: str
    avatar_seed: str
    color: str
    avatar_upload_id: str | None = None

    @classmethod
    def from_mask(cls, mask: MaskRecord) -> "MaskIdentity":
        return cls(
            mask_id=mask.id,
            display_name=mask.display_name,
            avatar_seed=mask.avatar_seed,
            color=mask.color,
            avatar_upload_id=mask.avatar_upload_id,
        )


class RoomMemberState(MaskIdentity):
    role: MembershipRole

    @classmethod
    def from_membership(cls, membership: RoomMembershipRecord) -> "RoomMemberState":
        identity = MaskIdentity.from_mask(membership.mask)
        return cls(**identity.model_dump(), role=membership.role)


class ChannelMemberState(CamelModel):
    user_id: str
    role: ServerMemberRole
    mask: MaskIdentity

    @classmethod
    def from_member(cls, member: ServerMemberRecord, mask: MaskRecord | None = None) -> "ChannelMemberState":
        return cls(
            user_id=member.user_id,
            role=member.role,
            mask=MaskIdentity.from_mask(mask or member.server_mask),
        )


class ImageAttachment(CamelModel):
    id: str
    file_name: str
    content_type: str
    size_bytes: int

    @classmethod
    def from_upload(cls, upload: UploadRecord | None) -> "ImageAttachment | None":
        if upload is None or upload.content_type not in IMAGE_CONTENT_TYPES:
            return None
        return cls(
            id=upload.id,
            file_name=upload.file_name,
            content_type=upload.content_type,
            size_bytes=upload.size_bytes,
        )


class UploadOut(CamelModel):
    id: str
    owner_user_id: str
    kind: UploadKind
    context_type: ContextType | None = None
    context_id: str | None = None
    file_name: str
    content_type: str
    size_bytes: int
    created_at: datetime


class RoomOut(CamelModel):
    id: str
    title: str
    kind: RoomKind
    locked: bool
    fog_level: int
    message_decay_minutes: int
    expires_at: datetime | None = None
    created_at: datetime


class RoomMessageOut(CamelModel):
    id: str
    room_id: str
    body: str
    image: ImageAttachment | None = None
    created_at: datetime
    mask: MaskIdentity

    @classmethod
    def from_record(cls, message: MessageRecord) -> "RoomMessageOut":
        return cls(
            id=message.id,
            room_id=message.room_id,
            body=message.body,
            image=ImageAttachment.from_upload(message.image_upload),
            created_at=message.created_at,
            mask=MaskIdentity.from_mask(message.mask),
        )


class DmMessageOut(CamelModel):
    id: str
    thread_id: str
    body: str
    image: ImageAttachment | None = None
    created_at: datetime
    mask: MaskIdentity

    @classmethod
    def from_record(cls, message: DmMessageRecord) -> "DmMessageOut":
        return cls(
            id=message.id,
            thread_id=message.thread_id,
            body=message.body,
            image=ImageAttachment.from_upload(message.image_upload),
            created_at=message.created_at,
            mask=MaskIdentity.from_mask(message.mask),
        )


class ChannelMessageOut(CamelModel):
    id: str
    channel_id: str
    body: str
    image: ImageAttachment | None = None
    created_at: datetime
    mask: MaskIdentity

    @classmethod
    def from_record(cls, message: ServerMessageRecord) -> "ChannelMessageOut":
        return cls(
            id=message.id,
            channel_id=message.channel_id,
            body=message.body,
            image=ImageAttachment.from_upload(message.image_upload),
            created_at=message.created_at,
            mask=MaskIdentity.from_mask(message.mask),
        )


class ModerationOut(CamelModel):
    id: str
    room_id: str
    target_mask_id: str | None = None
    action_type: ModerationAction
    expires_at: datetime | None = None
    created_at: datetime
    actor_mask_id: str


class ServerOut(CamelModel):
    id: str
    name: str
    owner_user_id: str
    channel_identity_mode: ChannelIdentityMode
    created_at: datetime


class ServerRoleOut(CamelModel):
    id: str
    server_id: str
    name: str
    permissions: list[ServerPermission]
    created_at: datetime

    @classmethod
    def from_record(cls, role: ServerRoleRecord) -> "ServerRoleOut":
        return cls(
            id=role.id,
            server_id=role.server_id,
            name=role.name,
            permissions=normalize_permissions(role.permissions),
            created_at=role.created_at,
        )


class ServerMemberOut(CamelModel):
    server_id: str
    user_id: str
    role: ServerMemberRole
    role_ids: list[str]
    permissions: list[ServerPermission]
    joined_at: datetime
    server_mask: MaskSummary

    @classmethod
    def from_record(cls, member: ServerMemberRecord) -> "ServerMemberOut":
        return cls(
            server_id=member.server_id,
            user_id=member.user_id,
            role=member.role,
            role_ids=list(member.role_ids),
            permissions=effective_permissions(member),
            joined_at=member.joined_at,
            server_mask=MaskSummary.model_validate(member.server_mask),
        )


class ServerInviteOut(CamelModel):
    id: str
    server_id: str
    code: str
    created_at: datetime
    expires_at: datetime | None = None
    max_uses: int | None = None
    uses: int


class ChannelOut(CamelModel):
    id: str
    server_id: str
    name: str
    type: ChannelType
    created_at: datetime

    @classmethod
    def from_record(cls, channel: ChannelRecord) -> "ChannelOut":
        return cls.model_validate(channel)


class DmThreadOut(CamelModel):
    id: str
    user_a_id: str
    user_b_id: str
    created_at: datetime


class DmParticipantOut(CamelModel):
    user_id: str
    mask: MaskIdentity

    @classmethod
    def from_record(cls, participant: DmParticipantRecord) -> "DmParticipantOut":
        return cls(user_id=participant.user_id, mask=MaskIdentity.from_mask(participant.active_mask))


class VoiceSessionOut(CamelModel):
    id: str
    context_type: ContextType
    context_id: str
    livekit_room_name: str
    created_at: datetime
    ended_at: datetime | None = None


class VoiceParticipantOut(CamelModel):
    id: str
    voice_session_id: str
    user_id: str
    mask_id: str
    joined_at: datetime
    left_at: datetime | None = None
    is_server_muted: bool
    mask: MaskSummary

    @classmethod
    def from_record(cls, participant: VoiceParticipantRecord) -> "VoiceParticipantOut":
        return cls(
            id=participant.id,
            voice_session_id=participant.voice_session_id,
            user_id=participant.user_id,
            mask_id=participant.mask_id,
            joined_at=participant.joined_at,
            left_at=participant.left_at,
            is_server_muted=participant.is_server_muted,
            mask=MaskSummary.model_validate(participant.mask),
        )
