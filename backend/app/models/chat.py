from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, generate_id, utcnow
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


def _enum(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


def _id_column() -> Mapped[str]:
    return mapped_column(String(36), primary_key=True, default=generate_id)


def _created_at_column() -> Mapped[datetime]:
    return mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class User(Base):
    """Account owning one or more masks."""

    __tablename__ = "users"

    id: Mapped[str] = _id_column()
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    friend_code: Mapped[str] = mapped_column(String(16), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    default_mask_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = _created_at_column()

    masks: Mapped[list["Mask"]] = relationship(back_populates="user", cascade="all, delete-orphan")


class Mask(Base):
    """Presented identity of a user inside chat contexts."""

    __tablename__ = "masks"

    id: Mapped[str] = _id_column()
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(80), nullable=False)
    color: Mapped[str] = mapped_column(String(32), nullable=False)
    avatar_seed: Mapped[str] = mapped_column(String(80), nullable=False)
    avatar_upload_id: Mapped[str | None] = mapped_column(String(36))
    created_at: Mapped[datetime] = _created_at_column()

    user: Mapped[User] = relationship(back_populates="masks")


class Upload(Base):
    """Stored file metadata; the bytes live outside the database."""

    __tablename__ = "uploads"

    id: Mapped[str] = _id_column()
    owner_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[UploadKind] = mapped_column(_enum(UploadKind, "upload_kind"), nullable=False)
    context_type: Mapped[ContextType | None] = mapped_column(_enum(ContextType, "upload_context_type"))
    context_id: Mapped[str | None] = mapped_column(String(36))
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class Room(Base):
    """Masked room, usually short lived."""

    __tablename__ = "rooms"

    id: Mapped[str] = _id_column()
    title: Mapped[str] = mapped_column(String(80), nullable=False)
    kind: Mapped[RoomKind] = mapped_column(_enum(RoomKind, "room_kind"), nullable=False)
    locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fog_level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_decay_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), index=True)
    created_at: Mapped[datetime] = _created_at_column()

    memberships: Mapped[list["RoomMembership"]] = relationship(
        back_populates="room", cascade="all, delete-orphan"
    )


class RoomMembership(Base):
    """Link between a room and a mask with its role."""

    __tablename__ = "room_memberships"

    room_id: Mapped[str] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), primary_key=True)
    mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id", ondelete="CASCADE"), primary_key=True)
    role: Mapped[MembershipRole] = mapped_column(_enum(MembershipRole, "membership_role"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    room: Mapped[Room] = relationship(back_populates="memberships")
    mask: Mapped[Mask] = relationship()


class RoomModeration(Base):
    """Audit and effect record of a room moderation action."""

    __tablename__ = "room_moderations"
    __table_args__ = (Index("ix_room_moderations_target", "room_id", "target_mask_id"),)

    id: Mapped[str] = _id_column()
    room_id: Mapped[str] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    actor_mask_id: Mapped[str] = mapped_column(String(36), nullable=False)
    target_mask_id: Mapped[str | None] = mapped_column(String(36))
    action_type: Mapped[ModerationAction] = mapped_column(
        _enum(ModerationAction, "moderation_action"), nullable=False
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = _created_at_column()


class Message(Base):
    """Room message."""

    __tablename__ = "messages"

    id: Mapped[str] = _id_column()
    room_id: Mapped[str] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id", ondelete="CASCADE"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    image_upload_id: Mapped[str | None] = mapped_column(ForeignKey("uploads.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = _created_at_column()

    mask: Mapped[Mask] = relationship()
    image_upload: Mapped[Upload | None] = relationship()


class Server(Base):
    """Persistent community holding channels."""

    __tablename__ = "servers"

    id: Mapped[str] = _id_column()
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    owner_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    channel_identity_mode: Mapped[ChannelIdentityMode] = mapped_column(
        _enum(ChannelIdentityMode, "channel_identity_mode"),
        default=ChannelIdentityMode.SERVER_MASK,
        nullable=False,
    )
    # Overrides the configured server call cap when set.
    rtc_participant_cap: Mapped[int | None] = mapped_column(Integer)
    stage_mode_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    screenshare_minimum_role: Mapped[ServerMemberRole] = mapped_column(
        _enum(ServerMemberRole, "screenshare_minimum_role"),
        default=ServerMemberRole.MEMBER,
        nullable=False,
    )
    created_at: Mapped[datetime] = _created_at_column()


class ServerRole(Base):
    """Named permission bundle scoped to a server."""

    __tablename__ = "server_roles"
    __table_args__ = (UniqueConstraint("server_id", "name", name="uq_server_role_name"),)

    id: Mapped[str] = _id_column()
    server_id: Mapped[str] = mapped_column(ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class ServerMember(Base):
    """Membership of a user in a server."""

    __tablename__ = "server_members"

    server_id: Mapped[str] = mapped_column(ForeignKey("servers.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role: Mapped[ServerMemberRole] = mapped_column(_enum(ServerMemberRole, "server_member_role"), nullable=False)
    server_mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    server_mask: Mapped[Mask] = relationship()
    role_links: Mapped[list["ServerMemberRoleLink"]] = relationship(
        cascade="all, delete-orphan", order_by="ServerMemberRoleLink.role_id"
    )


class ServerMemberRoleLink(Base):
    """Assignment of a server role to a member."""

    __tablename__ = "server_member_roles"
    __table_args__ = (
        ForeignKeyConstraint(
            ["server_id", "user_id"],
            ["server_members.server_id", "server_members.user_id"],
            ondelete="CASCADE",
        ),
    )

    server_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    role_id: Mapped[str] = mapped_column(ForeignKey("server_roles.id", ondelete="CASCADE"), primary_key=True)

    role: Mapped[ServerRole] = relationship()


class ServerInvite(Base):
    """Shareable code granting server membership."""

    __tablename__ = "server_invites"

    id: Mapped[str] = _id_column()
    server_id: Mapped[str] = mapped_column(ForeignKey("servers.id", ondelete="CASCADE"), nullable=False)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    max_uses: Mapped[int | None] = mapped_column(Integer)
    uses: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class Channel(Base):
    """Server channel."""

    __tablename__ = "channels"
    __table_args__ = (UniqueConstraint("server_id", "name", name="uq_channel_name"),)

    id: Mapped[str] = _id_column()
    server_id: Mapped[str] = mapped_column(ForeignKey("servers.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[ChannelType] = mapped_column(_enum(ChannelType, "channel_type"), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class ChannelMemberIdentity(Base):
    """Per-channel mask override used in CHANNEL_MASK mode."""

    __tablename__ = "channel_member_identities"

    channel_id: Mapped[str] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id", ondelete="CASCADE"), nullable=False)

    mask: Mapped[Mask] = relationship()


class ServerMessage(Base):
    """Channel message."""

    __tablename__ = "server_messages"

    id: Mapped[str] = _id_column()
    channel_id: Mapped[str] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"), nullable=False, index=True)
    mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id", ondelete="CASCADE"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    image_upload_id: Mapped[str | None] = mapped_column(ForeignKey("uploads.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = _created_at_column()

    mask: Mapped[Mask] = relationship()
    image_upload: Mapped[Upload | None] = relationship()


class Friendship(Base):
    """Accepted friendship stored with a canonical user ordering."""

    __tablename__ = "friendships"
    __table_args__ = (UniqueConstraint("user_a_id", "user_b_id", name="uq_friendship_pair"),)

    id: Mapped[str] = _id_column()
    user_a_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user_b_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class FriendRequest(Base):
    """Directed friend request; one row per ordered pair, reused on resend."""

    __tablename__ = "friend_requests"
    __table_args__ = (UniqueConstraint("from_user_id", "to_user_id", name="uq_friend_request_pair"),)

    id: Mapped[str] = _id_column()
    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[FriendRequestStatus] = mapped_column(
        _enum(FriendRequestStatus, "friend_request_status"),
        default=FriendRequestStatus.PENDING,
        nullable=False,
    )
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class DmThread(Base):
    """Direct message thread between two users."""

    __tablename__ = "dm_threads"
    __table_args__ = (UniqueConstraint("user_a_id", "user_b_id", name="uq_dm_thread_pair"),)

    id: Mapped[str] = _id_column()
    user_a_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    user_b_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = _created_at_column()


class DmParticipant(Base):
    """Active mask of a user inside a DM thread."""

    __tablename__ = "dm_participants"

    thread_id: Mapped[str] = mapped_column(ForeignKey("dm_threads.id", ondelete="CASCADE"), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    active_mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id"), nullable=False)

    active_mask: Mapped[Mask] = relationship()


class DmMessage(Base):
    """Direct message."""

    __tablename__ = "dm_messages"

    id: Mapped[str] = _id_column()
    thread_id: Mapped[str] = mapped_column(ForeignKey("dm_threads.id", ondelete="CASCADE"), nullable=False, index=True)
    mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id", ondelete="CASCADE"), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    image_upload_id: Mapped[str | None] = mapped_column(ForeignKey("uploads.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = _created_at_column()

    mask: Mapped[Mask] = relationship()
    image_upload: Mapped[Upload | None] = relationship()


class VoiceSession(Base):
    """External SFU room bound to a chat context."""

    __tablename__ = "voice_sessions"
    __table_args__ = (Index("ix_voice_sessions_context", "context_type", "context_id"),)

    id: Mapped[str] = _id_column()
    context_type: Mapped[ContextType] = mapped_column(_enum(ContextType, "voice_context_type"), nullable=False)
    context_id: Mapped[str] = mapped_column(String(36), nullable=False)
    livekit_room_name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    created_at: Mapped[datetime] = _created_at_column()
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class VoiceParticipant(Base):
    """One stay of a user (as a mask) inside a voice session."""

    __tablename__ = "voice_participants"
    __table_args__ = (Index("ix_voice_participants_session", "voice_session_id", "left_at"),)

    id: Mapped[str] = _id_column()
    voice_session_id: Mapped[str] = mapped_column(
        ForeignKey("voice_sessions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    mask_id: Mapped[str] = mapped_column(ForeignKey("masks.id", ondelete="CASCADE"), nullable=False)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    is_server_muted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    mask: Mapped[Mask] = relationship()
