from __future__ import annotations

from enum import Enum


class RoomKind(str, Enum):
    """Flavours of masked rooms."""

    EPHEMERAL = "EPHEMERAL"
    RITUAL = "RITUAL"
    NARRATIVE = "NARRATIVE"


class MembershipRole(str, Enum):
    """Roles a mask can hold inside a room."""

    HOST = "HOST"
    MEMBER = "MEMBER"


class ModerationAction(str, Enum):
    """Kinds of room moderation records."""

    MUTE = "MUTE"
    EXILE = "EXILE"
    LOCK = "LOCK"


class ServerMemberRole(str, Enum):
    """Coarse role of a user inside a server."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class ServerPermission(str, Enum):
    """Named capabilities granted through server roles."""

    MANAGE_CHANNELS = "ManageChannels"
    MANAGE_MEMBERS = "ManageMembers"
    CREATE_INVITES = "CreateInvites"
    MODERATE_CHAT = "ModerateChat"


ALL_SERVER_PERMISSIONS: tuple[ServerPermission, ...] = tuple(ServerPermission)


class ChannelIdentityMode(str, Enum):
    """How a server resolves the mask a member presents in its channels."""

    SERVER_MASK = "SERVER_MASK"
    CHANNEL_MASK = "CHANNEL_MASK"


class ChannelType(str, Enum):
    """Possible server channel types."""

    TEXT = "TEXT"


class ContextType(str, Enum):
    """Chat contexts that can own uploads and voice sessions."""

    SERVER_CHANNEL = "SERVER_CHANNEL"
    DM_THREAD = "DM_THREAD"
    EPHEMERAL_ROOM = "EPHEMERAL_ROOM"


class UploadKind(str, Enum):
    """Purpose of an uploaded file."""

    MESSAGE_IMAGE = "MESSAGE_IMAGE"
    MASK_AVATAR = "MASK_AVATAR"


class FriendRequestStatus(str, Enum):
    """Lifecycle of a friend request."""

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    CANCELED = "CANCELED"
