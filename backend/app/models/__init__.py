"""Database models package."""

from .base import Base
from .chat import (
    Channel,
    ChannelMemberIdentity,
    DmMessage,
    DmParticipant,
    DmThread,
    FriendRequest,
    Friendship,
    Mask,
    Message,
    Room,
    RoomMembership,
    RoomModeration,
    Server,
    ServerMember,
    ServerMemberRoleLink,
    ServerInvite,
    ServerMessage,
    ServerRole,
    Upload,
    User,
    VoiceParticipant,
    VoiceSession,
)
from .enums import (
    ALL_SERVER_PERMISSIONS,
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

__all__ = [
    "Base",
    "User",
    "Mask",
    "Upload",
    "Room",
    "RoomMembership",
    "RoomModeration",
    "Message",
    "Server",
    "ServerRole",
    "ServerMember",
    "ServerMemberRoleLink",
    "ServerInvite",
    "Channel",
    "ChannelMemberIdentity",
    "ServerMessage",
    "Friendship",
    "FriendRequest",
    "DmThread",
    "DmParticipant",
    "DmMessage",
    "VoiceSession",
    "VoiceParticipant",
    "ALL_SERVER_PERMISSIONS",
    "ChannelIdentityMode",
    "ChannelType",
    "ContextType",
    "FriendRequestStatus",
    "MembershipRole",
    "ModerationAction",
    "RoomKind",
    "ServerMemberRole",
    "ServerPermission",
    "UploadKind",
]
