"""Schemas for servers, channels, invites and member identities."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, model_validator

from app.models.enums import ChannelIdentityMode, ServerMemberRole, ServerPermission
from app.schemas.common import CamelModel
from app.schemas.payloads import (
    ChannelOut,
    MaskIdentity,
    MaskSummary,
    ServerInviteOut,
    ServerMemberOut,
    ServerOut,
    ServerRoleOut,
)

MAX_INVITE_EXPIRY_MINUTES = 10_080
MAX_INVITE_USES = 100_000
MAX_ROLE_ASSIGNMENTS = 24
MAX_ROLE_NAME_LENGTH = 64
MAX_RTC_PARTICIPANT_CAP = 100


class ServerCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=80)


class ServerResponse(CamelModel):
    server: ServerOut


class RtcPolicyOut(CamelModel):
    participant_cap: int | None = None
    stage_mode_enabled: bool
    screenshare_minimum_role: ServerMemberRole


class ServerDetail(CamelModel):
    server: ServerOut
    channels: list[ChannelOut]
    members: list[ServerMemberOut]
    roles: list[ServerRoleOut]
    my_permissions: list[ServerPermission]
    rtc_policy: RtcPolicyOut


class ServerListItem(CamelModel):
    server: ServerOut
    role: ServerMemberRole
    joined_at: datetime
    server_mask: MaskSummary


class ServersResponse(CamelModel):
    servers: list[ServerListItem]


class ChannelCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=60)


class ChannelResponse(CamelModel):
    channel: ChannelOut


class InviteCreate(CamelModel):
    expires_minutes: int | None = Field(default=None, ge=1, le=MAX_INVITE_EXPIRY_MINUTES)
    max_uses: int | None = Field(default=None, ge=1, le=MAX_INVITE_USES)


class InviteResponse(CamelModel):
    invite: ServerInviteOut


class ServerJoinRequest(CamelModel):
    invite_code: str = Field(..., min_length=4, max_length=64)
    server_mask_id: str = Field(..., min_length=1)


class ServerJoinResponse(CamelModel):
    success: bool = True
    server_id: str


class ServerSettingsUpdate(CamelModel):
    channel_identity_mode: ChannelIdentityMode


class ServerSettingsResponse(CamelModel):
    success: bool = True
    server: ServerOut


class ServerMaskUpdate(CamelModel):
    server_mask_id: str = Field(..., min_length=1)


class MemberRolesUpdate(CamelModel):
    role_ids: list[str] = Field(default_factory=list, max_length=MAX_ROLE_ASSIGNMENTS)


class MemberResponse(CamelModel):
    success: bool = True
    member: ServerMemberOut


class ChannelMaskUpdate(CamelModel):
    mask_id: str = Field(..., min_length=1)


class ChannelMaskResponse(CamelModel):
    success: bool = True
    mask: MaskIdentity


class SuccessResponse(CamelModel):
    success: bool = True


class RoleCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=MAX_ROLE_NAME_LENGTH)
    permissions: list[ServerPermission] = Field(default_factory=list, max_length=len(ServerPermission))


class RoleUpdate(CamelModel):
    name: str | None = Field(default=None, min_length=1, max_length=MAX_ROLE_NAME_LENGTH)
    permissions: list[ServerPermission] | None = Field(default=None, max_length=len(ServerPermission))

    @model_validator(mode="after")
    def require_change(self) -> "RoleUpdate":
        if self.name is None and self.permissions is None:
            raise ValueError("Provide at least one field")
        return self


class RoleResponse(CamelModel):
    role: ServerRoleOut


class RolesResponse(CamelModel):
    roles: list[ServerRoleOut]
    my_permissions: list[ServerPermission]


class RtcPolicyUpdate(CamelModel):
    """Partial update; ``participantCap: null`` returns to the deployment default."""

    participant_cap: int | None = Field(default=None, ge=0, le=MAX_RTC_PARTICIPANT_CAP)
    stage_mode_enabled: bool | None = None
    screenshare_minimum_role: ServerMemberRole | None = None


class RtcPolicyResponse(CamelModel):
    success: bool = True
    rtc_policy: RtcPolicyOut
