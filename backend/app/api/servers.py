"""Server, channel, invite and membership endpoints."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_current_user, get_repository, get_services
from app.models.enums import ALL_SERVER_PERMISSIONS, ContextType, ServerMemberRole, ServerPermission
from app.schemas.payloads import ChannelOut, MaskSummary, ServerInviteOut, ServerMemberOut, ServerOut, ServerRoleOut
from app.schemas.servers import (
    ChannelCreate,
    ChannelResponse,
    InviteCreate,
    InviteResponse,
    MemberResponse,
    MemberRolesUpdate,
    RoleCreate,
    RoleResponse,
    RolesResponse,
    RoleUpdate,
    RtcPolicyOut,
    RtcPolicyResponse,
    RtcPolicyUpdate,
    ServerCreate,
    ServerDetail,
    ServerJoinRequest,
    ServerJoinResponse,
    ServerListItem,
    ServerMaskUpdate,
    ServerResponse,
    ServerSettingsResponse,
    ServerSettingsUpdate,
    ServersResponse,
    SuccessResponse,
)
from app.services.permissions import effective_permissions, has_permission
from masq.domain.errors import (
    ConflictError,
    DuplicateKeyError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ValidationFailedError,
)
from masq.domain.records import ServerMemberRecord, ServerRecord, UserRecord
from masq.domain.repository import Repository
from masq.runtime import RealtimeServices

router = APIRouter(prefix="/servers", tags=["servers"])

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_ROLE_NAME = "Admin"
DEFAULT_MEMBER_ROLE_NAME = "Member"
DEFAULT_CHANNEL_NAME = "general"
INVITE_CODE_LENGTH = 12
INVITE_CODE_ATTEMPTS = 5


def generate_invite_code() -> str:
    return uuid.uuid4().hex[:INVITE_CODE_LENGTH].upper()


async def _load_membership(
    repository: Repository, server_id: str, user_id: str
) -> tuple[ServerRecord, ServerMemberRecord]:
    server = await repository.find_server_by_id(server_id)
    if server is None:
        raise NotFoundError("Server not found")
    member = await repository.find_server_member(server_id, user_id)
    if member is None:
        raise ForbiddenError("You are not a member of this server")
    return server, member


def _require_manage_members(member: ServerMemberRecord) -> None:
    if not has_permission(member, ServerPermission.MANAGE_MEMBERS):
        raise ForbiddenError("Missing ManageMembers permission")


def _rtc_policy(services: RealtimeServices, server: ServerRecord) -> RtcPolicyOut:
    return RtcPolicyOut(
        participant_cap=services.voice.participant_cap_for(server),
        stage_mode_enabled=server.stage_mode_enabled,
        screenshare_minimum_role=server.screenshare_minimum_role,
    )


@router.get("", response_model=ServersResponse)
async def list_servers(
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> ServersResponse:
    items = await repository.list_servers_for_user(user.id)
    return ServersResponse(
        servers=[
            ServerListItem(
                server=ServerOut.model_validate(item.server),
                role=item.role,
                joined_at=item.joined_at,
                server_mask=MaskSummary.model_validate(item.server_mask),
            )
            for item in items
        ]
    )


@router.post("", response_model=ServerResponse, status_code=status.HTTP_201_CREATED)
async def create_server(
    payload: ServerCreate,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> ServerResponse:
    """Create a server with default roles and a ``general`` channel."""

    name = payload.name.strip()
    if not name:
        raise ValidationFailedError("Server name cannot be empty")

    owner_mask = None
    if user.default_mask_id:
        owner_mask = await repository.find_mask_by_id_for_user(user.default_mask_id, user.id)
    if owner_mask is None:
        masks = await repository.list_masks_by_user(user.id)
        owner_mask = masks[0] if masks else None
    if owner_mask is None:
        raise ValidationFailedError("Create a mask before creating a server")

    server = await repository.create_server(name=name, owner_user_id=user.id)
    await repository.add_server_member(
        server_id=server.id, user_id=user.id, role=ServerMemberRole.OWNER, server_mask_id=owner_mask.id
    )
    await repository.create_server_role(
        server_id=server.id,
        name=DEFAULT_ADMIN_ROLE_NAME,
        permissions=[permission.value for permission in ALL_SERVER_PERMISSIONS],
    )
    await repository.create_server_role(server_id=server.id, name=DEFAULT_MEMBER_ROLE_NAME, permissions=[])
    await repository.create_server_channel(server_id=server.id, name=DEFAULT_CHANNEL_NAME)
    logger.info("User %s created server %s", user.id, server.id)
    return ServerResponse(server=ServerOut.model_validate(server))


@router.post("/join", response_model=ServerJoinResponse)
async def join_server(
    payload: ServerJoinRequest,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> ServerJoinResponse:
    """Redeem an invite code with one of the caller's masks."""

    mask = await repository.find_mask_by_id_for_user(payload.server_mask_id, user.id)
    if mask is None:
        raise ForbiddenError("Mask does not belong to the authenticated user")

    invite = await repository.find_server_invite_by_code(payload.invite_code.strip().upper())
    if invite is None:
        raise NotFoundError("Invite code not found")
    if invite.is_expired(datetime.now(timezone.utc)):
        raise GoneError("Invite has expired")
    if invite.is_exhausted():
        raise GoneError("Invite has reached max uses")
    if await repository.find_server_member(invite.server_id, user.id) is not None:
        raise ConflictError("Already a member of this server")

    await repository.add_server_member(
        server_id=invite.server_id, user_id=user.id, role=ServerMemberRole.MEMBER, server_mask_id=mask.id
    )
    member_role = await repository.find_server_role_by_name(invite.server_id, DEFAULT_MEMBER_ROLE_NAME)
    if member_role is None:
        try:
            member_role = await repository.create_server_role(
                server_id=invite.server_id, name=DEFAULT_MEMBER_ROLE_NAME, permissions=[]
            )
        except DuplicateKeyError:
            member_role = await repository.find_server_role_by_name(invite.server_id, DEFAULT_MEMBER_ROLE_NAME)
    if member_role is not None:
        await repository.set_server_member_roles(invite.server_id, user.id, [member_role.id])

    await repository.increment_server_invite_uses(invite.id)
    logger.info("User %s joined server %s with invite %s", user.id, invite.server_id, invite.code)
    return ServerJoinResponse(server_id=invite.server_id)


@router.get("/{server_id}", response_model=ServerDetail)
async def read_server(
    server_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
    services: RealtimeServices = Depends(get_services),
) -> ServerDetail:
    server, member = await _load_membership(repository, server_id, user.id)
    channels = await repository.list_server_channels(server.id)
    members = await repository.list_server_members(server.id)
    roles = await repository.list_server_roles(server.id)
    return ServerDetail(
        server=ServerOut.model_validate(server),
        channels=[ChannelOut.from_record(channel) for channel in channels],
        members=[ServerMemberOut.from_record(item) for item in members],
        roles=[ServerRoleOut.from_record(role) for role in roles],
        my_permissions=effective_permissions(member),
        rtc_policy=_rtc_policy(services, server),
    )


@router.post("/{server_id}/channels", response_model=ChannelResponse, status_code=status.HTTP_201_CREATED)
async def create_channel(
    server_id: str,
    payload: ChannelCreate,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> ChannelResponse:
    _, member = await _load_membership(repository, server_id, user.id)
    if not has_permission(member, ServerPermission.MANAGE_CHANNELS):
        raise ForbiddenError("Missing ManageChannels permission")

    name = payload.name.strip()
    if not name:
        raise ValidationFailedError("Channel name cannot be empty")
    try:
        channel = await repository.create_server_channel(server_id=server_id, name=name)
    except DuplicateKeyError as exc:
        raise ConflictError("Channel name already exists in this server") from exc
    return ChannelResponse(channel=ChannelOut.from_record(channel))


@router.delete("/{server_id}/channels/{channel_id}", response_model=SuccessResponse)
async def delete_channel(
    server_id: str,
    channel_id: str,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> SuccessResponse:
    """Delete a channel, disconnect its sockets and end its call."""

    await services.identity.delete_channel(user.id, server_id, channel_id)
    await services.voice.terminate_for_context(ContextType.SERVER_CHANNEL, channel_id)
    return SuccessResponse()


@router.get("/{server_id}/roles", response_model=RolesResponse)
async def list_roles(
    server_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> RolesResponse:
    _, member = await _load_membership(repository, server_id, user.id)
    roles = await repository.list_server_roles(server_id)
    return RolesResponse(
        roles=[ServerRoleOut.from_record(role) for role in roles],
        my_permissions=effective_permissions(member),
    )


@router.post("/{server_id}/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    server_id: str,
    payload: RoleCreate,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> RoleResponse:
    _, member = await _load_membership(repository, server_id, user.id)
    _require_manage_members(member)

    name = payload.name.strip()
    if not name:
        raise ValidationFailedError("Role name cannot be empty")
    try:
        role = await repository.create_server_role(
            server_id=server_id, name=name, permissions=[permission.value for permission in payload.permissions]
        )
    except DuplicateKeyError as exc:
        raise ConflictError("Role name already exists in this server") from exc
    logger.info("User %s created role %s in server %s", user.id, role.id, server_id)
    return RoleResponse(role=ServerRoleOut.from_record(role))


@router.patch("/{server_id}/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    server_id: str,
    role_id: str,
    payload: RoleUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RoleResponse:
    """Rename a role or replace its permissions.

    Live channel sessions are re-resolved since a permission change can
    affect which identity a member may use.
    """

    repository = services.repository
    _, member = await _load_membership(repository, server_id, user.id)
    _require_manage_members(member)
    if await repository.find_server_role_by_id(server_id, role_id) is None:
        raise NotFoundError("Role not found")

    name = None
    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise ValidationFailedError("Role name cannot be empty")
    permissions = None
    if payload.permissions is not None:
        permissions = [permission.value for permission in payload.permissions]
    try:
        role = await repository.update_server_role(server_id, role_id, name=name, permissions=permissions)
    except DuplicateKeyError as exc:
        raise ConflictError("Role name already exists in this server") from exc

    if permissions is not None:
        await services.identity.refresh_server_sessions(server_id)
    return RoleResponse(role=ServerRoleOut.from_record(role))


@router.patch("/{server_id}/rtc-policy", response_model=RtcPolicyResponse)
async def update_rtc_policy(
    server_id: str,
    payload: RtcPolicyUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RtcPolicyResponse:
    server, member = await _load_membership(services.repository, server_id, user.id)
    _require_manage_members(member)

    fields = payload.model_fields_set
    participant_cap = payload.participant_cap if "participant_cap" in fields else server.rtc_participant_cap
    stage_mode_enabled = server.stage_mode_enabled
    if payload.stage_mode_enabled is not None:
        stage_mode_enabled = payload.stage_mode_enabled
    screenshare_minimum_role = payload.screenshare_minimum_role or server.screenshare_minimum_role

    server = await services.repository.update_server_rtc_policy(
        server_id,
        rtc_participant_cap=participant_cap,
        stage_mode_enabled=stage_mode_enabled,
        screenshare_minimum_role=screenshare_minimum_role,
    )
    logger.info("User %s updated the call policy of server %s", user.id, server_id)
    return RtcPolicyResponse(rtc_policy=_rtc_policy(services, server))


@router.post("/{server_id}/invites", response_model=InviteResponse, status_code=status.HTTP_201_CREATED)
async def create_invite(
    server_id: str,
    payload: InviteCreate,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> InviteResponse:
    _, member = await _load_membership(repository, server_id, user.id)
    if not has_permission(member, ServerPermission.CREATE_INVITES):
        raise ForbiddenError("Missing CreateInvites permission")

    expires_at = None
    if payload.expires_minutes is not None:
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=payload.expires_minutes)

    for _ in range(INVITE_CODE_ATTEMPTS):
        try:
            invite = await repository.create_server_invite(
                server_id=server_id,
                code=generate_invite_code(),
                expires_at=expires_at,
                max_uses=payload.max_uses,
            )
        except DuplicateKeyError as exc:
            if exc.field == "code":
                continue
            raise
        return InviteResponse(invite=ServerInviteOut.model_validate(invite))

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to generate unique invite code",
    )


@router.patch("/{server_id}/settings", response_model=ServerSettingsResponse)
async def update_settings(
    server_id: str,
    payload: ServerSettingsUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ServerSettingsResponse:
    server = await services.identity.update_server_settings(
        user.id, server_id, channel_identity_mode=payload.channel_identity_mode
    )
    return ServerSettingsResponse(server=ServerOut.model_validate(server))


@router.post("/{server_id}/mask", response_model=MemberResponse)
async def update_server_mask(
    server_id: str,
    payload: ServerMaskUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> MemberResponse:
    member = await services.identity.update_server_mask(user.id, server_id, payload.server_mask_id)
    return MemberResponse(member=ServerMemberOut.from_record(member))


@router.post("/{server_id}/members/{member_user_id}/roles", response_model=MemberResponse)
async def set_member_roles(
    server_id: str,
    member_user_id: str,
    payload: MemberRolesUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> MemberResponse:
    member = await services.identity.set_member_roles(user.id, server_id, member_user_id, payload.role_ids)
    return MemberResponse(member=ServerMemberOut.from_record(member))


@router.delete("/{server_id}/members/{member_user_id}", response_model=SuccessResponse)
async def kick_member(
    server_id: str,
    member_user_id: str,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> SuccessResponse:
    await services.identity.kick_member(user.id, server_id, member_user_id)
    return SuccessResponse()
