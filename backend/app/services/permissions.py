"""Centralized permission calculation service."""

from __future__ import annotations

from typing import Iterable

from app.models.enums import (
    ALL_SERVER_PERMISSIONS,
    ChannelIdentityMode,
    ServerMemberRole,
    ServerPermission,
)
from masq.domain.records import ChannelRecord, MaskRecord, ServerMemberRecord, ServerRecord
from masq.domain.repository import Repository

# OWNER and ADMIN always hold every permission, whatever roles they are assigned.
FULL_PERMISSION_ROLES = frozenset({ServerMemberRole.OWNER, ServerMemberRole.ADMIN})

_KNOWN_PERMISSIONS = {permission.value: permission for permission in ALL_SERVER_PERMISSIONS}


def normalize_permissions(values: Iterable[str]) -> list[ServerPermission]:
    """Deduplicate raw permission names, dropping unknown or stale ones."""

    result: list[ServerPermission] = []
    for value in values:
        raw = value.value if isinstance(value, ServerPermission) else str(value)
        permission = _KNOWN_PERMISSIONS.get(raw)
        if permission is not None and permission not in result:
            result.append(permission)
    return result


def effective_permissions(member: ServerMemberRecord) -> list[ServerPermission]:
    """Return the resolved permission set of a server member."""

    if member.role in FULL_PERMISSION_ROLES:
        return list(ALL_SERVER_PERMISSIONS)
    return normalize_permissions(member.permissions)


def has_permission(member: ServerMemberRecord, permission: ServerPermission) -> bool:
    return permission in effective_permissions(member)


def has_any_permission(member: ServerMemberRecord, permissions: Iterable[ServerPermission]) -> bool:
    effective = effective_permissions(member)
    return any(permission in effective for permission in permissions)


async def resolve_effective_channel_mask(
    repository: Repository,
    server: ServerRecord,
    channel: ChannelRecord,
    member: ServerMemberRecord,
) -> MaskRecord:
    """Mask a member presents in *channel* given the server identity mode.

    In ``CHANNEL_MASK`` mode a per-channel override wins; without one (and in
    ``SERVER_MASK`` mode) the member's server-wide mask is used.
    """

    if server.channel_identity_mode is not ChannelIdentityMode.CHANNEL_MASK:
        return member.server_mask

    identity = await repository.find_channel_member_identity(channel.id, member.user_id)
    if identity is None:
        return member.server_mask
    return identity.mask
