"""Room lifecycle and host moderation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.models import MembershipRole, ModerationAction, RoomKind
from masq.domain.errors import (
    ForbiddenError,
    GoneError,
    LockedError,
    NotFoundError,
    ValidationFailedError,
)

from conftest import DummyWebSocket


@pytest.fixture()
async def hosted_room(services, seed):
    host, host_mask = await seed.user_with_mask("Host")
    guest, guest_mask = await seed.user_with_mask("Guest")
    room = await services.moderation.create_room(host.id, mask_id=host_mask.id, title="Den", kind=RoomKind.NARRATIVE)
    await services.moderation.join_room(guest.id, room.id, guest_mask.id)
    return host, host_mask, guest, guest_mask, room


async def connect_to_room(services, user, mask, room) -> DummyWebSocket:
    websocket = DummyWebSocket()
    session = services.gateway.connect(websocket, user.id)
    await services.gateway.handle_raw(session, {"type": "JOIN_ROOM", "data": {"roomId": room.id, "maskId": mask.id}})
    websocket.clear()
    return websocket


@pytest.mark.anyio
async def test_create_room_defaults(services, repository, seed, clock) -> None:
    host, host_mask = await seed.user_with_mask()

    ephemeral = await services.moderation.create_room(
        host.id, mask_id=host_mask.id, title="Flash", kind=RoomKind.EPHEMERAL
    )
    ritual = await services.moderation.create_room(host.id, mask_id=host_mask.id, title="Slow", kind=RoomKind.RITUAL)

    assert ephemeral.expires_at == clock() + timedelta(minutes=120)
    assert ephemeral.message_decay_minutes == 8
    assert ephemeral.fog_level == 0
    assert services.expiry.has_timer(ephemeral.id)
    assert ritual.expires_at is None
    assert not services.expiry.has_timer(ritual.id)

    membership = await repository.find_room_membership_with_mask(ephemeral.id, host_mask.id)
    assert membership.role is MembershipRole.HOST


@pytest.mark.anyio
async def test_create_room_validation(services, seed, clock) -> None:
    host, host_mask = await seed.user_with_mask()
    other, other_mask = await seed.user_with_mask()

    with pytest.raises(ForbiddenError):
        await services.moderation.create_room(host.id, mask_id=other_mask.id, title="x", kind=RoomKind.RITUAL)
    with pytest.raises(ValidationFailedError):
        await services.moderation.create_room(
            host.id, mask_id=host_mask.id, title="x", kind=RoomKind.RITUAL, expires_at=clock() - timedelta(seconds=1)
        )


@pytest.mark.anyio
async def test_locked_room_rejects_new_members_only(services, seed, hosted_room) -> None:
    host, host_mask, guest, guest_mask, room = hosted_room
    newcomer, newcomer_mask = await seed.user_with_mask()

    await services.moderation.set_locked(host.id, room.id, actor_mask_id=host_mask.id, locked=True)

    with pytest.raises(LockedError) as exc:
        await services.moderation.join_room(newcomer.id, room.id, newcomer_mask.id)
    assert exc.value.status_code == 423

    again = await services.moderation.join_room(guest.id, room.id, guest_mask.id)
    assert again.mask_id == guest_mask.id


@pytest.mark.anyio
async def test_join_missing_or_expired_room(services, seed, clock) -> None:
    host, host_mask = await seed.user_with_mask()
    room = await services.moderation.create_room(
        host.id, mask_id=host_mask.id, title="Flash", kind=RoomKind.EPHEMERAL, expires_at=clock() + timedelta(minutes=1)
    )

    with pytest.raises(NotFoundError):
        await services.moderation.join_room(host.id, "missing", host_mask.id)

    clock.advance(minutes=5)
    with pytest.raises(GoneError):
        await services.moderation.join_room(host.id, room.id, host_mask.id)


@pytest.mark.anyio
async def test_mute_duration_is_clamped_and_announced(services, clock, hosted_room) -> None:
    host, host_mask, guest, guest_mask, room = hosted_room
    observer = await connect_to_room(services, guest, guest_mask, room)

    moderation = await services.moderation.mute(
        host.id, room.id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id, minutes=500
    )

    assert moderation.action_type is ModerationAction.MUTE
    assert moderation.expires_at == clock() + timedelta(minutes=60)
    assert observer.types() == ["MODERATION_EVENT", "ROOM_STATE"]
    event = observer.sent[0]["data"]
    assert event["actionType"] == "MUTE"
    assert event["targetMaskId"] == guest_mask.id
    assert event["expiresAt"].startswith("2024-05-01T13:00:00")
    assert "locked" not in event


@pytest.mark.anyio
async def test_default_mute_length(services, clock, hosted_room) -> None:
    host, host_mask, guest, guest_mask, room = hosted_room

    moderation = await services.moderation.mute(
        host.id, room.id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id
    )

    assert moderation.expires_at == clock() + timedelta(minutes=10)


@pytest.mark.anyio
async def test_only_hosts_moderate_and_only_members_are_targets(services, hosted_room) -> None:
    host, host_mask, guest, guest_mask, room = hosted_room
    moderation = services.moderation

    with pytest.raises(ForbiddenError, match="Only room hosts"):
        await moderation.mute(guest.id, room.id, actor_mask_id=guest_mask.id, target_mask_id=host_mask.id)
    with pytest.raises(ForbiddenError, match="Actor mask"):
        await moderation.mute(guest.id, room.id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id)
    with pytest.raises(ValidationFailedError, match="themselves"):
        await moderation.mute(host.id, room.id, actor_mask_id=host_mask.id, target_mask_id=host_mask.id)
    with pytest.raises(NotFoundError):
        await moderation.exile(host.id, room.id, actor_mask_id=host_mask.id, target_mask_id="nobody")
    with pytest.raises(ForbiddenError):
        await moderation.set_locked(guest.id, room.id, actor_mask_id=guest_mask.id, locked=True)


@pytest.mark.anyio
async def test_exile_removes_membership_and_emits_a_single_event(services, repository, hosted_room) -> None:
    host, host_mask, guest, guest_mask, room = hosted_room
    host_ws = await connect_to_room(services, host, host_mask, room)
    guest_ws = await connect_to_room(services, guest, guest_mask, room)
    host_ws.clear()

    await services.moderation.exile(host.id, room.id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id)

    assert host_ws.types() == ["MODERATION_EVENT", "ROOM_STATE"]
    assert host_ws.sent[0]["data"]["actionType"] == "EXILE"
    assert [member["maskId"] for member in host_ws.sent[1]["data"]["members"]] == [host_mask.id]
    assert guest_ws.types() == ["ERROR"]
    assert guest_ws.sent[0]["data"]["message"] == "You were exiled from this room"
    assert await repository.find_room_membership_with_mask(room.id, guest_mask.id) is None
    assert not services.presence.is_mask_present(room.id, guest_mask.id)

    with pytest.raises(ForbiddenError, match="exiled"):
        await services.moderation.join_room(guest.id, room.id, guest_mask.id)


@pytest.mark.anyio
async def test_lock_event_carries_lock_state(services, hosted_room) -> None:
    host, host_mask, guest, guest_mask, room = hosted_room
    observer = await connect_to_room(services, guest, guest_mask, room)

    updated = await services.moderation.set_locked(host.id, room.id, actor_mask_id=host_mask.id, locked=True)

    assert updated.locked is True
    event = observer.frames("MODERATION_EVENT")[0]["data"]
    assert event["actionType"] == "LOCK"
    assert event["locked"] is True
    assert "targetMaskId" not in event
    assert observer.frames("ROOM_STATE")[0]["data"]["room"]["locked"] is True
