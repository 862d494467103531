"""Room expiry timers, teardown and the startup sweep."""

from __future__ import annotations

from datetime import timedelta

import anyio
import pytest

from app.models import ContextType, RoomKind
from app.monitoring.metrics import room_expirations_total
from masq.realtime.expiry import RoomExpiryScheduler
from masq.realtime.ratelimit import ContextKind

from conftest import DummyWebSocket


async def joined_socket(services, user, mask, room) -> tuple[DummyWebSocket, object]:
    websocket = DummyWebSocket()
    session = services.gateway.connect(websocket, user.id)
    await services.gateway.handle_raw(session, {"type": "JOIN_ROOM", "data": {"roomId": room.id, "maskId": mask.id}})
    websocket.clear()
    return websocket, session


@pytest.fixture()
async def shared_room(services, seed, clock):
    host, host_mask = await seed.user_with_mask()
    guest, guest_mask = await seed.user_with_mask()
    room = await services.moderation.create_room(
        host.id, mask_id=host_mask.id, title="Flash", kind=RoomKind.EPHEMERAL, expires_at=clock() + timedelta(hours=1)
    )
    await services.moderation.join_room(guest.id, room.id, guest_mask.id)
    return host, host_mask, guest, guest_mask, room


@pytest.mark.anyio
async def test_expire_room_tears_down_once(services, shared_room) -> None:
    host, host_mask, guest, guest_mask, room = shared_room
    host_ws, host_session = await joined_socket(services, host, host_mask, room)
    guest_ws, guest_session = await joined_socket(services, guest, guest_mask, room)
    host_ws.clear()

    await services.expiry.expire_room(room.id)

    for websocket in (host_ws, guest_ws):
        assert websocket.types() == ["ROOM_EXPIRED"]
        assert websocket.sent[0]["data"] == {"roomId": room.id}
    assert host_session.room_id is None and guest_session.room_id is None
    assert services.presence.sockets(ContextKind.ROOM, room.id) == []
    assert not services.expiry.has_timer(room.id)
    assert room_expirations_total.value() == 1

    await services.expiry.expire_room(room.id)

    assert host_ws.types() == ["ROOM_EXPIRED"]
    assert room_expirations_total.value() == 1


@pytest.mark.anyio
async def test_expiry_ends_the_room_voice_session(services, repository, sfu, shared_room) -> None:
    host, host_mask, guest, guest_mask, room = shared_room
    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)

    await services.expiry.expire_room(room.id)

    session = await repository.find_voice_session_by_id(joined.session.id)
    assert session.ended_at is not None
    assert await repository.list_active_voice_participants(session.id) == []
    assert sfu.deleted_rooms == [session.livekit_room_name]


@pytest.mark.anyio
async def test_expired_room_memory_is_bounded(services, clock) -> None:
    expiry = RoomExpiryScheduler(services.repository, services.presence, services.state, clock=clock, expired_memory=2)

    for room_id in ("room-a", "room-b", "room-c"):
        await expiry.expire_room(room_id)
    assert room_expirations_total.value() == 3

    await expiry.expire_room("room-c")
    assert room_expirations_total.value() == 3

    await expiry.expire_room("room-a")
    assert room_expirations_total.value() == 4


@pytest.mark.anyio
async def test_timer_fires_when_the_room_expires(services, seed, clock) -> None:
    host, host_mask = await seed.user_with_mask()
    room = await services.moderation.create_room(
        host.id,
        mask_id=host_mask.id,
        title="Blink",
        kind=RoomKind.EPHEMERAL,
        expires_at=clock() + timedelta(milliseconds=50),
    )
    websocket, session = await joined_socket(services, host, host_mask, room)
    assert services.expiry.has_timer(room.id)

    await anyio.sleep(0.3)

    assert websocket.types() == ["ROOM_EXPIRED"]
    assert session.room_id is None
    assert not services.expiry.has_timer(room.id)


@pytest.mark.anyio
async def test_sweep_expires_overdue_rooms_and_arms_the_rest(services, repository, clock) -> None:
    overdue = await repository.create_room(
        title="Old",
        kind=RoomKind.EPHEMERAL,
        locked=False,
        fog_level=0,
        message_decay_minutes=8,
        expires_at=clock() - timedelta(minutes=1),
    )
    upcoming = await repository.create_room(
        title="New",
        kind=RoomKind.EPHEMERAL,
        locked=False,
        fog_level=0,
        message_decay_minutes=8,
        expires_at=clock() + timedelta(hours=1),
    )

    await services.startup()

    assert room_expirations_total.value() == 1
    assert not services.expiry.has_timer(overdue.id)
    assert services.expiry.has_timer(upcoming.id)


@pytest.mark.anyio
async def test_shutdown_cancels_timers_and_closes_sockets(services, sfu, shared_room) -> None:
    host, host_mask, guest, guest_mask, room = shared_room
    websocket, _ = await joined_socket(services, host, host_mask, room)

    await services.shutdown()

    assert not services.expiry.has_timer(room.id)
    assert websocket.close_code == 1001
    assert services.presence.sessions() == []
    assert sfu.closed
