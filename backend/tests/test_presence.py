"""Presence registry bookkeeping and join/leave de-duplication."""

from __future__ import annotations

import pytest
from fastapi.websockets import WebSocketState

from app.models import MembershipRole, ServerMemberRole
from app.monitoring.metrics import realtime_connections
from app.schemas.payloads import ChannelMemberState, MaskIdentity, RoomMemberState
from masq.realtime.presence import PresenceRegistry, safe_send_json
from masq.realtime.ratelimit import ContextKind

from conftest import DummyWebSocket


def _room_member(mask_id: str) -> RoomMemberState:
    return RoomMemberState(
        mask_id=mask_id, display_name=mask_id, avatar_seed="seed", color="#fff", role=MembershipRole.MEMBER
    )


def _channel_member(user_id: str) -> ChannelMemberState:
    return ChannelMemberState(
        user_id=user_id,
        role=ServerMemberRole.MEMBER,
        mask=MaskIdentity(mask_id=f"mask-{user_id}", display_name=user_id, avatar_seed="seed", color="#fff"),
    )


def _join_room(presence: PresenceRegistry, websocket: DummyWebSocket, user_id: str, room_id: str, mask_id: str):
    session = presence.register(websocket, user_id)
    session.room_id = room_id
    session.room_member = _room_member(mask_id)
    presence.add(ContextKind.ROOM, room_id, websocket)
    return session


@pytest.mark.anyio
async def test_member_left_only_when_last_socket_of_mask_leaves() -> None:
    presence = PresenceRegistry()
    first_tab, second_tab, observer = DummyWebSocket(), DummyWebSocket(), DummyWebSocket()
    first = _join_room(presence, first_tab, "user-1", "room-1", "mask-1")
    _join_room(presence, second_tab, "user-1", "room-1", "mask-1")
    _join_room(presence, observer, "user-2", "room-1", "mask-2")

    assert len(presence.connected_room_members("room-1")) == 2

    await presence.leave_room(first)
    assert observer.frames("MEMBER_LEFT") == []
    assert presence.is_mask_present("room-1", "mask-1")

    await presence.unregister(second_tab)
    left = observer.frames("MEMBER_LEFT")
    assert len(left) == 1
    assert left[0]["data"]["roomId"] == "room-1"
    assert left[0]["data"]["member"]["maskId"] == "mask-1"
    assert [member.mask_id for member in presence.connected_room_members("room-1")] == ["mask-2"]


@pytest.mark.anyio
async def test_silent_leave_skips_member_left() -> None:
    presence = PresenceRegistry()
    leaving, observer = DummyWebSocket(), DummyWebSocket()
    session = _join_room(presence, leaving, "user-1", "room-1", "mask-1")
    _join_room(presence, observer, "user-2", "room-1", "mask-2")

    await presence.leave_room(session, should_broadcast=False)

    assert observer.sent == []
    assert session.room_id is None and session.room_member is None
    assert presence.sockets(ContextKind.ROOM, "room-1") == [observer]


@pytest.mark.anyio
async def test_channel_presence_is_deduplicated_per_user() -> None:
    presence = PresenceRegistry()
    tabs = [DummyWebSocket(), DummyWebSocket()]
    observer = DummyWebSocket()
    sessions = []
    for websocket, user_id in ((tabs[0], "user-1"), (tabs[1], "user-1"), (observer, "user-2")):
        session = presence.register(websocket, user_id)
        session.channel_id = "channel-1"
        session.channel_member = _channel_member(user_id)
        presence.add(ContextKind.CHANNEL, "channel-1", websocket)
        sessions.append(session)

    assert sorted(member.user_id for member in presence.connected_channel_members("channel-1")) == [
        "user-1",
        "user-2",
    ]

    await presence.leave_channel(sessions[0])
    assert observer.frames("CHANNEL_MEMBER_LEFT") == []
    await presence.leave_channel(sessions[1])
    assert len(observer.frames("CHANNEL_MEMBER_LEFT")) == 1


@pytest.mark.anyio
async def test_broadcast_skips_closed_and_excluded_sockets() -> None:
    presence = PresenceRegistry()
    open_socket, closed_socket, excluded = DummyWebSocket(), DummyWebSocket(), DummyWebSocket()
    closed_socket.application_state = WebSocketState.DISCONNECTED
    for index, websocket in enumerate((open_socket, closed_socket, excluded)):
        presence.register(websocket, f"user-{index}")
        presence.add(ContextKind.DM, "thread-1", websocket)

    await presence.broadcast(ContextKind.DM, "thread-1", {"type": "PONG", "data": {}}, exclude=[excluded])

    assert open_socket.sent == [{"type": "PONG", "data": {}}]
    assert closed_socket.sent == []
    assert excluded.sent == []


@pytest.mark.anyio
async def test_safe_send_json_swallows_transport_errors() -> None:
    class BrokenSocket(DummyWebSocket):
        async def send_json(self, payload):
            raise RuntimeError("socket is gone")

    assert not await safe_send_json(BrokenSocket(), {"type": "PONG", "data": {}})


@pytest.mark.anyio
async def test_close_all_resets_registry_and_gauges() -> None:
    presence = PresenceRegistry()
    first, second = DummyWebSocket(), DummyWebSocket()
    _join_room(presence, first, "user-1", "room-1", "mask-1")
    session = presence.register(second, "user-2")
    session.dm_thread_id = "thread-1"
    presence.add(ContextKind.DM, "thread-1", second)

    assert realtime_connections.value(scope="sockets") == 2

    await presence.close_all()

    assert first.close_code == 1001 and second.close_code == 1001
    assert presence.sessions() == []
    assert presence.context_ids(ContextKind.ROOM) == []
    assert realtime_connections.value(scope="sockets") == 0
    assert realtime_connections.value(scope="room") == 0
    assert realtime_connections.value(scope="dm") == 0


def test_register_tracks_sessions_per_user() -> None:
    presence = PresenceRegistry()
    presence.register(DummyWebSocket(), "user-1")
    presence.register(DummyWebSocket(), "user-1")
    presence.register(DummyWebSocket(), "user-2")

    assert len(presence.sessions_for_user("user-1")) == 2
    assert presence.get(DummyWebSocket()) is None
