"""Identity changes propagating to live sockets, and member removal."""

from __future__ import annotations

import pytest

from app.models import ChannelIdentityMode, ServerPermission
from masq.domain.errors import ForbiddenError, NotFoundError, ValidationFailedError
from masq.realtime.identity import CHANNEL_DELETED_MESSAGE, REMOVED_FROM_SERVER_MESSAGE

from conftest import DummyWebSocket


async def send(services, session, event_type: str, data: dict) -> None:
    await services.gateway.handle_raw(session, {"type": event_type, "data": data})


async def in_channel(services, user, channel) -> tuple[DummyWebSocket, object]:
    websocket = DummyWebSocket()
    session = services.gateway.connect(websocket, user.id)
    await send(services, session, "JOIN_CHANNEL", {"channelId": channel.id})
    websocket.clear()
    return websocket, session


@pytest.fixture()
async def guild(seed):
    owner, owner_mask = await seed.user_with_mask("Owner")
    regular, regular_mask = await seed.user_with_mask("Regular")
    server, channel = await seed.server(owner, owner_mask)
    await seed.member(server.id, regular.id, regular_mask.id)
    return owner, owner_mask, regular, regular_mask, server, channel


@pytest.mark.anyio
async def test_dm_mask_switch_is_broadcast_and_enforced(services, seed) -> None:
    alice, alice_mask = await seed.user_with_mask("Alice")
    alt_mask = await seed.mask(alice.id, "Alice Alt")
    bob, bob_mask = await seed.user_with_mask("Bob")
    thread = await seed.dm(alice, alice_mask, bob, bob_mask)

    alice_ws, bob_ws = DummyWebSocket(), DummyWebSocket()
    alice_session = services.gateway.connect(alice_ws, alice.id)
    bob_session = services.gateway.connect(bob_ws, bob.id)
    await send(services, alice_session, "JOIN_DM", {"threadId": thread.id, "maskId": alice_mask.id})
    await send(services, bob_session, "JOIN_DM", {"threadId": thread.id, "maskId": bob_mask.id})
    bob_ws.clear()

    participant = await services.identity.switch_dm_mask(alice.id, thread.id, alt_mask.id)

    assert participant.active_mask_id == alt_mask.id
    assert alice_session.dm_mask_id == alt_mask.id
    [state] = bob_ws.frames("DM_STATE")
    names = {item["userId"]: item["mask"]["displayName"] for item in state["data"]["participants"]}
    assert names[alice.id] == "Alice Alt"

    alice_ws.clear()
    await send(services, alice_session, "SEND_DM", {"threadId": thread.id, "maskId": alice_mask.id, "body": "old"})
    await send(services, alice_session, "SEND_DM", {"threadId": thread.id, "maskId": alt_mask.id, "body": "new"})
    assert [frame["data"]["message"] for frame in alice_ws.frames("ERROR")] == [
        "Message does not match active DM or mask"
    ]
    [frame] = bob_ws.frames("NEW_DM_MESSAGE")
    assert frame["data"]["message"]["mask"]["maskId"] == alt_mask.id


@pytest.mark.anyio
async def test_dm_mask_switch_validation(services, seed) -> None:
    alice, alice_mask = await seed.user_with_mask()
    bob, bob_mask = await seed.user_with_mask()
    eve, eve_mask = await seed.user_with_mask()
    thread = await seed.dm(alice, alice_mask, bob, bob_mask)

    with pytest.raises(ForbiddenError, match="Mask does not belong"):
        await services.identity.switch_dm_mask(alice.id, thread.id, bob_mask.id)
    with pytest.raises(NotFoundError):
        await services.identity.switch_dm_mask(alice.id, "missing", alice_mask.id)
    with pytest.raises(ForbiddenError, match="Not authorized"):
        await services.identity.switch_dm_mask(eve.id, thread.id, eve_mask.id)


@pytest.mark.anyio
async def test_channel_mask_override_requires_channel_mode(services, seed, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    alt_mask = await seed.mask(regular.id, "Regular Alt")
    owner_ws, _ = await in_channel(services, owner, channel)
    _, regular_session = await in_channel(services, regular, channel)
    owner_ws.clear()

    with pytest.raises(ValidationFailedError):
        await services.identity.set_channel_mask(regular.id, channel.id, alt_mask.id)

    await services.identity.update_server_settings(
        owner.id, server.id, channel_identity_mode=ChannelIdentityMode.CHANNEL_MASK
    )
    owner_ws.clear()
    identity = await services.identity.set_channel_mask(regular.id, channel.id, alt_mask.id)

    assert identity.mask_id == alt_mask.id
    assert regular_session.channel_member.mask.mask_id == alt_mask.id
    [state] = owner_ws.frames("CHANNEL_STATE")
    masks = {member["userId"]: member["mask"]["displayName"] for member in state["data"]["members"]}
    assert masks[regular.id] == "Regular Alt"


@pytest.mark.anyio
async def test_switching_back_to_server_mode_restores_server_masks(services, seed, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    alt_mask = await seed.mask(regular.id, "Regular Alt")
    await services.identity.update_server_settings(
        owner.id, server.id, channel_identity_mode=ChannelIdentityMode.CHANNEL_MASK
    )
    await services.identity.set_channel_mask(regular.id, channel.id, alt_mask.id)
    _, regular_session = await in_channel(services, regular, channel)
    assert regular_session.channel_member.mask.mask_id == alt_mask.id

    await services.identity.update_server_settings(
        owner.id, server.id, channel_identity_mode=ChannelIdentityMode.SERVER_MASK
    )

    assert regular_session.channel_member.mask.mask_id == regular_mask.id


@pytest.mark.anyio
async def test_settings_and_roles_require_manage_members(services, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild

    with pytest.raises(ForbiddenError):
        await services.identity.update_server_settings(
            regular.id, server.id, channel_identity_mode=ChannelIdentityMode.CHANNEL_MASK
        )
    with pytest.raises(ForbiddenError):
        await services.identity.set_member_roles(regular.id, server.id, owner.id, [])
    with pytest.raises(NotFoundError):
        await services.identity.update_server_settings(
            owner.id, "missing", channel_identity_mode=ChannelIdentityMode.CHANNEL_MASK
        )


@pytest.mark.anyio
async def test_set_member_roles(services, repository, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    role = await repository.create_server_role(
        server_id=server.id, name="Moderators", permissions=[ServerPermission.MODERATE_CHAT.value]
    )

    updated = await services.identity.set_member_roles(owner.id, server.id, regular.id, [role.id, role.id])
    assert updated.role_ids == (role.id,)
    assert updated.permissions == ("ModerateChat",)

    with pytest.raises(ValidationFailedError, match="Owner roles"):
        await services.identity.set_member_roles(owner.id, server.id, owner.id, [role.id])
    with pytest.raises(ValidationFailedError):
        await services.identity.set_member_roles(owner.id, server.id, regular.id, ["not-a-role"])
    with pytest.raises(NotFoundError):
        await services.identity.set_member_roles(owner.id, server.id, "ghost", [])


@pytest.mark.anyio
async def test_server_mask_update_refreshes_live_sessions(services, seed, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    new_mask = await seed.mask(regular.id, "Fresh Face")
    owner_ws, _ = await in_channel(services, owner, channel)
    _, regular_session = await in_channel(services, regular, channel)
    owner_ws.clear()

    member = await services.identity.update_server_mask(regular.id, server.id, new_mask.id)

    assert member.server_mask_id == new_mask.id
    assert regular_session.channel_member.mask.display_name == "Fresh Face"
    assert owner_ws.types() == ["CHANNEL_STATE"]


@pytest.mark.anyio
async def test_kick_disconnects_live_channel_sessions(services, repository, seed, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    moderator, moderator_mask = await seed.user_with_mask()
    await seed.member(server.id, moderator.id, moderator_mask.id, permissions=(ServerPermission.MODERATE_CHAT,))
    owner_ws, _ = await in_channel(services, owner, channel)
    regular_ws, regular_session = await in_channel(services, regular, channel)
    owner_ws.clear()

    await services.identity.kick_member(moderator.id, server.id, regular.id)

    assert await repository.find_server_member(server.id, regular.id) is None
    assert [frame["data"]["message"] for frame in regular_ws.frames("ERROR")] == [REMOVED_FROM_SERVER_MESSAGE]
    assert regular_session.channel_id is None
    assert owner_ws.types() == ["CHANNEL_MEMBER_LEFT", "CHANNEL_STATE"]

    await send(services, regular_session, "JOIN_CHANNEL", {"channelId": channel.id})
    assert regular_ws.frames("ERROR")[-1]["data"]["message"] == "You are not a member of this server"


@pytest.mark.anyio
async def test_kick_rules(services, seed, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    other, other_mask = await seed.user_with_mask()
    await seed.member(server.id, other.id, other_mask.id)

    with pytest.raises(ForbiddenError, match="ModerateChat or ManageMembers"):
        await services.identity.kick_member(regular.id, server.id, other.id)
    with pytest.raises(ValidationFailedError, match="yourself"):
        await services.identity.kick_member(owner.id, server.id, owner.id)
    with pytest.raises(NotFoundError):
        await services.identity.kick_member(owner.id, server.id, "ghost")

    moderator, moderator_mask = await seed.user_with_mask()
    await seed.member(server.id, moderator.id, moderator_mask.id, permissions=(ServerPermission.MANAGE_MEMBERS,))
    with pytest.raises(ValidationFailedError, match="owner"):
        await services.identity.kick_member(moderator.id, server.id, owner.id)


@pytest.mark.anyio
async def test_channel_deletion_disconnects_sessions_quietly(services, repository, seed, guild) -> None:
    owner, owner_mask, regular, regular_mask, server, channel = guild
    owner_ws, owner_session = await in_channel(services, owner, channel)
    regular_ws, regular_session = await in_channel(services, regular, channel)
    owner_ws.clear()

    with pytest.raises(ForbiddenError, match="ManageChannels"):
        await services.identity.delete_channel(regular.id, server.id, channel.id)

    await services.identity.delete_channel(owner.id, server.id, channel.id)

    assert await repository.find_channel_by_id(channel.id) is None
    for websocket, session in ((owner_ws, owner_session), (regular_ws, regular_session)):
        assert [frame["data"]["message"] for frame in websocket.frames("ERROR")] == [CHANNEL_DELETED_MESSAGE]
        assert websocket.frames("CHANNEL_MEMBER_LEFT") == []
        assert session.channel_id is None

    with pytest.raises(NotFoundError, match="Channel not found"):
        await services.identity.delete_channel(owner.id, server.id, channel.id)
