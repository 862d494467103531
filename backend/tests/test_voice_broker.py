"""Voice session lifecycle, media server policy and failure handling."""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.models import ContextType, RoomKind, ServerMemberRole
from app.monitoring.metrics import sfu_failures_total, voice_sessions_active
from masq.domain.errors import (
    ConflictError,
    ForbiddenError,
    GoneError,
    NotFoundError,
    ServiceUnavailableError,
    UpstreamFailureError,
    ValidationFailedError,
)
from masq.voice.broker import SFU_UNAVAILABLE_MESSAGE, VoiceBroker


@pytest.fixture()
async def room_call(services, seed):
    host, host_mask = await seed.user_with_mask("Host")
    guest, guest_mask = await seed.user_with_mask("Guest")
    room = await services.moderation.create_room(host.id, mask_id=host_mask.id, title="Den", kind=RoomKind.RITUAL)
    await services.moderation.join_room(guest.id, room.id, guest_mask.id)
    return host, host_mask, guest, guest_mask, room


@pytest.fixture()
async def channel_call(seed):
    owner, owner_mask = await seed.user_with_mask("Owner")
    regular, regular_mask = await seed.user_with_mask("Regular")
    server, channel = await seed.server(owner, owner_mask)
    await seed.member(server.id, regular.id, regular_mask.id)
    return owner, owner_mask, regular, regular_mask, channel


@pytest.mark.anyio
async def test_join_issues_token_with_mask_metadata(services, sfu, channel_call) -> None:
    owner, owner_mask, regular, regular_mask, channel = channel_call

    joined = await services.voice.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, owner_mask.id)

    assert joined.token == "token-1"
    assert joined.livekit_url == "wss://media.test"
    assert joined.participant_cap == 12
    assert joined.can_screenshare is True
    assert [participant.mask_id for participant in joined.participants] == [owner_mask.id]
    issued = sfu.tokens[0]
    assert issued["room_name"] == joined.session.livekit_room_name
    assert issued["identity"].startswith(f"{owner.id}:{owner_mask.id}:")
    assert issued["metadata"].mask_id == owner_mask.id
    assert issued["metadata"].context_type == "SERVER_CHANNEL"
    assert issued["can_publish"] is True
    assert voice_sessions_active.value() == 1


@pytest.mark.anyio
async def test_rejoin_reuses_session_and_replaces_participant(services, channel_call) -> None:
    owner, owner_mask, regular, regular_mask, channel = channel_call

    first = await services.voice.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, owner_mask.id)
    second = await services.voice.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, owner_mask.id)

    assert second.session.id == first.session.id
    assert len(second.participants) == 1
    assert voice_sessions_active.value() == 1


@pytest.mark.anyio
async def test_channel_join_requires_effective_mask(services, seed, channel_call) -> None:
    owner, owner_mask, regular, regular_mask, channel = channel_call
    other_mask = await seed.mask(owner.id, "Someone Else")
    outsider, outsider_mask = await seed.user_with_mask()

    with pytest.raises(ForbiddenError, match="active channel identity"):
        await services.voice.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, other_mask.id)
    with pytest.raises(ForbiddenError, match="not a member"):
        await services.voice.join(outsider.id, ContextType.SERVER_CHANNEL, channel.id, outsider_mask.id)
    with pytest.raises(ForbiddenError, match="does not belong"):
        await services.voice.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, regular_mask.id)


@pytest.mark.anyio
async def test_server_call_participant_cap(repository, sfu, clock, channel_call) -> None:
    owner, owner_mask, regular, regular_mask, channel = channel_call
    broker = VoiceBroker(repository, sfu, clock=clock, server_participant_cap=1)

    await broker.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, owner_mask.id)

    with pytest.raises(ConflictError, match=r"\(1\)"):
        await broker.join(regular.id, ContextType.SERVER_CHANNEL, channel.id, regular_mask.id)
    rejoined = await broker.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, owner_mask.id)
    assert rejoined.participant_cap == 1


@pytest.mark.anyio
async def test_room_calls_have_no_cap(services, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call

    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)

    assert joined.participant_cap is None


@pytest.mark.anyio
async def test_last_leave_ends_the_session(services, repository, sfu, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    await services.voice.join(guest.id, ContextType.EPHEMERAL_ROOM, room.id, guest_mask.id)
    session_id = joined.session.id

    await services.voice.leave(host.id, session_id)
    assert (await repository.find_voice_session_by_id(session_id)).ended_at is None

    with pytest.raises(ForbiddenError):
        await services.voice.leave(host.id, session_id)

    await services.voice.leave(guest.id, session_id)
    ended = await repository.find_voice_session_by_id(session_id)
    assert ended.ended_at is not None
    assert sfu.deleted_rooms == [joined.session.livekit_room_name]
    assert voice_sessions_active.value() == 0

    await services.voice.leave(guest.id, session_id)


@pytest.mark.anyio
async def test_host_mute_revokes_publish_and_persists(services, sfu, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    await services.voice.join(guest.id, ContextType.EPHEMERAL_ROOM, room.id, guest_mask.id)
    guest_identity = sfu.tokens[1]["identity"]

    participants = await services.voice.mute(
        host.id, joined.session.id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id
    )

    assert sfu.revoked == [(joined.session.livekit_room_name, guest_identity)]
    muted = {participant.mask_id: participant.is_server_muted for participant in participants}
    assert muted == {host_mask.id: False, guest_mask.id: True}

    await services.voice.join(guest.id, ContextType.EPHEMERAL_ROOM, room.id, guest_mask.id)
    assert sfu.tokens[-1]["can_publish"] is False


@pytest.mark.anyio
async def test_mute_rules(services, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    session_id = joined.session.id

    with pytest.raises(ForbiddenError, match="Only room hosts can mute participants"):
        await services.voice.mute(guest.id, session_id, actor_mask_id=guest_mask.id, target_mask_id=host_mask.id)
    with pytest.raises(ValidationFailedError, match="own mask"):
        await services.voice.mute(host.id, session_id, actor_mask_id=host_mask.id, target_mask_id=host_mask.id)
    with pytest.raises(NotFoundError, match="not active"):
        await services.voice.mute(host.id, session_id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id)


@pytest.mark.anyio
async def test_mute_failure_surfaces_as_upstream_error(services, sfu, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    await services.voice.join(guest.id, ContextType.EPHEMERAL_ROOM, room.id, guest_mask.id)
    sfu.fail_admin_calls = True

    with pytest.raises(UpstreamFailureError) as exc:
        await services.voice.mute(host.id, joined.session.id, actor_mask_id=host_mask.id, target_mask_id=guest_mask.id)

    assert exc.value.status_code == 502
    assert sfu_failures_total.value(operation="mute") == 1
    participants = await services.repository.list_active_voice_participants(joined.session.id)
    assert not any(participant.is_server_muted for participant in participants)


@pytest.mark.anyio
async def test_dm_calls_cannot_be_server_muted(services, seed) -> None:
    alice, alice_mask = await seed.user_with_mask()
    bob, bob_mask = await seed.user_with_mask()
    thread = await seed.dm(alice, alice_mask, bob, bob_mask)
    joined = await services.voice.join(alice.id, ContextType.DM_THREAD, thread.id, alice_mask.id)
    await services.voice.join(bob.id, ContextType.DM_THREAD, thread.id, bob_mask.id)

    with pytest.raises(ValidationFailedError):
        await services.voice.mute(alice.id, joined.session.id, actor_mask_id=alice_mask.id, target_mask_id=bob_mask.id)
    assert joined.participant_cap is None


@pytest.mark.anyio
async def test_only_moderators_end_calls(services, repository, sfu, channel_call) -> None:
    owner, owner_mask, regular, regular_mask, channel = channel_call
    joined = await services.voice.join(regular.id, ContextType.SERVER_CHANNEL, channel.id, regular_mask.id)

    with pytest.raises(ForbiddenError, match="Only server owners/admins can end calls"):
        await services.voice.end(regular.id, joined.session.id, actor_mask_id=regular_mask.id)

    ended = await services.voice.end(owner.id, joined.session.id, actor_mask_id=owner_mask.id)
    assert ended.ended_at is not None
    assert await repository.list_active_voice_participants(joined.session.id) == []


@pytest.mark.anyio
async def test_delete_room_failure_does_not_block_termination(services, sfu, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    sfu.fail_admin_calls = True

    ended = await services.voice.end(host.id, joined.session.id, actor_mask_id=host_mask.id)

    assert ended.ended_at is not None
    assert sfu_failures_total.value(operation="delete_room") == 1


@pytest.mark.anyio
async def test_missing_media_server_is_unavailable(repository, clock, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    broker = VoiceBroker(repository, None, clock=clock)

    with pytest.raises(ServiceUnavailableError, match=SFU_UNAVAILABLE_MESSAGE) as exc:
        await broker.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    assert exc.value.status_code == 503


@pytest.mark.anyio
async def test_expired_room_calls_are_gone(services, seed, clock) -> None:
    host, host_mask = await seed.user_with_mask()
    room = await services.moderation.create_room(
        host.id, mask_id=host_mask.id, title="Flash", kind=RoomKind.EPHEMERAL, expires_at=clock() + timedelta(minutes=1)
    )
    clock.advance(minutes=2)

    with pytest.raises(GoneError):
        await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)


@pytest.mark.anyio
async def test_sessions_left_over_from_earlier_runs_do_not_move_the_gauge(services, repository, room_call) -> None:
    host, host_mask, guest, guest_mask, room = room_call
    leftover = await repository.create_voice_session(
        context_type=ContextType.EPHEMERAL_ROOM,
        context_id=room.id,
        livekit_room_name="room-left-over",
    )

    ended = await services.voice.terminate_for_context(ContextType.EPHEMERAL_ROOM, room.id)

    assert ended.id == leftover.id and ended.ended_at is not None
    assert voice_sessions_active.value() == 0

    joined = await services.voice.join(host.id, ContextType.EPHEMERAL_ROOM, room.id, host_mask.id)
    assert voice_sessions_active.value() == 1
    await services.voice.terminate(joined.session)
    assert voice_sessions_active.value() == 0


@pytest.mark.anyio
async def test_server_call_policy_overrides(services, repository, channel_call) -> None:
    owner, owner_mask, regular, regular_mask, channel = channel_call
    await repository.update_server_rtc_policy(
        channel.server_id,
        rtc_participant_cap=1,
        stage_mode_enabled=False,
        screenshare_minimum_role=ServerMemberRole.ADMIN,
    )

    joined = await services.voice.join(owner.id, ContextType.SERVER_CHANNEL, channel.id, owner_mask.id)
    assert joined.participant_cap == 1
    assert joined.can_screenshare is True
    with pytest.raises(ConflictError, match=r"Participant cap reached for this server call \(1\)"):
        await services.voice.join(regular.id, ContextType.SERVER_CHANNEL, channel.id, regular_mask.id)

    await repository.update_server_rtc_policy(
        channel.server_id,
        rtc_participant_cap=0,
        stage_mode_enabled=False,
        screenshare_minimum_role=ServerMemberRole.ADMIN,
    )
    member_join = await services.voice.join(regular.id, ContextType.SERVER_CHANNEL, channel.id, regular_mask.id)
    assert member_join.participant_cap is None
    assert member_join.can_screenshare is False
