"""Unit tests validating Pydantic schema constraints."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.schemas.auth import RegisterRequest
from app.schemas.rooms import RoomCreate
from app.schemas.socket import (
    JoinRoomEvent,
    PingEvent,
    RoomMemberPayload,
    SendMessageEvent,
    encode_server_event,
    parse_client_event,
)


def test_register_request_enforces_password_length():
    with pytest.raises(ValidationError):
        RegisterRequest(email="bob@masq.io", password="short")


def test_register_request_requires_an_email():
    with pytest.raises(ValidationError):
        RegisterRequest(email="not-an-email", password="long enough")


def test_room_create_bounds_fog_level():
    with pytest.raises(ValidationError):
        RoomCreate.model_validate({"maskId": "m", "title": "Den", "kind": "RITUAL", "fogLevel": 99})


def test_client_events_are_dispatched_on_type():
    join = parse_client_event({"type": "JOIN_ROOM", "data": {"roomId": "r", "maskId": "m"}})
    assert isinstance(join, JoinRoomEvent)
    assert join.data.room_id == "r"

    assert isinstance(parse_client_event({"type": "PING"}), PingEvent)


@pytest.mark.parametrize(
    "frame",
    [
        {"type": "SEND_MESSAGE", "data": {"roomId": "r", "maskId": "m", "body": "   "}},
        {"type": "SEND_MESSAGE", "data": {"roomId": "r", "maskId": "m", "body": "x" * 1001}},
        {"type": "JOIN_ROOM", "data": {"roomId": "", "maskId": "m"}},
        {"type": "JOIN_CHANNEL", "data": {}},
        {"type": "UNKNOWN", "data": {}},
        ["not", "an", "object"],
    ],
)
def test_invalid_client_frames_are_rejected(frame):
    with pytest.raises(ValidationError):
        parse_client_event(frame)


def test_image_only_message_is_accepted():
    event = parse_client_event(
        {"type": "SEND_MESSAGE", "data": {"roomId": "r", "maskId": "m", "imageUploadId": "upload-1"}}
    )

    assert isinstance(event, SendMessageEvent)
    assert event.data.body == ""


def test_encode_server_event_validates_payload_type():
    with pytest.raises(ValidationError):
        encode_server_event("ERROR", {"message": ""})

    frame = encode_server_event("ROOM_EXPIRED", {"roomId": "r"})
    assert frame == {"type": "ROOM_EXPIRED", "data": {"roomId": "r"}}


def test_encode_server_event_refuses_the_wrong_model():
    payload = RoomMemberPayload.model_validate(
        {
            "roomId": "r",
            "member": {"maskId": "m", "displayName": "M", "avatarSeed": "s", "color": "#fff", "role": "HOST"},
        }
    )

    with pytest.raises(TypeError):
        encode_server_event("ROOM_EXPIRED", payload)
    assert encode_server_event("MEMBER_JOINED", payload)["data"]["member"]["role"] == "HOST"
