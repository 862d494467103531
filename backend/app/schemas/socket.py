"""Realtime event envelopes exchanged over ``/ws``.

Client frames are validated as a tagged union on ``type``. Server frames are
built through :func:`encode_server_event`, which validates the payload against
the model registered for the event type before anything is written to a
socket.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationInfo, field_validator, model_validator

from app.models.enums import ModerationAction
from app.schemas.common import CamelModel
from app.schemas.payloads import (
    ChannelMemberState,
    ChannelMessageOut,
    ChannelOut,
    DmMessageOut,
    DmParticipantOut,
    RoomMemberState,
    RoomMessageOut,
    RoomOut,
)
from masq.realtime.sanitize import MAX_MESSAGE_LENGTH

# ---------------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------------


class _OutgoingBody(CamelModel):
    body: str = ""
    image_upload_id: str | None = None

    @field_validator("body")
    @classmethod
    def limit_body(cls, value: str, info: ValidationInfo) -> str:
        limit = (info.context or {}).get("max_body_length", MAX_MESSAGE_LENGTH)
        if len(value) > limit:
            raise ValueError(f"Message body must be at most {limit} characters")
        return value

    @model_validator(mode="after")
    def require_content(self) -> "_OutgoingBody":
        if not self.body.strip() and not self.image_upload_id:
            raise ValueError("Message body or imageUploadId is required")
        return self


class JoinRoomPayload(CamelModel):
    room_id: str = Field(min_length=1)
    mask_id: str = Field(min_length=1)


class SendMessagePayload(_OutgoingBody):
    room_id: str = Field(min_length=1)
    mask_id: str = Field(min_length=1)


class JoinDmPayload(CamelModel):
    thread_id: str = Field(min_length=1)
    mask_id: str = Field(min_length=1)


class SendDmPayload(_OutgoingBody):
    thread_id: str = Field(min_length=1)
    mask_id: str = Field(min_length=1)


class JoinChannelPayload(CamelModel):
    channel_id: str = Field(min_length=1)


class SendChannelMessagePayload(_OutgoingBody):
    channel_id: str = Field(min_length=1)


class JoinRoomEvent(BaseModel):
    type: Literal["JOIN_ROOM"]
    data: JoinRoomPayload


class SendMessageEvent(BaseModel):
    type: Literal["SEND_MESSAGE"]
    data: SendMessagePayload


class JoinDmEvent(BaseModel):
    type: Literal["JOIN_DM"]
    data: JoinDmPayload


class SendDmEvent(BaseModel):
    type: Literal["SEND_DM"]
    data: SendDmPayload


class JoinChannelEvent(BaseModel):
    type: Literal["JOIN_CHANNEL"]
    data: JoinChannelPayload


class SendChannelMessageEvent(BaseModel):
    type: Literal["SEND_CHANNEL_MESSAGE"]
    data: SendChannelMessagePayload


class PingEvent(BaseModel):
    type: Literal["PING"]
    data: dict[str, Any] | None = None


ClientEvent = Annotated[
    Union[
        JoinRoomEvent,
        SendMessageEvent,
        JoinDmEvent,
        SendDmEvent,
        JoinChannelEvent,
        SendChannelMessageEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


def parse_client_event(raw: Any, *, max_body_length: int = MAX_MESSAGE_LENGTH) -> ClientEvent:
    """Validate a decoded JSON frame. Raises :class:`pydantic.ValidationError`.

    Message bodies longer than *max_body_length* characters are rejected.
    """

    return client_event_adapter.validate_python(raw, context={"max_body_length": max_body_length})


# ---------------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------------


class ServerPayload(CamelModel):
    omit_none: ClassVar[bool] = False


class RoomStatePayload(ServerPayload):
    room: RoomOut
    members: list[RoomMemberState]
    recent_messages: list[RoomMessageOut]
    server_time: datetime


class DmStatePayload(ServerPayload):
    thread_id: str
    participants: list[DmParticipantOut]
    recent_messages: list[DmMessageOut]


class ChannelStatePayload(ServerPayload):
    channel: ChannelOut
    members: list[ChannelMemberState]
    recent_messages: list[ChannelMessageOut]


class NewMessagePayload(ServerPayload):
    message: RoomMessageOut


class NewDmMessagePayload(ServerPayload):
    thread_id: str
    message: DmMessageOut


class NewChannelMessagePayload(ServerPayload):
    message: ChannelMessageOut


class RoomMemberPayload(ServerPayload):
    room_id: str
    member: RoomMemberState


class ChannelMemberPayload(ServerPayload):
    channel_id: str
    member: ChannelMemberState


class ModerationEventPayload(ServerPayload):
    omit_none: ClassVar[bool] = True

    room_id: str
    action_type: ModerationAction
    actor_mask_id: str
    target_mask_id: str | None = None
    expires_at: datetime | None = None
    locked: bool | None = None
    created_at: datetime


class RoomExpiredPayload(ServerPayload):
    room_id: str


class ErrorPayload(ServerPayload):
    message: str = Field(min_length=1)


class EmptyPayload(ServerPayload):
    pass


ServerEventType = Literal[
    "ROOM_STATE",
    "DM_STATE",
    "CHANNEL_STATE",
    "NEW_MESSAGE",
    "NEW_DM_MESSAGE",
    "NEW_CHANNEL_MESSAGE",
    "MEMBER_JOINED",
    "MEMBER_LEFT",
    "CHANNEL_MEMBER_JOINED",
    "CHANNEL_MEMBER_LEFT",
    "MODERATION_EVENT",
    "ROOM_EXPIRED",
    "ERROR",
    "PONG",
]

SERVER_EVENT_PAYLOADS: dict[str, type[ServerPayload]] = {
    "ROOM_STATE": RoomStatePayload,
    "DM_STATE": DmStatePayload,
    "CHANNEL_STATE": ChannelStatePayload,
    "NEW_MESSAGE": NewMessagePayload,
    "NEW_DM_MESSAGE": NewDmMessagePayload,
    "NEW_CHANNEL_MESSAGE": NewChannelMessagePayload,
    "MEMBER_JOINED": RoomMemberPayload,
    "MEMBER_LEFT": RoomMemberPayload,
    "CHANNEL_MEMBER_JOINED": ChannelMemberPayload,
    "CHANNEL_MEMBER_LEFT": ChannelMemberPayload,
    "MODERATION_EVENT": ModerationEventPayload,
    "ROOM_EXPIRED": RoomExpiredPayload,
    "ERROR": ErrorPayload,
    "PONG": EmptyPayload,
}


def encode_server_event(event_type: ServerEventType, data: ServerPayload | dict[str, Any]) -> dict[str, Any]:
    """Validate *data* for *event_type* and return the JSON-ready frame."""

    model = SERVER_EVENT_PAYLOADS[event_type]
    if isinstance(data, model):
        payload = data
    elif isinstance(data, BaseModel):
        raise TypeError(f"{event_type} expects {model.__name__}, got {type(data).__name__}")
    else:
        payload = model.model_validate(data)
    return {"type": event_type, "data": payload.dump(exclude_none=model.omit_none)}


__all__ = [
    "ClientEvent",
    "JoinRoomEvent",
    "SendMessageEvent",
    "JoinDmEvent",
    "SendDmEvent",
    "JoinChannelEvent",
    "SendChannelMessageEvent",
    "PingEvent",
    "parse_client_event",
    "ServerPayload",
    "RoomStatePayload",
    "DmStatePayload",
    "ChannelStatePayload",
    "NewMessagePayload",
    "NewDmMessagePayload",
    "NewChannelMessagePayload",
    "RoomMemberPayload",
    "ChannelMemberPayload",
    "ModerationEventPayload",
    "RoomExpiredPayload",
    "ErrorPayload",
    "encode_server_event",
]
