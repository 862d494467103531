"""Schemas for room lifecycle and host moderation."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from app.models.enums import MembershipRole, RoomKind
from app.schemas.common import CamelModel
from app.schemas.payloads import ModerationOut, RoomOut
from masq.domain.records import MaskRoomRecord

MAX_FOG_LEVEL = 3


class RoomCreate(CamelModel):
    mask_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=80)
    kind: RoomKind
    expires_at: datetime | None = None
    locked: bool = False
    fog_level: int | None = Field(default=None, ge=0, le=MAX_FOG_LEVEL)
    message_decay_minutes: int | None = Field(default=None, ge=1, le=180)


class RoomResponse(CamelModel):
    room: RoomOut


class RoomJoinRequest(CamelModel):
    mask_id: str = Field(..., min_length=1)


class MuteRequest(CamelModel):
    actor_mask_id: str = Field(..., min_length=1)
    target_mask_id: str = Field(..., min_length=1)
    minutes: int | None = Field(default=None, ge=1, description="Defaults to the configured mute length")


class ExileRequest(CamelModel):
    actor_mask_id: str = Field(..., min_length=1)
    target_mask_id: str = Field(..., min_length=1)


class LockRequest(CamelModel):
    actor_mask_id: str = Field(..., min_length=1)
    locked: bool


class ModerationResponse(CamelModel):
    success: bool = True
    moderation: ModerationOut | None = None
    room: RoomOut | None = None


class RoomListItem(RoomOut):
    role: MembershipRole
    joined_at: datetime

    @classmethod
    def from_record(cls, item: MaskRoomRecord) -> "RoomListItem":
        room = RoomOut.model_validate(item.room)
        return cls(**room.model_dump(), role=item.role, joined_at=item.joined_at)


class RoomsResponse(CamelModel):
    rooms: list[RoomListItem]
