"""Schemas for friend requests and the friend list."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, model_validator

from app.models.enums import FriendRequestStatus
from app.schemas.common import CamelModel
from app.schemas.payloads import MaskSummary

MAX_FRIEND_CODE_LENGTH = 16


class FriendRequestCreate(CamelModel):
    friend_code: str | None = Field(default=None, min_length=1, max_length=MAX_FRIEND_CODE_LENGTH)
    to_user_id: str | None = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def require_one_target(self) -> "FriendRequestCreate":
        if bool(self.friend_code) == bool(self.to_user_id):
            raise ValueError("Provide exactly one of friendCode or toUserId")
        return self


class FriendRequestOut(CamelModel):
    id: str
    from_user_id: str
    to_user_id: str
    status: FriendRequestStatus
    created_at: datetime
    updated_at: datetime


class FriendUserOut(CamelModel):
    id: str
    email: str
    friend_code: str
    default_mask: MaskSummary | None = None


class FriendRequestResponse(CamelModel):
    request: FriendRequestOut


class FriendsResponse(CamelModel):
    friends: list[FriendUserOut]


class IncomingFriendRequest(CamelModel):
    request: FriendRequestOut
    from_user: FriendUserOut


class OutgoingFriendRequest(CamelModel):
    request: FriendRequestOut
    to_user: FriendUserOut


class FriendRequestsResponse(CamelModel):
    incoming: list[IncomingFriendRequest]
    outgoing: list[OutgoingFriendRequest]
