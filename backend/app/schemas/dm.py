"""Schemas for direct message threads."""

from pydantic import Field

from app.schemas.common import CamelModel
from app.schemas.friends import FriendUserOut
from app.schemas.payloads import DmMessageOut, DmParticipantOut, DmThreadOut, MaskIdentity


class DmStartRequest(CamelModel):
    friend_user_id: str = Field(..., min_length=1)
    initial_mask_id: str = Field(..., min_length=1)


class DmStartResponse(CamelModel):
    thread: DmThreadOut
    participants: list[DmParticipantOut]
    recent_messages: list[DmMessageOut]


class DmThreadResponse(CamelModel):
    thread: DmThreadOut
    peer_user_id: str
    participants: list[DmParticipantOut]
    messages: list[DmMessageOut]
    active_mask: MaskIdentity


class DmMaskUpdate(CamelModel):
    mask_id: str = Field(..., min_length=1)


class DmMaskResponse(CamelModel):
    success: bool = True
    active_mask: MaskIdentity


class DmThreadListItem(CamelModel):
    thread: DmThreadOut
    peer: FriendUserOut
    active_mask: MaskIdentity
    last_message: DmMessageOut | None = None


class DmThreadsResponse(CamelModel):
    threads: list[DmThreadListItem]
