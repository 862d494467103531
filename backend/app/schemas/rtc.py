"""Schemas for voice session endpoints."""

from pydantic import Field

from app.models.enums import ContextType
from app.schemas.common import CamelModel
from app.schemas.payloads import VoiceParticipantOut, VoiceSessionOut


class RtcSessionCreate(CamelModel):
    context_type: ContextType
    context_id: str = Field(..., min_length=1)
    mask_id: str = Field(..., min_length=1)


class RtcSessionResponse(CamelModel):
    voice_session_id: str
    livekit_room_name: str
    token: str
    livekit_url: str
    participant_cap: int | None = None
    can_screenshare: bool
    participants: list[VoiceParticipantOut]


class RtcMuteRequest(CamelModel):
    actor_mask_id: str = Field(..., min_length=1)
    target_mask_id: str = Field(..., min_length=1)


class RtcParticipantsResponse(CamelModel):
    success: bool = True
    participants: list[VoiceParticipantOut]


class RtcEndRequest(CamelModel):
    actor_mask_id: str = Field(..., min_length=1)


class RtcEndResponse(CamelModel):
    success: bool = True
    session: VoiceSessionOut
