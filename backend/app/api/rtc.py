"""Voice session endpoints backed by the media server."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user, get_services
from app.schemas.payloads import VoiceParticipantOut, VoiceSessionOut
from app.schemas.rtc import (
    RtcEndRequest,
    RtcEndResponse,
    RtcMuteRequest,
    RtcParticipantsResponse,
    RtcSessionCreate,
    RtcSessionResponse,
)
from app.schemas.servers import SuccessResponse
from masq.domain.records import UserRecord
from masq.runtime import RealtimeServices

router = APIRouter(prefix="/rtc", tags=["rtc"])


@router.post("/session", response_model=RtcSessionResponse)
async def join_session(
    payload: RtcSessionCreate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RtcSessionResponse:
    """Join (or open) the call of a context and mint a media token."""

    joined = await services.voice.join(user.id, payload.context_type, payload.context_id, payload.mask_id)
    return RtcSessionResponse(
        voice_session_id=joined.session.id,
        livekit_room_name=joined.session.livekit_room_name,
        token=joined.token,
        livekit_url=joined.livekit_url,
        participant_cap=joined.participant_cap,
        can_screenshare=joined.can_screenshare,
        participants=[VoiceParticipantOut.from_record(item) for item in joined.participants],
    )


@router.post("/session/{session_id}/leave", response_model=SuccessResponse)
async def leave_session(
    session_id: str,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> SuccessResponse:
    await services.voice.leave(user.id, session_id)
    return SuccessResponse()


@router.post("/session/{session_id}/mute", response_model=RtcParticipantsResponse)
async def mute_participant(
    session_id: str,
    payload: RtcMuteRequest,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RtcParticipantsResponse:
    participants = await services.voice.mute(
        user.id, session_id, actor_mask_id=payload.actor_mask_id, target_mask_id=payload.target_mask_id
    )
    return RtcParticipantsResponse(participants=[VoiceParticipantOut.from_record(item) for item in participants])


@router.post("/session/{session_id}/end", response_model=RtcEndResponse)
async def end_session(
    session_id: str,
    payload: RtcEndRequest,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RtcEndResponse:
    session = await services.voice.end(user.id, session_id, actor_mask_id=payload.actor_mask_id)
    return RtcEndResponse(session=VoiceSessionOut.model_validate(session))
