"""Room lifecycle and host moderation endpoints."""

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import get_current_user, get_services
from app.schemas.payloads import ModerationOut, RoomOut
from app.schemas.rooms import (
    ExileRequest,
    LockRequest,
    ModerationResponse,
    MuteRequest,
    RoomCreate,
    RoomJoinRequest,
    RoomListItem,
    RoomResponse,
    RoomsResponse,
)
from app.schemas.servers import SuccessResponse
from masq.domain.records import UserRecord
from masq.runtime import RealtimeServices

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("", response_model=RoomsResponse)
async def list_rooms(
    mask_id: str = Query(..., alias="maskId", min_length=1),
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RoomsResponse:
    """Unexpired rooms the given mask belongs to, newest first."""

    items = await services.moderation.list_rooms(user.id, mask_id)
    return RoomsResponse(rooms=[RoomListItem.from_record(item) for item in items])


@router.post("", response_model=RoomResponse, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: RoomCreate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> RoomResponse:
    """Create a room hosted by one of the caller's masks."""

    room = await services.moderation.create_room(
        user.id,
        mask_id=payload.mask_id,
        title=payload.title,
        kind=payload.kind,
        expires_at=payload.expires_at,
        locked=payload.locked,
        fog_level=payload.fog_level,
        message_decay_minutes=payload.message_decay_minutes,
    )
    return RoomResponse(room=RoomOut.model_validate(room))


@router.post("/{room_id}/join", response_model=SuccessResponse)
async def join_room(
    room_id: str,
    payload: RoomJoinRequest,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> SuccessResponse:
    await services.moderation.join_room(user.id, room_id, payload.mask_id)
    return SuccessResponse()


@router.post("/{room_id}/mute", response_model=ModerationResponse)
async def mute_member(
    room_id: str,
    payload: MuteRequest,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ModerationResponse:
    moderation = await services.moderation.mute(
        user.id,
        room_id,
        actor_mask_id=payload.actor_mask_id,
        target_mask_id=payload.target_mask_id,
        minutes=payload.minutes,
    )
    return ModerationResponse(moderation=ModerationOut.model_validate(moderation))


@router.post("/{room_id}/exile", response_model=ModerationResponse)
async def exile_member(
    room_id: str,
    payload: ExileRequest,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ModerationResponse:
    moderation = await services.moderation.exile(
        user.id,
        room_id,
        actor_mask_id=payload.actor_mask_id,
        target_mask_id=payload.target_mask_id,
    )
    return ModerationResponse(moderation=ModerationOut.model_validate(moderation))


@router.post("/{room_id}/lock", response_model=ModerationResponse)
async def lock_room(
    room_id: str,
    payload: LockRequest,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ModerationResponse:
    room = await services.moderation.set_locked(
        user.id, room_id, actor_mask_id=payload.actor_mask_id, locked=payload.locked
    )
    return ModerationResponse(room=RoomOut.model_validate(room))
