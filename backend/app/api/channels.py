"""Channel identity endpoints."""

from fastapi import APIRouter, Depends

from app.api.deps import get_current_user, get_services
from app.schemas.payloads import MaskIdentity
from app.schemas.servers import ChannelMaskResponse, ChannelMaskUpdate
from masq.domain.records import UserRecord
from masq.runtime import RealtimeServices

router = APIRouter(prefix="/channels", tags=["channels"])


@router.post("/{channel_id}/mask", response_model=ChannelMaskResponse)
async def set_channel_mask(
    channel_id: str,
    payload: ChannelMaskUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> ChannelMaskResponse:
    """Pick the mask presented in one channel of a CHANNEL_MASK server."""

    identity = await services.identity.set_channel_mask(user.id, channel_id, payload.mask_id)
    return ChannelMaskResponse(mask=MaskIdentity.from_mask(identity.mask))
