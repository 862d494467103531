"""Mask management endpoints."""

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status

from app.api.deps import get_app_settings, get_current_user, get_repository
from app.config import Settings
from app.schemas.masks import DEFAULT_MASK_COLOR, MaskCreate, MaskResponse
from app.schemas.payloads import MaskOut
from app.schemas.servers import SuccessResponse
from masq.domain.errors import ConflictError, NotFoundError, ValidationFailedError
from masq.domain.records import UserRecord
from masq.domain.repository import Repository

router = APIRouter(prefix="/masks", tags=["masks"])

logger = logging.getLogger(__name__)


@router.get("", response_model=list[MaskOut])
async def list_masks(
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> list[MaskOut]:
    return [MaskOut.model_validate(mask) for mask in await repository.list_masks_by_user(user.id)]


@router.post("", response_model=MaskResponse, status_code=status.HTTP_201_CREATED)
async def create_mask(
    payload: MaskCreate,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
) -> MaskResponse:
    """Create a mask; the first mask of an account becomes its default."""

    if await repository.count_masks_by_user(user.id) >= settings.max_masks_per_user:
        raise ValidationFailedError(f"Mask limit reached ({settings.max_masks_per_user})")

    mask = await repository.create_mask(
        user_id=user.id,
        display_name=payload.display_name,
        color=payload.color or DEFAULT_MASK_COLOR,
        avatar_seed=payload.avatar_seed or str(uuid.uuid4()),
    )
    if user.default_mask_id is None:
        await repository.update_user_default_mask(user.id, mask.id)
    logger.info("User %s created mask %s", user.id, mask.id)
    return MaskResponse(mask=MaskOut.model_validate(mask))


@router.delete("/{mask_id}", response_model=SuccessResponse)
async def delete_mask(
    mask_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> SuccessResponse:
    """Delete a mask that is not in a live room; the default moves to the oldest remaining mask."""

    mask = await repository.find_mask_by_id_for_user(mask_id, user.id)
    if mask is None:
        raise NotFoundError("Mask not found")
    if await repository.list_rooms_for_mask(mask.id, datetime.now(timezone.utc)):
        raise ConflictError("Mask is in an active room and cannot be deleted")
    if await repository.is_mask_in_use(mask.id):
        raise ConflictError("Mask is used in a server or direct message and cannot be deleted")

    await repository.delete_mask(mask.id)
    if user.default_mask_id == mask.id:
        remaining = await repository.list_masks_by_user(user.id)
        await repository.update_user_default_mask(user.id, remaining[0].id if remaining else None)
    logger.info("User %s deleted mask %s", user.id, mask.id)
    return SuccessResponse()
