"""Message image upload and download endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from fastapi.responses import FileResponse

from app.api.deps import get_app_settings, get_current_user, get_services
from app.config import Settings
from app.core.storage import resolve_path, store_message_image
from app.models.enums import ContextType, UploadKind
from app.schemas.payloads import UploadOut
from app.schemas.uploads import UploadResponse
from masq.domain.errors import ForbiddenError, GoneError, NotFoundError
from masq.domain.records import UserRecord
from masq.domain.repository import Repository
from masq.realtime.state import utcnow
from masq.runtime import RealtimeServices

router = APIRouter(prefix="/uploads", tags=["uploads"])


async def authorize_upload_context(
    repository: Repository,
    user_id: str,
    context_type: ContextType,
    context_id: str,
    *,
    allow_expired_room: bool = False,
) -> None:
    """Raise unless *user_id* may post images to (or read images of) the context."""

    if context_type is ContextType.SERVER_CHANNEL:
        channel = await repository.find_channel_by_id(context_id)
        if channel is None:
            raise NotFoundError("Channel not found")
        if await repository.find_server_member(channel.server_id, user_id) is None:
            raise ForbiddenError("You are not a member of this server")
        return

    if context_type is ContextType.DM_THREAD:
        thread = await repository.find_dm_thread_by_id(context_id)
        if thread is None:
            raise NotFoundError("DM thread not found")
        if await repository.find_dm_participant(thread.id, user_id) is None:
            raise ForbiddenError("Not authorized for this DM thread")
        return

    room = await repository.find_room_by_id(context_id)
    if room is None:
        raise NotFoundError("Room not found")
    if not allow_expired_room and room.is_expired(utcnow()):
        raise GoneError("Room is expired")
    for mask in await repository.list_masks_by_user(user_id):
        if await repository.find_room_membership_with_mask(room.id, mask.id) is not None:
            return
    raise ForbiddenError("Not authorized for this room")


@router.post("/image", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    context_type: ContextType = Form(..., alias="contextType"),
    context_id: str = Form(..., alias="contextId", min_length=1),
    file: UploadFile = File(...),
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
) -> UploadResponse:
    """Upload an image for subsequent inclusion in a message."""

    repository = services.repository
    await authorize_upload_context(repository, user.id, context_type, context_id)

    stored = await store_message_image(
        settings.media_root, context_type, context_id, file, max_size=settings.max_upload_size
    )
    upload = await repository.create_upload(
        owner_user_id=user.id,
        kind=UploadKind.MESSAGE_IMAGE,
        context_type=context_type,
        context_id=context_id,
        file_name=stored.file_name,
        content_type=stored.content_type,
        size_bytes=stored.file_size,
        storage_path=stored.relative_path,
    )
    return UploadResponse(upload=UploadOut.model_validate(upload))


@router.get("/{upload_id}")
async def download_upload(
    upload_id: str,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
    settings: Settings = Depends(get_app_settings),
) -> FileResponse:
    """Return the raw file for an upload."""

    repository = services.repository
    upload = await repository.find_upload_by_id(upload_id)
    if upload is None:
        raise NotFoundError("Upload not found")
    if upload.kind is UploadKind.MESSAGE_IMAGE:
        if upload.context_type is None or upload.context_id is None:
            raise ForbiddenError("Upload is not available for this context")
        await authorize_upload_context(
            repository, user.id, upload.context_type, upload.context_id, allow_expired_room=True
        )

    file_path = resolve_path(settings.media_root, upload.storage_path)
    return FileResponse(
        file_path,
        media_type=upload.content_type,
        filename=upload.file_name,
        headers={"Cache-Control": "private, max-age=300"},
    )
