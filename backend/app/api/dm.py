"""Direct message thread endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status

from app.api.deps import get_current_user, get_services
from app.api.friends import build_friend_user
from app.schemas.dm import (
    DmMaskResponse,
    DmMaskUpdate,
    DmStartRequest,
    DmStartResponse,
    DmThreadListItem,
    DmThreadResponse,
    DmThreadsResponse,
)
from app.schemas.payloads import DmMessageOut, DmThreadOut, MaskIdentity
from masq.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from masq.domain.records import UserRecord
from masq.runtime import RealtimeServices

router = APIRouter(prefix="/dm", tags=["direct-messages"])

logger = logging.getLogger(__name__)


@router.post("/start", response_model=DmStartResponse)
async def start_thread(
    payload: DmStartRequest,
    response: Response,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> DmStartResponse:
    """Open (or reopen) the thread with a friend; 201 when it is new."""

    repository = services.repository
    if payload.friend_user_id == user.id:
        raise ValidationFailedError("You cannot start a DM with yourself")

    mask = await repository.find_mask_by_id_for_user(payload.initial_mask_id, user.id)
    if mask is None:
        raise ForbiddenError("Mask does not belong to the authenticated user")

    friend = await repository.find_user_by_id(payload.friend_user_id)
    if friend is None:
        raise NotFoundError("Friend user not found")
    if not await repository.find_friendship_between_users(user.id, friend.id):
        raise ForbiddenError("Only friends can start direct messages")

    friend_mask = None
    if friend.default_mask_id:
        friend_mask = await repository.find_mask_by_id_for_user(friend.default_mask_id, friend.id)
    if friend_mask is None:
        friend_masks = await repository.list_masks_by_user(friend.id)
        friend_mask = friend_masks[0] if friend_masks else None
    if friend_mask is None:
        raise ConflictError("Friend does not have a mask to join DM")

    thread = await repository.find_dm_thread_between_users(user.id, friend.id)
    created = thread is None
    if thread is None:
        thread = await repository.create_dm_thread(user.id, friend.id)
        logger.info("Opened DM thread %s", thread.id)

    await repository.upsert_dm_participant(thread_id=thread.id, user_id=user.id, active_mask_id=mask.id)
    if await repository.find_dm_participant(thread.id, friend.id) is None:
        await repository.upsert_dm_participant(
            thread_id=thread.id, user_id=friend.id, active_mask_id=friend_mask.id
        )

    state = await services.state.dm_state(thread.id)
    if state is None:
        raise NotFoundError("DM thread not found")
    if created:
        response.status_code = status.HTTP_201_CREATED
    return DmStartResponse(
        thread=DmThreadOut.model_validate(thread),
        participants=state.participants,
        recent_messages=state.recent_messages,
    )


@router.get("/threads", response_model=DmThreadsResponse)
async def list_threads(
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> DmThreadsResponse:
    """The caller's threads, newest first, each with its peer and last message."""

    repository = services.repository
    items: list[DmThreadListItem] = []
    for thread in await repository.list_dm_threads_for_user(user.id):
        peer_id = thread.peer_of(user.id)
        peer = await repository.find_user_by_id(peer_id) if peer_id else None
        participant = await repository.find_dm_participant(thread.id, user.id)
        if peer is None or participant is None:
            continue
        messages = await repository.list_dm_messages(thread.id)
        items.append(
            DmThreadListItem(
                thread=DmThreadOut.model_validate(thread),
                peer=await build_friend_user(repository, peer),
                active_mask=MaskIdentity.from_mask(participant.active_mask),
                last_message=DmMessageOut.from_record(messages[-1]) if messages else None,
            )
        )
    return DmThreadsResponse(threads=items)


@router.get("/{thread_id}", response_model=DmThreadResponse)
async def read_thread(
    thread_id: str,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> DmThreadResponse:
    """Thread state, visible to its two participants only."""

    repository = services.repository
    thread = await repository.find_dm_thread_by_id(thread_id)
    if thread is None:
        raise NotFoundError("DM thread not found")
    peer_id = thread.peer_of(user.id)
    participant = await repository.find_dm_participant(thread.id, user.id) if peer_id else None
    if peer_id is None or participant is None:
        raise ForbiddenError("Not authorized for this DM thread")

    state = await services.state.dm_state(thread.id)
    if state is None:
        raise NotFoundError("DM thread not found")
    return DmThreadResponse(
        thread=DmThreadOut.model_validate(thread),
        peer_user_id=peer_id,
        participants=state.participants,
        messages=state.recent_messages,
        active_mask=MaskIdentity.from_mask(participant.active_mask),
    )


@router.post("/{thread_id}/mask", response_model=DmMaskResponse)
async def switch_mask(
    thread_id: str,
    payload: DmMaskUpdate,
    user: UserRecord = Depends(get_current_user),
    services: RealtimeServices = Depends(get_services),
) -> DmMaskResponse:
    participant = await services.identity.switch_dm_mask(user.id, thread_id, payload.mask_id)
    return DmMaskResponse(active_mask=MaskIdentity.from_mask(participant.active_mask))
