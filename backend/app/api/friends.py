"""Friend request and friend list endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, status

from app.api.deps import get_current_user, get_repository
from app.models.enums import FriendRequestStatus
from app.schemas.friends import (
    FriendRequestCreate,
    FriendRequestOut,
    FriendRequestResponse,
    FriendRequestsResponse,
    FriendsResponse,
    FriendUserOut,
    IncomingFriendRequest,
    OutgoingFriendRequest,
)
from app.schemas.payloads import MaskSummary
from app.schemas.servers import SuccessResponse
from masq.domain.errors import (
    ConflictError,
    DuplicateKeyError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from masq.domain.records import FriendRequestRecord, UserRecord
from masq.domain.repository import Repository

router = APIRouter(prefix="/friends", tags=["friends"])

logger = logging.getLogger(__name__)


async def build_friend_user(repository: Repository, user: UserRecord) -> FriendUserOut:
    """Public view of another account, with its default mask when it still exists."""

    default_mask = None
    if user.default_mask_id:
        mask = await repository.find_mask_by_id_for_user(user.default_mask_id, user.id)
        if mask is not None:
            default_mask = MaskSummary.model_validate(mask)
    return FriendUserOut(id=user.id, email=user.email, friend_code=user.friend_code, default_mask=default_mask)


async def _load_request_for(
    repository: Repository, request_id: str, user_id: str, *, as_recipient: bool, verb: str
) -> FriendRequestRecord:
    friend_request = await repository.find_friend_request_by_id(request_id)
    if friend_request is None:
        raise NotFoundError("Friend request not found")
    owner = friend_request.to_user_id if as_recipient else friend_request.from_user_id
    if owner != user_id:
        raise ForbiddenError(f"You cannot {verb} this request")
    if not friend_request.is_pending():
        raise ConflictError("Friend request is no longer pending")
    return friend_request


@router.get("", response_model=FriendsResponse)
async def list_friends(
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> FriendsResponse:
    friends = await repository.list_friends_for_user(user.id)
    return FriendsResponse(friends=[await build_friend_user(repository, friend) for friend in friends])


@router.get("/requests", response_model=FriendRequestsResponse)
async def list_requests(
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> FriendRequestsResponse:
    """Pending requests addressed to and sent by the caller."""

    incoming: list[IncomingFriendRequest] = []
    for item in await repository.list_incoming_friend_requests(user.id):
        sender = await repository.find_user_by_id(item.from_user_id)
        if sender is not None:
            incoming.append(
                IncomingFriendRequest(
                    request=FriendRequestOut.model_validate(item),
                    from_user=await build_friend_user(repository, sender),
                )
            )

    outgoing: list[OutgoingFriendRequest] = []
    for item in await repository.list_outgoing_friend_requests(user.id):
        recipient = await repository.find_user_by_id(item.to_user_id)
        if recipient is not None:
            outgoing.append(
                OutgoingFriendRequest(
                    request=FriendRequestOut.model_validate(item),
                    to_user=await build_friend_user(repository, recipient),
                )
            )
    return FriendRequestsResponse(incoming=incoming, outgoing=outgoing)


@router.post("/request", response_model=FriendRequestResponse, status_code=status.HTTP_201_CREATED)
async def send_request(
    payload: FriendRequestCreate,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> FriendRequestResponse:
    """Send a friend request by friend code or user id.

    A declined or canceled request between the same pair is reopened.
    """

    if payload.to_user_id:
        target = await repository.find_user_by_id(payload.to_user_id)
    else:
        target = await repository.find_user_by_friend_code((payload.friend_code or "").strip().upper())
    if target is None:
        raise NotFoundError("Target user not found")
    if target.id == user.id:
        raise ValidationFailedError("You cannot send a friend request to yourself")
    if await repository.find_friendship_between_users(user.id, target.id):
        raise ConflictError("Already friends")

    existing = await repository.find_friend_request_between_users(user.id, target.id)
    if existing is not None and existing.is_pending():
        if existing.from_user_id == user.id:
            raise ConflictError("Friend request already pending")
        raise ConflictError("You already have an incoming friend request from this user")

    friend_request = await repository.upsert_friend_request(
        from_user_id=user.id, to_user_id=target.id, status=FriendRequestStatus.PENDING
    )
    logger.info("User %s sent friend request %s to %s", user.id, friend_request.id, target.id)
    return FriendRequestResponse(request=FriendRequestOut.model_validate(friend_request))


@router.post("/request/{request_id}/accept", response_model=SuccessResponse)
async def accept_request(
    request_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> SuccessResponse:
    friend_request = await _load_request_for(repository, request_id, user.id, as_recipient=True, verb="accept")
    try:
        await repository.create_friendship(friend_request.from_user_id, friend_request.to_user_id)
    except DuplicateKeyError:
        logger.debug("Friendship for request %s already existed", friend_request.id)
    await repository.update_friend_request_status(friend_request.id, FriendRequestStatus.ACCEPTED)
    logger.info("User %s accepted friend request %s", user.id, friend_request.id)
    return SuccessResponse()


@router.post("/request/{request_id}/decline", response_model=SuccessResponse)
async def decline_request(
    request_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> SuccessResponse:
    friend_request = await _load_request_for(repository, request_id, user.id, as_recipient=True, verb="decline")
    await repository.update_friend_request_status(friend_request.id, FriendRequestStatus.DECLINED)
    return SuccessResponse()


@router.post("/request/{request_id}/cancel", response_model=SuccessResponse)
async def cancel_request(
    request_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> SuccessResponse:
    friend_request = await _load_request_for(repository, request_id, user.id, as_recipient=False, verb="cancel")
    await repository.update_friend_request_status(friend_request.id, FriendRequestStatus.CANCELED)
    return SuccessResponse()


@router.delete("/{friend_user_id}", response_model=SuccessResponse)
async def remove_friend(
    friend_user_id: str,
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> SuccessResponse:
    if friend_user_id == user.id:
        raise ValidationFailedError("You cannot unfriend yourself")
    if not await repository.delete_friendship_between_users(user.id, friend_user_id):
        raise NotFoundError("Friendship not found")
    logger.info("User %s removed friend %s", user.id, friend_user_id)
    return SuccessResponse()
