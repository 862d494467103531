"""Authentication API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_app_settings, get_current_user, get_repository
from app.config import Settings
from app.core.security import create_access_token, generate_friend_code, get_password_hash, verify_password
from app.schemas.auth import AuthResponse, LoginRequest, MeResponse, RegisterRequest
from app.schemas.payloads import MaskOut, UserOut
from masq.domain.errors import ConflictError, DuplicateKeyError
from masq.domain.records import UserRecord
from masq.domain.repository import Repository

router = APIRouter()

logger = logging.getLogger(__name__)


def _auth_response(user: UserRecord, settings: Settings) -> AuthResponse:
    return AuthResponse(
        user=UserOut.model_validate(user),
        access_token=create_access_token(user.id, settings=settings),
    )


@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_in: RegisterRequest,
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Register a new account and sign it in."""

    email = user_in.email.strip().lower()
    if await repository.find_user_by_email(email) is not None:
        raise ConflictError("Email already registered")

    password_hash = get_password_hash(user_in.password)
    for _ in range(settings.friend_code_attempts):
        try:
            user = await repository.create_user(
                email=email,
                friend_code=generate_friend_code(),
                password_hash=password_hash,
            )
        except DuplicateKeyError as exc:
            if exc.field == "friend_code":
                continue
            if exc.field == "email":
                raise ConflictError("Email already registered") from exc
            raise
        logger.info("Registered user %s", user.id)
        return _auth_response(user, settings)

    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Failed to generate a unique friend code",
    )


@router.post("/login", response_model=AuthResponse)
async def login_user(
    credentials: LoginRequest,
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
) -> AuthResponse:
    """Authenticate a user and return a JWT access token."""

    user = await repository.find_user_by_email(credentials.email.strip().lower())
    if user is None or not verify_password(credentials.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    return _auth_response(user, settings)


@router.get("/me", response_model=MeResponse)
async def read_me(
    user: UserRecord = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
) -> MeResponse:
    masks = await repository.list_masks_by_user(user.id)
    return MeResponse(user=UserOut.model_validate(user), masks=[MaskOut.model_validate(mask) for mask in masks])
