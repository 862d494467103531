"""FastAPI dependencies for the API layer."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from app.config import Settings
from app.core.security import decode_access_token
from masq.domain.records import UserRecord
from masq.domain.repository import Repository
from masq.runtime import RealtimeServices

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_services(request: Request) -> RealtimeServices:
    """Realtime services owned by the running application."""

    return request.app.state.services


def get_repository(services: RealtimeServices = Depends(get_services)) -> Repository:
    return services.repository


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    repository: Repository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
) -> UserRecord:
    """Retrieve the current user from the JWT token."""

    return await get_user_from_token(token, repository, settings)


async def get_user_from_token(token: str, repository: Repository, settings: Settings) -> UserRecord:
    """Resolve a user from a JWT token or raise an HTTP 401 error."""

    payload = decode_access_token(token, settings=settings)
    user = await repository.find_user_by_id(str(payload["sub"]))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user
