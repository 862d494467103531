"""Unit tests for authentication helpers."""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException

from app.api.deps import get_user_from_token
from app.core.security import (
    FRIEND_CODE_ALPHABET,
    create_access_token,
    decode_access_token,
    generate_friend_code,
    get_password_hash,
    verify_password,
)


def test_password_hash_round_trip():
    hashed = get_password_hash("supersecret")

    assert hashed != "supersecret"
    assert verify_password("supersecret", hashed)
    assert not verify_password("wrong", hashed)


def test_access_token_carries_subject(settings):
    token = create_access_token("user-1", settings=settings)

    assert decode_access_token(token, settings=settings)["sub"] == "user-1"


def test_expired_token_is_rejected(settings):
    token = create_access_token("user-1", timedelta(seconds=-5), settings=settings)

    with pytest.raises(HTTPException) as exc:
        decode_access_token(token, settings=settings)

    assert exc.value.status_code == 401
    assert exc.value.detail == "Token has expired"


def test_token_signed_with_another_secret_is_rejected(settings):
    foreign = settings.model_copy(update={"jwt_secret_key": "someone-else"})
    token = create_access_token("user-1", settings=foreign)

    with pytest.raises(HTTPException) as exc:
        decode_access_token(token, settings=settings)

    assert exc.value.status_code == 401


def test_friend_codes_avoid_ambiguous_characters():
    codes = {generate_friend_code() for _ in range(50)}

    assert all(len(code) == 8 for code in codes)
    assert all(set(code) <= set(FRIEND_CODE_ALPHABET) for code in codes)
    assert not set("".join(codes)) & set("01IO")


@pytest.mark.anyio
async def test_get_user_from_token(repository, seed, settings):
    """Tokens should resolve to existing users."""

    user = await seed.user()
    token = create_access_token(user.id, settings=settings)

    resolved = await get_user_from_token(token, repository, settings)

    assert resolved.id == user.id


@pytest.mark.anyio
async def test_get_user_from_token_invalid_payload(repository, settings):
    """Invalid tokens must result in a 401 error."""

    with pytest.raises(HTTPException) as exc:
        await get_user_from_token("invalid-token", repository, settings)
    assert exc.value.status_code == 401
    assert "Could not validate credentials" in exc.value.detail

    orphan = create_access_token("deleted-user", settings=settings)
    with pytest.raises(HTTPException):
        await get_user_from_token(orphan, repository, settings)
