"""Schemas for authentication endpoints."""

from pydantic import EmailStr, Field

from app.schemas.common import CamelModel
from app.schemas.payloads import MaskOut, UserOut


class RegisterRequest(CamelModel):
    """Payload for creating a new account."""

    email: EmailStr = Field(..., description="Login email, stored lower-cased")
    password: str = Field(..., min_length=8, max_length=128, description="Plain text password, hashed before storing")


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)


class AuthResponse(CamelModel):
    """Access token returned after successful authentication."""

    user: UserOut
    access_token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type, always 'bearer'")


class MeResponse(CamelModel):
    user: UserOut
    masks: list[MaskOut]
