"""Schemas for mask management."""

from pydantic import Field

from app.schemas.common import CamelModel
from app.schemas.payloads import MaskOut

DEFAULT_MASK_COLOR = "#8ff5ff"


class MaskCreate(CamelModel):
    display_name: str = Field(..., min_length=1, max_length=40)
    color: str | None = Field(default=None, min_length=1, max_length=32)
    avatar_seed: str | None = Field(default=None, min_length=1, max_length=80)


class MaskResponse(CamelModel):
    mask: MaskOut
