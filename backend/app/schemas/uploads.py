"""Schemas for message image uploads."""

from app.schemas.common import CamelModel
from app.schemas.payloads import UploadOut


class UploadResponse(CamelModel):
    upload: UploadOut
