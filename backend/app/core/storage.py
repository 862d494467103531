"""Utilities for storing uploaded message images."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final
from uuid import uuid4

from fastapi import HTTPException, UploadFile, status

from app.models.enums import ContextType
from app.schemas.payloads import IMAGE_CONTENT_TYPES
from masq.domain.errors import ValidationFailedError

_CHUNK_SIZE: Final[int] = 1024 * 1024  # 1 MiB
_MAX_FILE_NAME_LENGTH: Final[int] = 180
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_REPEATED_UNDERSCORES = re.compile(r"_+")


@dataclass(slots=True)
class StoredFile:
    """Represents a file persisted by the storage backend."""

    file_name: str
    content_type: str
    file_size: int
    absolute_path: Path
    relative_path: str


def sanitize_file_name(name: str | None) -> str:
    cleaned = _REPEATED_UNDERSCORES.sub("_", _UNSAFE_NAME_CHARS.sub("_", (name or "").strip()))
    cleaned = cleaned[:_MAX_FILE_NAME_LENGTH]
    return cleaned or "image"


def image_extension(content_type: str | None) -> str:
    """Return the stored extension for an accepted image type or raise 400."""

    extension = IMAGE_CONTENT_TYPES.get((content_type or "").lower())
    if extension is None:
        allowed = ", ".join(IMAGE_CONTENT_TYPES)
        raise ValidationFailedError(f"Unsupported image content type. Allowed: {allowed}")
    return extension


async def store_message_image(
    media_root: Path,
    context_type: ContextType,
    context_id: str,
    upload: UploadFile,
    *,
    max_size: int,
) -> StoredFile:
    """Persist a chat image under ``message-image/<context>/<id>/`` and return its metadata."""

    content_type = (upload.content_type or "").lower()
    extension = image_extension(content_type)
    relative_dir = Path("message-image") / context_type.value.lower() / context_id
    target_dir = media_root / relative_dir
    target_dir.mkdir(parents=True, exist_ok=True)

    stored_name = f"{uuid4()}.{extension}"
    absolute_path = target_dir / stored_name

    total_size = 0
    try:
        with absolute_path.open("wb") as buffer:
            while True:
                chunk = await upload.read(_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > max_size:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"Image exceeds maximum size ({max_size} bytes)",
                    )
                buffer.write(chunk)
        if total_size == 0:
            raise ValidationFailedError("Image file is empty")
    except (HTTPException, ValidationFailedError):
        if absolute_path.exists():
            absolute_path.unlink()
        raise
    finally:
        await upload.close()

    return StoredFile(
        file_name=sanitize_file_name(upload.filename),
        content_type=content_type,
        file_size=total_size,
        absolute_path=absolute_path,
        relative_path=(relative_dir / stored_name).as_posix(),
    )


def resolve_path(media_root: Path, relative_path: str) -> Path:
    """Return an absolute path for a stored file relative path."""

    root = media_root.resolve()
    candidate = (root / relative_path).resolve()
    if not candidate.is_relative_to(root):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file path")
    if not candidate.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return candidate
