"""Application service helpers."""

from .permissions import (
    effective_permissions,
    has_any_permission,
    has_permission,
    normalize_permissions,
    resolve_effective_channel_mask,
)

__all__ = [
    "effective_permissions",
    "has_any_permission",
    "has_permission",
    "normalize_permissions",
    "resolve_effective_channel_mask",
]
