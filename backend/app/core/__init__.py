"""Core utilities for the Masq backend."""

from .storage import resolve_path, store_message_image

__all__ = ["store_message_image", "resolve_path"]
