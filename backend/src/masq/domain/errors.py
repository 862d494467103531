"""Domain error taxonomy shared by the HTTP and WebSocket boundaries."""

from __future__ import annotations


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(DomainError):
    status_code = 404


class ForbiddenError(DomainError):
    status_code = 403


class ConflictError(DomainError):
    status_code = 409


class DuplicateKeyError(ConflictError):
    """Raised by the repository when a unique constraint is violated."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class GoneError(DomainError):
    status_code = 410


class LockedError(DomainError):
    status_code = 423


class RateLimitedError(DomainError):
    status_code = 429


class ValidationFailedError(DomainError):
    status_code = 400


class UpstreamFailureError(DomainError):
    status_code = 502


class ServiceUnavailableError(DomainError):
    status_code = 503


__all__ = [
    "DomainError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "DuplicateKeyError",
    "GoneError",
    "LockedError",
    "RateLimitedError",
    "ValidationFailedError",
    "UpstreamFailureError",
    "ServiceUnavailableError",
]
