"""Domain records, errors and the repository port."""

from .errors import (  # noqa: F401
    ConflictError,
    DomainError,
    DuplicateKeyError,
    ForbiddenError,
    GoneError,
    LockedError,
    NotFoundError,
    RateLimitedError,
    ServiceUnavailableError,
    UpstreamFailureError,
    ValidationFailedError,
)
from .repository import Repository  # noqa: F401
