"""Error taxonomy for the governance layer.

Services raise these; the HTTP layer in ``classmemory.main`` turns them into
responses. Messages on these exceptions are safe to show to end users.
"""
from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    status_code: int = 500
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def payload(self) -> dict[str, Any]:
        out: dict[str, Any] = {"detail": self.message}
        out.update(self.extra)
        return out


class UnauthorizedError(DomainError):
    status_code = 401
    default_message = "Unauthorized"


class ForbiddenError(DomainError):
    # Never say *why*: sandbox override, role and missing membership all look alike.
    status_code = 403
    default_message = "insufficient permissions"

    def __init__(self) -> None:
        super().__init__(self.default_message)


class NotFoundError(DomainError):
    status_code = 404
    default_message = "Not found"


class ValidationFailedError(DomainError):
    status_code = 400
    default_message = "Invalid input"

    def __init__(self, message: Optional[str] = None, *, field: Optional[str] = None):
        if field:
            super().__init__(message, field=field)
        else:
            super().__init__(message)
        self.field = field


class IneligibleError(DomainError):
    """Data-dependent rejection: 400 below the contribution threshold, 429 while cooling down."""
    status_code = 429
    default_message = "Not eligible"

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None, **extra: Any):
        super().__init__(message, **extra)
        if status_code is not None:
            self.status_code = status_code


class ConflictError(DomainError):
    status_code = 409
    default_message = "Conflict"


class UpstreamError(DomainError):
    """Forum store or text generator failed. The original cause is chained, never shown."""
    status_code = 502
    default_message = "An upstream service is unavailable. Please try again."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)


__all__ = [
    "DomainError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ValidationFailedError",
    "IneligibleError",
    "ConflictError",
    "UpstreamError",
]
