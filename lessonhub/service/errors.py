from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass fixes the HTTP ``status_code`` it renders with. ``errors``
    carries per-field messages for validation failures and ``include_status``
    controls whether the rendered body repeats the status code.
    """

    status_code: int = 400
    include_status: bool = True

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        errors: Optional[dict] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.errors = errors or {}


class ValidationError(ServiceError):
    """Request validation failed (422)."""
    status_code = 422


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401


class SessionExpiredError(AuthenticationError):
    """Bearer token outlived the session TTL (401)."""
    pass


class ForbiddenError(ServiceError):
    """Caller is known but lacks the required ability (403)."""
    status_code = 403
    include_status = False


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    include_status = False


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409


class UpstreamError(ServiceError):
    """The AI provider failed or returned an unusable response (502)."""
    status_code = 502
    include_status = False


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "SessionExpiredError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "UpstreamError",
]
