"""
Client-facing errors raised by the recycle flow.

Each error carries the HTTP status the API layer should answer with, a
machine-readable error code and any structured hints (retry_after, scope)
the client UI needs to explain the rejection.
"""

from typing import Any

from fastapi import HTTPException


class RecycleFlowError(Exception):
    """Base exception for rejections in the recycle flow."""

    status_code: int = 400
    error_code: str = "recycle_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict[str, Any]:
        detail = {"error": self.error_code, "message": self.message}
        detail.update({k: v for k, v in self.details.items() if v is not None})
        return detail

    def headers(self) -> dict[str, str] | None:
        return None


class SessionNotFound(RecycleFlowError):
    status_code = 404
    error_code = "session_not_found"

    def __init__(self, session_id: str):
        super().__init__("Invalid session")
        self.session_id = session_id


class SessionExpired(RecycleFlowError):
    status_code = 410
    error_code = "session_expired"

    def __init__(self, session_id: str):
        super().__init__("Session expired")
        self.session_id = session_id


class InvalidStep(RecycleFlowError):
    status_code = 409
    error_code = "invalid_step"

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Invalid step. Expected {expected}, got {actual}", expected=expected, actual=actual
        )


class DuplicateContent(RecycleFlowError):
    status_code = 409
    error_code = "duplicate_content"

    def __init__(self, kind: str = "video"):
        super().__init__(f"Duplicate {kind} detected", duplicate=True, kind=kind)


class _RetryableRejection(RecycleFlowError):
    status_code = 429

    def __init__(self, message: str, retry_after: int, **details: Any):
        super().__init__(message, retry_after=retry_after, **details)
        self.retry_after = retry_after

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after)}


class RateLimited(_RetryableRejection):
    error_code = "rate_limit_exceeded"

    def __init__(self, retry_after: int, limit: int | None = None):
        super().__init__(
            f"Too many requests. Try again in {retry_after} seconds.",
            retry_after=retry_after,
            limit=limit,
        )


class CooldownActive(_RetryableRejection):
    error_code = "cooldown_active"

    def __init__(self, scope: str, retry_after: int):
        super().__init__(
            f"Cooldown: {scope} is cooling down", retry_after=retry_after, scope=scope
        )
        self.scope = scope


class InsufficientPoints(RecycleFlowError):
    status_code = 400
    error_code = "insufficient_points"

    def __init__(self, required: int, available: int):
        super().__init__("Not enough points", required=required, available=available)


class UserNotFound(RecycleFlowError):
    status_code = 404
    error_code = "user_not_found"

    def __init__(self, identity: str):
        super().__init__("User not found")
        self.identity = identity


def to_http_exception(error: RecycleFlowError) -> HTTPException:
    """Translate a flow rejection into the API's structured HTTP error."""
    return HTTPException(
        status_code=error.status_code,
        detail=error.to_detail(),
        headers=error.headers(),
    )
