"""
ABOUTME: Custom exception hierarchy for the quota service
ABOUTME: Maps quota failure modes onto specific, catchable exception types
"""

from typing import Any, Optional


class QuotaServiceError(Exception):
    """
    Base exception for all quota service errors.

    Carries a human-readable message plus a details dict; the HTTP layer
    turns it into ``{"error": message}`` with ``status_code``.
    """

    status_code: int = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return formatted error message with details."""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message

    def to_response(self) -> dict[str, Any]:
        """JSON body for the HTTP layer"""
        return {"error": self.message}


class QuotaExhaustedError(QuotaServiceError):
    """Debit attempted with insufficient balance."""

    status_code = 400

    def __init__(self, user_id: str, requested: int, remaining: int):
        super().__init__(
            "Insufficient gems",
            {"user_id": user_id, "requested": requested, "remaining": remaining},
        )
        self.remaining = remaining

    def to_response(self) -> dict[str, Any]:
        return {"success": False, "remaining_gems": self.remaining, "error": self.message}


class TokenLockoutError(QuotaServiceError):
    """Token limit reached; chat is blocked until the timeout ends."""

    status_code = 429

    def __init__(self, user_id: str, timeout_end_ms: int, retry_after_seconds: int):
        super().__init__(
            "Token limit reached. Please wait for the timeout to end.",
            {"user_id": user_id, "timeout_end": timeout_end_ms},
        )
        self.timeout_end_ms = timeout_end_ms
        self.retry_after_seconds = retry_after_seconds

    def to_response(self) -> dict[str, Any]:
        return {"error": self.message, "timeout_end": self.timeout_end_ms}


class StoreUnavailableError(QuotaServiceError):
    """The quota store could not be read or written."""

    status_code = 503

    def __init__(self, operation: str, reason: Optional[str] = None):
        message = f"Quota store unavailable during {operation}"
        if reason:
            message += f": {reason}"
        super().__init__(message, {"operation": operation})
        self.operation = operation


class RecordNotFoundError(QuotaServiceError):
    """No quota record exists for the user."""

    status_code = 404

    def __init__(self, user_id: str, kind: str):
        super().__init__(f"No {kind} quota record for user", {"user_id": user_id, "kind": kind})


class InvalidTransitionError(QuotaServiceError):
    """A state change was requested that the caller is not allowed to make."""

    status_code = 403


class UserMismatchError(InvalidTransitionError):
    """Request body names a different user than the authenticated one."""

    def __init__(self, authenticated_id: str, requested_id: str):
        super().__init__(
            "User mismatch",
            {"authenticated_id": authenticated_id, "requested_id": requested_id},
        )
