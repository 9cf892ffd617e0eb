"""Error taxonomy shared by services and the HTTP adapter.

Every error a caller may see derives from TrustGateError, which carries a
machine-readable code, a human-readable message, the HTTP status the API
adapter should return, and optional structured detail.

Device rejections are deliberately vague: the message never says which
branch of the device decision produced it. The full reason goes to the
audit sink instead.
"""

from __future__ import annotations

import math
from typing import Any

GENERIC_DEVICE_REJECTION = "This device cannot be used to sign in right now."


class TrustGateError(Exception):
    """Base exception for errors with structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            error: Machine-readable error code (e.g., "rate_limited").
            message: Human-readable error description.
            status_code: HTTP status code the API adapter should return.
            detail: Optional additional details for the caller.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class RequestValidationError(TrustGateError):
    """Malformed country code or phone number (400)."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(
            error="validation_error",
            message=message,
            status_code=400,
            detail=detail,
        )


class RateLimitedError(TrustGateError):
    """Raised when a sliding window has no attempts left (400)."""

    def __init__(self, retry_after_seconds: float) -> None:
        """Initialize with the time left in the current window.

        Args:
            retry_after_seconds: Seconds until the window rolls over.
        """
        self.retry_after_seconds = max(0.0, retry_after_seconds)
        minutes = max(1, math.ceil(self.retry_after_seconds / 60))
        super().__init__(
            error="rate_limited",
            message=f"Too many requests. Try again in {minutes} minutes.",
            status_code=400,
            detail={"retry_after_minutes": minutes},
        )


class DeviceRejectedError(TrustGateError):
    """Raised when a device or request is refused by policy (400).

    Attributes:
        retryable: True when the same device may succeed after a cooldown.
    """

    def __init__(self, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(
            error="device_rejected",
            message=GENERIC_DEVICE_REJECTION,
            status_code=400,
        )


class AuthFailedError(TrustGateError):
    """Authentication failed (401 unless a subclass says otherwise)."""

    def __init__(
        self,
        message: str = "Authentication failed",
        *,
        error: str = "auth_failed",
        status_code: int = 401,
    ) -> None:
        super().__init__(error=error, message=message, status_code=status_code)


class InvalidOtpError(AuthFailedError):
    """Wrong, expired or already used one-time code (400)."""

    def __init__(self, message: str = "Invalid or expired verification code") -> None:
        super().__init__(message, error="invalid_otp", status_code=400)


class SessionInvalidError(AuthFailedError):
    """Unknown, terminated or expired session, or a bad refresh token (401)."""

    def __init__(self, message: str = "Session is no longer valid") -> None:
        super().__init__(message, error="session_invalid", status_code=401)


class SessionLimitError(TrustGateError):
    """Raised when a session ceiling is reached and eviction is disabled (400)."""

    def __init__(self, scope: str, limit: int) -> None:
        self.scope = scope
        self.limit = limit
        super().__init__(
            error="session_limit",
            message=f"Maximum number of active sessions reached for this {scope}.",
            status_code=400,
            detail={"scope": scope, "limit": limit},
        )


class NotificationError(TrustGateError):
    """The one-time code could not be delivered (502)."""

    def __init__(self, message: str = "Verification code could not be delivered") -> None:
        super().__init__(error="notification_failed", message=message, status_code=502)


class DuplicateRecordError(Exception):
    """Raised by repositories when a unique constraint rejects an insert.

    Callers treat it as "the record already exists, look it up again".
    """

    def __init__(self, entity: str, detail: str | None = None) -> None:
        self.entity = entity
        self.detail = detail
        super().__init__(f"Duplicate {entity}" + (f": {detail}" if detail else ""))
