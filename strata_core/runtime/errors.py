"""
Standardized error model with retry semantics.

Every failure surfaced by the storage layer is a ServiceError carrying a
machine-readable code and a retry classification, so callers (the retry
decorator, the HTTP layer) can act on it without inspecting messages.
"""

from __future__ import annotations

import uuid
from typing import Any


class ServiceError(Exception):
    """Standardized service error with retry classification.

    Attributes:
        code: Error code for programmatic handling.
        message_safe: Safe message for logging and user display.
        message_debug: Optional detailed message for debugging.
        retryable: Whether this error can be retried.
        cause: Optional underlying exception.
        debug_id: Unique identifier for support correlation.
    """

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        retryable: bool = False,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(message_safe)
        self.code = code
        self.message_safe = message_safe
        self.message_debug = message_debug
        self.retryable = retryable
        self.cause = cause
        self.debug_id = debug_id or str(uuid.uuid4())[:8]

    def __str__(self) -> str:
        return f"[{self.code}] {self.message_safe}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"message_safe={self.message_safe!r}, "
            f"retryable={self.retryable}, "
            f"debug_id={self.debug_id!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses (debug info excluded)."""
        return {
            "code": self.code,
            "message": self.message_safe,
            "debug_id": self.debug_id,
        }


class RetryableError(ServiceError):
    """Transient failure: dropped session, refused connection, timeout."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=True,
            cause=cause,
            debug_id=debug_id,
        )


class TerminalError(ServiceError):
    """Permanent failure: bad input, missing object, denied permission."""

    def __init__(
        self,
        code: str,
        message_safe: str,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=code,
            message_safe=message_safe,
            message_debug=message_debug,
            retryable=False,
            cause=cause,
            debug_id=debug_id,
        )


class ErrorCode:
    """Standard error codes for storage failure scenarios."""

    # Network/connectivity
    TIMEOUT = "TIMEOUT"
    CONNECTION_ERROR = "CONNECTION_ERROR"

    # Authorization
    FORBIDDEN = "FORBIDDEN"

    # Validation / lookup
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Provider registry
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_NOT_ACTIVE = "PROVIDER_NOT_ACTIVE"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"

    # Internal
    INTERNAL_ERROR = "INTERNAL_ERROR"
