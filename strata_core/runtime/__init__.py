"""
Service runtime layer for strata.

This package provides shared infrastructure for reliability:
- ServiceError: Standardized errors with retry semantics
- RetryPolicy: Configurable retry behavior
"""

from .errors import ErrorCode, RetryableError, ServiceError, TerminalError
from .retry import RetryPolicy, with_retry

__all__ = [
    "ErrorCode",
    "ServiceError",
    "RetryableError",
    "TerminalError",
    "RetryPolicy",
    "with_retry",
]
