"""
Storage exceptions for strata.

Every storage failure is a ServiceError subclass so the retry decorator
and the HTTP layer can classify it by code alone.
"""

from __future__ import annotations

from strata_core.runtime.errors import ErrorCode, ServiceError


class StorageError(ServiceError):
    """Base exception for all storage-layer errors."""

    code = ErrorCode.INTERNAL_ERROR
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        message_debug: str | None = None,
        cause: Exception | None = None,
        debug_id: str | None = None,
    ):
        super().__init__(
            code=type(self).code,
            message_safe=message,
            message_debug=message_debug,
            retryable=type(self).retryable,
            cause=cause,
            debug_id=debug_id,
        )


class ObjectNotFoundError(StorageError):
    """The requested object or bucket does not exist."""

    code = ErrorCode.NOT_FOUND


class ProviderNotFoundError(StorageError):
    """No provider with the given id is registered."""

    code = ErrorCode.PROVIDER_NOT_FOUND


class ProviderNotActiveError(StorageError):
    """The provider is registered but its persisted record is inactive or gone."""

    code = ErrorCode.PROVIDER_NOT_ACTIVE


class PermissionDeniedError(StorageError):
    """The backend refused the operation, or a path escaped the provider root."""

    code = ErrorCode.FORBIDDEN


class UnsupportedOperationError(StorageError):
    code = ErrorCode.UNSUPPORTED_OPERATION


class StorageConnectionError(StorageError):
    """Transient transport fault talking to a backend."""

    code = ErrorCode.CONNECTION_ERROR
    retryable = True


class StorageValidationError(StorageError):
    """Invalid bucket name, malformed configuration or missing field."""

    code = ErrorCode.INVALID_INPUT


class StorageInternalError(StorageError):
    code = ErrorCode.INTERNAL_ERROR
