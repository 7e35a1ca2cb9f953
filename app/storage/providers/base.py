"""
Storage provider contract and shared adapter behavior.

This module defines the protocols every backend adapter satisfies and a
base class that implements the parts identical across backends: content
hashing, object key generation, storage path formatting, bucket name
validation, capability checks and the result/error conventions of the
document-centric operations.

Concrete adapters implement the underscore-prefixed primitives
(``_write``, ``_read``, ``_delete``, ...) which raise StorageError
subclasses; the public methods here turn those into the contract's
return conventions.
"""

from __future__ import annotations

import hashlib
import io
import re
import uuid
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import BinaryIO, Protocol, Union, runtime_checkable

from loguru import logger

from app.storage.capabilities import CapabilityCache, nominal_supports
from app.storage.config_models import ProviderConfig
from strata_core.domain.exceptions import (
    PermissionDeniedError,
    StorageError,
    StorageInternalError,
    StorageValidationError,
    UnsupportedOperationError,
)
from strata_core.domain.models import (
    BucketInfo,
    OperationResult,
    ProviderType,
    StorageBucket,
    StorageCapability,
    UploadResult,
)
from strata_core.runtime.errors import ErrorCode

Content = Union[bytes, bytearray, BinaryIO]

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_NAMESPACE = "default"
HASH_CHUNK_SIZE = 64 * 1024

_INVALID_SEGMENT_CHARS = re.compile(r'[\\:*?"<>|\x00-\x1f]')


@runtime_checkable
class StorageProvider(Protocol):
    """Object-level contract shared by every backend kind."""

    @property
    def provider_id(self) -> str: ...

    @property
    def provider_type(self) -> ProviderType: ...

    async def upload(
        self,
        content: Content,
        file_name: str,
        document_id: str,
        object_key: str | None = None,
        content_type: str | None = None,
        bucket_name: str | None = None,
    ) -> UploadResult: ...

    async def upload_path(self, object_key: str, content: Content, content_type: str | None = None) -> str: ...

    async def download(self, object_key: str) -> BinaryIO: ...

    async def delete(self, object_key: str) -> None: ...

    async def exists(self, object_key: str) -> bool: ...

    async def list_files(self, prefix: str | None = None) -> list[str]: ...

    async def get_temporary_url(self, object_key: str, expiry: timedelta = timedelta(hours=1)) -> str: ...

    async def test_connection(self) -> OperationResult: ...

    async def close(self) -> None: ...


@runtime_checkable
class BucketStorageProvider(StorageProvider, Protocol):
    """Providers that also manage buckets."""

    def supports_capability(self, capability: StorageCapability) -> bool: ...

    def get_bucket_search_key(self, bucket: StorageBucket) -> str: ...

    async def list_buckets(self) -> list[BucketInfo]: ...

    async def bucket_exists(self, bucket_name: str) -> bool: ...

    async def create_bucket(self, bucket_name: str) -> OperationResult: ...

    async def remove_bucket(self, bucket_name: str, force: bool = False) -> OperationResult: ...


def as_stream(content: Content) -> BinaryIO:
    if isinstance(content, (bytes, bytearray)):
        return io.BytesIO(bytes(content))
    return content


def compute_hash(content: Content) -> str:
    """
    SHA-256 hex digest over the whole stream.

    Hashing starts at position 0 and the stream's original position is
    restored afterwards, so the same stream can be transferred next.
    """
    if isinstance(content, (bytes, bytearray)):
        return hashlib.sha256(content).hexdigest()

    position = content.tell()
    try:
        content.seek(0)
        digest = hashlib.sha256()
        for chunk in iter(lambda: content.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
        return digest.hexdigest()
    finally:
        content.seek(position)


def stream_size(stream: BinaryIO) -> int:
    position = stream.tell()
    try:
        stream.seek(0, io.SEEK_END)
        return stream.tell()
    finally:
        stream.seek(position)


def ensure_content_type(content_type: str | None) -> str:
    return content_type or DEFAULT_CONTENT_TYPE


def create_object_key(object_key: str | None, document_id: str, file_name: str) -> str:
    """Use the supplied key, or generate ``{document_id}/{uuid}-{file_name}``."""
    if object_key:
        return object_key.replace("\\", "/").lstrip("/")
    return f"{document_id}/{uuid.uuid4()}-{file_name}"


def build_storage_path(bucket_name: str | None, object_key: str) -> str:
    bucket = bucket_name or DEFAULT_NAMESPACE
    return f"{bucket}/{object_key}".replace("\\", "/")


def validate_bucket_name(bucket_name: str) -> None:
    """
    Reject names that cannot be used as path segments.

    Raises:
        StorageValidationError: Empty name, invalid characters, or a
            ``.``/``..`` segment.
    """
    if not bucket_name or not bucket_name.strip():
        raise StorageValidationError("Bucket name cannot be empty")

    for segment in bucket_name.split("/"):
        if not segment or segment in (".", ".."):
            raise StorageValidationError(f"Invalid bucket name '{bucket_name}'")
        if _INVALID_SEGMENT_CHARS.search(segment):
            raise StorageValidationError(
                f"Bucket name '{bucket_name}' contains characters invalid in a path"
            )


class BaseStorageProvider(ABC):
    """
    Shared adapter behavior for every backend kind.

    The provider id comes from the config (the persisted record id); when
    absent one is generated here once, so cache keys derived from it stay
    stable for the life of the instance.
    """

    kind: ProviderType

    def __init__(self, config: ProviderConfig, capability_cache: CapabilityCache | None = None):
        self.config = config
        self.capability_cache = capability_cache or CapabilityCache()
        self._provider_id = config.provider_id or f"{self.kind.value}-{uuid.uuid4().hex[:8]}"

    @property
    def provider_id(self) -> str:
        return self._provider_id

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.parse(self.config.provider_type)

    @property
    def cache_key(self) -> str:
        return CapabilityCache.cache_key(self.provider_id)

    def _log_prefix(self) -> str:
        return f"[provider={self.provider_id}]"

    # --- Capabilities ---

    def supports_capability(self, capability: StorageCapability) -> bool:
        override = self.capability_cache.get(self.cache_key, capability)
        if override is not None:
            return override
        return nominal_supports(self.provider_type, capability)

    def require_capability(self, capability: StorageCapability) -> None:
        if not self.supports_capability(capability):
            raise UnsupportedOperationError(
                f"{self.provider_type.value} provider '{self.provider_id}' "
                f"does not support {capability.value}"
            )

    def get_bucket_search_key(self, bucket: StorageBucket) -> str:
        return bucket.path

    # --- Object operations ---

    async def upload(
        self,
        content: Content,
        file_name: str,
        document_id: str,
        object_key: str | None = None,
        content_type: str | None = None,
        bucket_name: str | None = None,
    ) -> UploadResult:
        """
        Hash and store content, returning a typed result instead of raising.

        Args:
            content: Bytes or a seekable binary stream.
            file_name: Original file name.
            document_id: Owning document; prefixes generated keys.
            object_key: Explicit key; generated when omitted.
            content_type: MIME type; ``application/octet-stream`` when omitted.
            bucket_name: Target bucket; the ``default`` namespace when omitted.
        """
        final_key = object_key
        try:
            stream = as_stream(content)
            file_hash = compute_hash(stream)
            size = stream_size(stream)
            final_content_type = ensure_content_type(content_type)
            final_key = create_object_key(object_key, document_id, file_name)
            if bucket_name:
                validate_bucket_name(bucket_name)

            storage_path = await self._write(bucket_name or None, final_key, stream, final_content_type)

            logger.info(f"{self._log_prefix()} Uploaded {size} bytes key={final_key} bucket={bucket_name}")
            return UploadResult.ok(
                storage_path=storage_path,
                file_id=document_id,
                file_name=file_name,
                content_type=final_content_type,
                file_size=size,
                file_hash=file_hash,
                provider_name=self.provider_type.value,
            )
        except Exception as e:
            logger.error(
                f"{self._log_prefix()} Upload failed key={final_key} bucket={bucket_name} "
                f"file={file_name}: {e}"
            )
            return UploadResult.failed(
                str(e),
                file_id=document_id,
                file_name=file_name,
                provider_name=self.provider_type.value,
            )

    async def upload_path(self, object_key: str, content: Content, content_type: str | None = None) -> str:
        """Store content under an explicit key and return its storage path. Raises on failure."""
        if not object_key or not object_key.strip("/\\"):
            raise StorageValidationError("Object key is required")
        key = create_object_key(object_key, "", "")
        try:
            return await self._write(None, key, as_stream(content), ensure_content_type(content_type))
        except Exception as e:
            logger.error(f"{self._log_prefix()} Upload failed key={key} bucket=None: {e}")
            raise

    async def download(self, object_key: str) -> BinaryIO:
        """
        Read an object fully into memory.

        Raises:
            ObjectNotFoundError: The object does not exist.
            PermissionDeniedError: The key resolves outside the provider root.
        """
        try:
            data = await self._read(object_key)
        except StorageError as e:
            logger.error(f"{self._log_prefix()} Download failed key={object_key}: {e}")
            raise
        except Exception as e:
            logger.error(f"{self._log_prefix()} Download failed key={object_key}: {e}")
            raise StorageInternalError(f"Download failed for '{object_key}'", cause=e) from e

        logger.debug(f"{self._log_prefix()} Downloaded {len(data)} bytes key={object_key}")
        return io.BytesIO(data)

    async def delete(self, object_key: str) -> None:
        """Remove an object. Deleting a missing object is logged, not raised."""
        try:
            removed = await self._delete(object_key)
        except StorageError as e:
            logger.error(f"{self._log_prefix()} Delete failed key={object_key}: {e}")
            raise
        except Exception as e:
            logger.error(f"{self._log_prefix()} Delete failed key={object_key}: {e}")
            raise StorageInternalError(f"Delete failed for '{object_key}'", cause=e) from e

        if removed:
            logger.info(f"{self._log_prefix()} Deleted key={object_key}")
        else:
            logger.warning(f"{self._log_prefix()} Object not found for deletion key={object_key}")

    async def exists(self, object_key: str) -> bool:
        """
        Whether an object exists. Never raises.

        Transport failures also answer False; they are logged at warning
        level so an outage can be told apart from true absence in the logs.
        """
        try:
            return await self._exists(object_key)
        except PermissionDeniedError as e:
            logger.warning(f"{self._log_prefix()} Existence check denied key={object_key}: {e}")
        except StorageError as e:
            logger.warning(
                f"{self._log_prefix()} Existence check failed ({e.code}) key={object_key}: {e.message_safe}"
            )
        except Exception as e:
            logger.warning(f"{self._log_prefix()} Existence check failed key={object_key}: {e}")
        return False

    async def get_temporary_url(self, object_key: str, expiry: timedelta = timedelta(hours=1)) -> str:
        logger.warning(
            f"{self._log_prefix()} Temporary URLs are not supported by "
            f"{self.provider_type.value} providers key={object_key}"
        )
        return ""

    async def close(self) -> None:
        return None

    # --- Bucket operations ---

    async def list_buckets(self) -> list[BucketInfo]:
        self.require_capability(StorageCapability.BUCKET_LISTING)
        try:
            return await self._list_buckets()
        except StorageError as e:
            logger.error(f"{self._log_prefix()} Listing buckets failed: {e}")
            return []

    async def bucket_exists(self, bucket_name: str) -> bool:
        self.require_capability(StorageCapability.BUCKET_EXISTENCE)
        try:
            return await self._bucket_exists(bucket_name)
        except StorageError as e:
            logger.warning(f"{self._log_prefix()} Bucket existence check failed bucket={bucket_name}: {e}")
            return False

    def _check_bucket_request(self, bucket_name: str, capability: StorageCapability) -> None:
        self.require_capability(capability)
        if bucket_name and "/" in bucket_name.strip("/"):
            self.require_capability(StorageCapability.NESTED_BUCKETS)
        validate_bucket_name(bucket_name)

    async def create_bucket(self, bucket_name: str) -> OperationResult:
        """
        Create a bucket. Failures come back as an unsuccessful result.

        A permission-denied reply also marks bucket creation unsupported
        for this provider instance.
        """
        try:
            self._check_bucket_request(bucket_name, StorageCapability.BUCKET_CREATION)
            if await self._bucket_exists(bucket_name):
                return OperationResult.fail(f"Bucket '{bucket_name}' already exists", ErrorCode.CONFLICT)
            await self._create_bucket(bucket_name)
        except PermissionDeniedError as e:
            self.capability_cache.record_permission_failure(self.provider_id, StorageCapability.BUCKET_CREATION)
            logger.error(f"{self._log_prefix()} Bucket creation denied bucket={bucket_name}: {e}")
            return OperationResult.fail(e.message_safe, e.code)
        except StorageError as e:
            logger.error(f"{self._log_prefix()} Bucket creation failed bucket={bucket_name}: {e}")
            return OperationResult.fail(e.message_safe, e.code)

        logger.info(f"{self._log_prefix()} Created bucket={bucket_name}")
        return OperationResult.ok(f"Bucket '{bucket_name}' created")

    async def remove_bucket(self, bucket_name: str, force: bool = False) -> OperationResult:
        """
        Remove a bucket. Non-empty buckets are only removed with ``force``.

        A permission-denied reply also marks bucket deletion unsupported
        for this provider instance.
        """
        try:
            self._check_bucket_request(bucket_name, StorageCapability.BUCKET_DELETION)
            if force:
                self.require_capability(StorageCapability.FORCE_DELETE)
            if not await self._bucket_exists(bucket_name):
                return OperationResult.fail(f"Bucket '{bucket_name}' not found", ErrorCode.NOT_FOUND)
            await self._remove_bucket(bucket_name, force)
        except PermissionDeniedError as e:
            self.capability_cache.record_permission_failure(self.provider_id, StorageCapability.BUCKET_DELETION)
            logger.error(f"{self._log_prefix()} Bucket deletion denied bucket={bucket_name}: {e}")
            return OperationResult.fail(e.message_safe, e.code)
        except StorageError as e:
            logger.error(f"{self._log_prefix()} Bucket deletion failed bucket={bucket_name} force={force}: {e}")
            return OperationResult.fail(e.message_safe, e.code)

        logger.info(f"{self._log_prefix()} Removed bucket={bucket_name} force={force}")
        return OperationResult.ok(f"Bucket '{bucket_name}' removed")

    # --- Backend primitives ---

    @abstractmethod
    async def _write(self, bucket_name: str | None, object_key: str, stream: BinaryIO, content_type: str) -> str:
        """Store the stream and return its storage path."""

    @abstractmethod
    async def _read(self, object_key: str) -> bytes: ...

    @abstractmethod
    async def _delete(self, object_key: str) -> bool:
        """Remove the object; return False when it did not exist."""

    @abstractmethod
    async def _exists(self, object_key: str) -> bool: ...

    @abstractmethod
    async def list_files(self, prefix: str | None = None) -> list[str]: ...

    @abstractmethod
    async def test_connection(self) -> OperationResult: ...

    @abstractmethod
    async def _list_buckets(self) -> list[BucketInfo]: ...

    @abstractmethod
    async def _bucket_exists(self, bucket_name: str) -> bool: ...

    @abstractmethod
    async def _create_bucket(self, bucket_name: str) -> None: ...

    @abstractmethod
    async def _remove_bucket(self, bucket_name: str, force: bool) -> None: ...
