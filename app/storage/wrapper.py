"""
Uniform provider wrapper.

Wraps a concrete adapter so callers see one contract regardless of the
backend kind, and answers capability questions from the kind's nominal
table combined with runtime overrides in the capability cache.
"""

from __future__ import annotations

from datetime import timedelta
from typing import BinaryIO

from loguru import logger

from app.storage.capabilities import CapabilityCache, nominal_supports
from app.storage.providers.base import BucketStorageProvider, Content, StorageProvider, compute_hash
from strata_core.domain.exceptions import StorageError, UnsupportedOperationError
from strata_core.domain.models import (
    BucketInfo,
    OperationResult,
    ProviderCapabilities,
    ProviderType,
    StorageBucket,
    StorageCapability,
    UploadResult,
)
from strata_core.runtime.errors import ErrorCode


class StorageProviderWrapper:
    """
    Adapts a concrete adapter to the uniform provider contract.

    ``provider_id`` is the adapter's id, fixed when the adapter was built.
    """

    def __init__(
        self,
        adapter: StorageProvider,
        provider_type: ProviderType | str,
        capability_cache: CapabilityCache,
        provider_name: str | None = None,
    ):
        self.adapter = adapter
        self.provider_type_name = str(getattr(provider_type, "value", provider_type)).lower()
        self.capability_cache = capability_cache
        self.provider_name = provider_name or self.provider_type_name

    @property
    def provider_id(self) -> str:
        return self.adapter.provider_id

    @property
    def provider_type(self) -> str:
        return self.provider_type_name

    @property
    def is_bucket_capable(self) -> bool:
        return isinstance(self.adapter, BucketStorageProvider)

    def supports_capability(self, capability: StorageCapability) -> bool:
        override = self.capability_cache.get(CapabilityCache.cache_key(self.provider_id), capability)
        if override is not None:
            return override
        return nominal_supports(self.provider_type_name, capability)

    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            provider_id=self.provider_id,
            supports_bucket_listing=self.supports_capability(StorageCapability.BUCKET_LISTING),
            supports_bucket_creation=self.supports_capability(StorageCapability.BUCKET_CREATION),
            supports_bucket_deletion=self.supports_capability(StorageCapability.BUCKET_DELETION),
            supports_nested_buckets=self.supports_capability(StorageCapability.NESTED_BUCKETS),
            supports_force_delete=self.supports_capability(StorageCapability.FORCE_DELETE),
            supports_object_metadata=self.supports_capability(StorageCapability.OBJECT_METADATA),
            supports_object_versioning=self.supports_capability(StorageCapability.OBJECT_VERSIONING),
        )

    def get_bucket_search_key(self, bucket: StorageBucket) -> str:
        if self.is_bucket_capable:
            return self.adapter.get_bucket_search_key(bucket)  # type: ignore[attr-defined]
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
        try:
            result = await self.adapter.upload(
                content,
                file_name,
                document_id,
                object_key=object_key,
                content_type=content_type,
                bucket_name=bucket_name,
            )
        except Exception as e:
            logger.error(
                f"[provider={self.provider_id}] Upload raised key={object_key} bucket={bucket_name}: {e}"
            )
            return UploadResult.failed(
                str(e), file_id=document_id, file_name=file_name, provider_name=self.provider_name
            )

        if result.success and not result.file_hash:
            result.file_hash = compute_hash(content)
        return result

    async def upload_path(self, object_key: str, content: Content, content_type: str | None = None) -> str:
        return await self.adapter.upload_path(object_key, content, content_type)

    async def download(self, object_key: str) -> BinaryIO:
        return await self.adapter.download(object_key)

    async def delete(self, object_key: str) -> None:
        await self.adapter.delete(object_key)

    async def exists(self, object_key: str) -> bool:
        return await self.adapter.exists(object_key)

    async def list_files(self, prefix: str | None = None) -> list[str]:
        return await self.adapter.list_files(prefix)

    async def get_temporary_url(self, object_key: str, expiry: timedelta = timedelta(hours=1)) -> str:
        return await self.adapter.get_temporary_url(object_key, expiry)

    async def test_connection(self) -> OperationResult:
        try:
            return await self.adapter.test_connection()
        except StorageError as e:
            return OperationResult.fail(e.message_safe, e.code)
        except Exception as e:
            logger.error(f"[provider={self.provider_id}] Connection test raised: {e}")
            return OperationResult.fail(f"Connection test failed: {e}", ErrorCode.INTERNAL_ERROR)

    async def close(self) -> None:
        await self.adapter.close()

    # --- Bucket operations ---

    def _bucket_adapter(self) -> BucketStorageProvider:
        if not self.is_bucket_capable:
            raise UnsupportedOperationError(
                f"Provider '{self.provider_id}' ({self.provider_type_name}) does not manage buckets"
            )
        return self.adapter  # type: ignore[return-value]

    def _require(self, capability: StorageCapability) -> None:
        if not self.supports_capability(capability):
            raise UnsupportedOperationError(
                f"Provider '{self.provider_id}' does not support {capability.value}"
            )

    async def list_buckets(self) -> list[BucketInfo]:
        adapter = self._bucket_adapter()
        self._require(StorageCapability.BUCKET_LISTING)
        return await adapter.list_buckets()

    async def bucket_exists(self, bucket_name: str) -> bool:
        adapter = self._bucket_adapter()
        self._require(StorageCapability.BUCKET_EXISTENCE)
        return await adapter.bucket_exists(bucket_name)

    async def create_bucket(self, bucket_name: str) -> OperationResult:
        try:
            adapter = self._bucket_adapter()
            self._require(StorageCapability.BUCKET_CREATION)
        except UnsupportedOperationError as e:
            return OperationResult.fail(e.message_safe, e.code)
        return await adapter.create_bucket(bucket_name)

    async def remove_bucket(self, bucket_name: str, force: bool = False) -> OperationResult:
        try:
            adapter = self._bucket_adapter()
            self._require(StorageCapability.BUCKET_DELETION)
        except UnsupportedOperationError as e:
            return OperationResult.fail(e.message_safe, e.code)
        return await adapter.remove_bucket(bucket_name, force)
