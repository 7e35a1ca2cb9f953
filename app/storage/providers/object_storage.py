"""
S3-compatible object storage provider (MinIO and S3).

Storage paths are ``{bucket}/{object}``; the ``default`` namespace maps
to the configured bucket. Every operation draws a client from the
connection pool and returns it when done.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import BinaryIO, Callable, TypeVar

from loguru import logger
from minio import Minio
from minio.deleteobjects import DeleteObject
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import MinioProviderConfig
from app.storage.pool import MinioConnectionPool
from app.storage.providers.base import DEFAULT_NAMESPACE, BaseStorageProvider, stream_size
from strata_core.domain.exceptions import (
    ObjectNotFoundError,
    PermissionDeniedError,
    StorageConnectionError,
    StorageError,
    StorageInternalError,
    StorageValidationError,
)
from strata_core.domain.models import BucketInfo, OperationResult, ProviderType

T = TypeVar("T")

NOT_FOUND_CODES = {"NoSuchKey", "NoSuchBucket", "NoSuchObject", "ResourceNotFound"}
DENIED_CODES = {"AccessDenied", "AllAccessDisabled", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
DELETE_BATCH_SIZE = 1000


def translate_s3_error(error: S3Error, what: str) -> StorageError:
    if error.code in NOT_FOUND_CODES:
        return ObjectNotFoundError(f"{what} not found", message_debug=error.code, cause=error)
    if error.code in DENIED_CODES:
        return PermissionDeniedError(f"Access denied: {what}", message_debug=error.code, cause=error)
    return StorageInternalError(f"Object storage error ({error.code}): {what}", cause=error)


class ObjectStorageProvider(BaseStorageProvider):
    """
    MinIO/S3 storage provider.

    Usage:
        provider = ObjectStorageProvider(MinioProviderConfig(endpoint="localhost:9000", ...))
        result = await provider.upload(b"...", "report.pdf", "d1", bucket_name="docs")
    """

    kind = ProviderType.MINIO

    def __init__(
        self,
        config: MinioProviderConfig,
        capability_cache: CapabilityCache | None = None,
        pool: MinioConnectionPool | None = None,
    ):
        super().__init__(config, capability_cache)
        if not config.bucket_name:
            raise StorageValidationError("Object storage configuration requires a bucketName")
        self.default_bucket = config.bucket_name
        self.pool = pool or MinioConnectionPool(config)
        logger.info(
            f"{self._log_prefix()} ObjectStorageProvider configured for {config.endpoint} "
            f"bucket={self.default_bucket}"
        )

    async def _run(self, what: str, fn: Callable[..., T], *args) -> T:
        """
        Run a blocking client call on a pooled client, mapping client errors.

        The client goes back to the pool only once the worker thread is done
        with it, even when the awaiting task is cancelled mid-call.
        """
        async with self.pool.client() as client:
            call = asyncio.ensure_future(asyncio.to_thread(fn, client, *args))
            try:
                try:
                    return await asyncio.shield(call)
                except asyncio.CancelledError:
                    await asyncio.wait({call})
                    raise
            except StorageError:
                raise
            except S3Error as e:
                raise translate_s3_error(e, what) from e
            except ValueError as e:
                raise StorageValidationError(f"Invalid request for {what}: {e}", cause=e) from e
            except (HTTPError, OSError) as e:
                raise StorageConnectionError(
                    f"Object storage unreachable at {self.config.endpoint}", message_debug=str(e), cause=e
                ) from e

    def _parse(self, storage_path: str) -> tuple[str, str]:
        """Split a storage path into (bucket, object name)."""
        path = storage_path.replace("\\", "/").lstrip("/")
        if not path:
            raise StorageValidationError("Storage path cannot be empty")
        if "/" not in path:
            logger.warning(
                f"{self._log_prefix()} Storage path without bucket key={path}; "
                f"using bucket={self.default_bucket}"
            )
            return self.default_bucket, path

        bucket, name = path.split("/", 1)
        if bucket == DEFAULT_NAMESPACE:
            bucket = self.default_bucket
        return bucket, name

    def _target_bucket(self, bucket_name: str | None) -> str:
        if not bucket_name or bucket_name == DEFAULT_NAMESPACE:
            return self.default_bucket
        return bucket_name

    # --- Object primitives ---

    async def _write(self, bucket_name: str | None, object_key: str, stream: BinaryIO, content_type: str) -> str:
        bucket = self._target_bucket(bucket_name)
        length = stream_size(stream) - stream.tell()

        def put(client: Minio) -> None:
            if not client.bucket_exists(bucket_name=bucket):
                logger.info(f"{self._log_prefix()} Creating bucket={bucket}")
                client.make_bucket(bucket_name=bucket)
            client.put_object(
                bucket_name=bucket,
                object_name=object_key,
                data=stream,
                length=length,
                content_type=content_type,
            )

        await self._run(f"{bucket}/{object_key}", put)
        namespace = DEFAULT_NAMESPACE if bucket_name in (None, "", DEFAULT_NAMESPACE) else bucket
        return f"{namespace}/{object_key}"

    async def _read(self, object_key: str) -> bytes:
        bucket, name = self._parse(object_key)

        def get(client: Minio) -> bytes:
            response = client.get_object(bucket_name=bucket, object_name=name)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()

        return await self._run(object_key, get)

    async def _delete(self, object_key: str) -> bool:
        bucket, name = self._parse(object_key)

        def remove(client: Minio) -> bool:
            try:
                client.stat_object(bucket_name=bucket, object_name=name)
            except S3Error as e:
                if e.code in NOT_FOUND_CODES:
                    return False
                raise
            client.remove_object(bucket_name=bucket, object_name=name)
            return True

        return await self._run(object_key, remove)

    async def _exists(self, object_key: str) -> bool:
        bucket, name = self._parse(object_key)

        def stat(client: Minio) -> bool:
            try:
                client.stat_object(bucket_name=bucket, object_name=name)
                return True
            except S3Error as e:
                if e.code in NOT_FOUND_CODES:
                    return False
                raise

        return await self._run(object_key, stat)

    async def list_files(self, prefix: str | None = None) -> list[str]:
        def listing(client: Minio) -> list[str]:
            return sorted(
                obj.object_name
                for obj in client.list_objects(bucket_name=self.default_bucket, prefix=prefix, recursive=True)
                if not obj.is_dir
            )

        return await self._run(f"{self.default_bucket}/{prefix or ''}", listing)

    async def get_temporary_url(self, object_key: str, expiry: timedelta = timedelta(hours=1)) -> str:
        bucket, name = self._parse(object_key)

        def presign(client: Minio) -> str:
            return client.presigned_get_object(bucket_name=bucket, object_name=name, expires=expiry)

        return await self._run(object_key, presign)

    async def test_connection(self) -> OperationResult:
        def probe(client: Minio) -> bool:
            if client.bucket_exists(bucket_name=self.default_bucket):
                return True
            client.make_bucket(bucket_name=self.default_bucket)
            return client.bucket_exists(bucket_name=self.default_bucket)

        try:
            ok = await self._run(self.default_bucket, probe)
        except StorageError as e:
            return OperationResult.fail(
                f"Bucket not found and could not be created: {self.default_bucket}. {e.message_safe}", e.code
            )

        if not ok:
            return OperationResult.fail(f"Bucket access or creation failed: {self.default_bucket}")
        return OperationResult.ok(
            f"Object storage connection successful. Endpoint: {self.config.endpoint}, "
            f"Bucket: {self.default_bucket}"
        )

    async def close(self) -> None:
        self.pool.close()

    # --- Bucket primitives ---

    async def _list_buckets(self) -> list[BucketInfo]:
        def listing(client: Minio) -> list[BucketInfo]:
            return [
                BucketInfo(
                    id=bucket.name,
                    path=bucket.name,
                    creation_date=bucket.creation_date,
                    provider_type=self.provider_type.value,
                    provider_name=self.provider_type.value,
                    provider_id=self.provider_id,
                )
                for bucket in client.list_buckets()
            ]

        return await self._run("bucket listing", listing)

    async def _bucket_exists(self, bucket_name: str) -> bool:
        return await self._run(bucket_name, lambda client: client.bucket_exists(bucket_name=bucket_name))

    async def _create_bucket(self, bucket_name: str) -> None:
        region = self.config.region

        def make(client: Minio) -> None:
            if region:
                client.make_bucket(bucket_name=bucket_name, location=region)
            else:
                client.make_bucket(bucket_name=bucket_name)

        await self._run(bucket_name, make)

    async def _remove_bucket(self, bucket_name: str, force: bool) -> None:
        def remove(client: Minio) -> None:
            names = [obj.object_name for obj in client.list_objects(bucket_name=bucket_name, recursive=True)]
            if names and not force:
                raise StorageValidationError(
                    f"Bucket '{bucket_name}' is not empty; use force to remove its contents"
                )

            for start in range(0, len(names), DELETE_BATCH_SIZE):
                batch = [DeleteObject(name) for name in names[start:start + DELETE_BATCH_SIZE]]
                errors = list(client.remove_objects(bucket_name=bucket_name, delete_object_list=batch))
                if errors:
                    raise StorageInternalError(
                        f"Failed to delete {len(errors)} objects from bucket '{bucket_name}'",
                        message_debug=str(errors[0]),
                    )

            client.remove_bucket(bucket_name=bucket_name)

        await self._run(bucket_name, remove)


class S3StorageProvider(ObjectStorageProvider):
    """Object storage with the wider S3 capability set (ACLs, lifecycle)."""

    kind = ProviderType.S3
