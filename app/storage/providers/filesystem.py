"""
Local filesystem storage provider.

Stores objects as files under a configured root directory. Buckets are
top-level directories; unbucketed objects live directly under the root
and are addressed with the ``default/`` storage path prefix.
"""

from __future__ import annotations

import asyncio
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

import aiofiles
from loguru import logger

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import FileSystemProviderConfig
from app.storage.providers.base import (
    DEFAULT_NAMESPACE,
    HASH_CHUNK_SIZE,
    BaseStorageProvider,
    build_storage_path,
)
from strata_core.domain.exceptions import (
    ObjectNotFoundError,
    PermissionDeniedError,
    StorageInternalError,
    StorageValidationError,
)
from strata_core.domain.models import BucketInfo, OperationResult, ProviderType, deterministic_bucket_id


class FileSystemProvider(BaseStorageProvider):
    """
    File-system based storage provider.

    Usage:
        provider = FileSystemProvider(FileSystemProviderConfig(root_path="/data"))
        result = await provider.upload(b"...", "report.pdf", "d1")
        stream = await provider.download(result.storage_path)
    """

    kind = ProviderType.FILESYSTEM

    def __init__(self, config: FileSystemProviderConfig, capability_cache: CapabilityCache | None = None):
        super().__init__(config, capability_cache)
        self.root = Path(config.root_path).expanduser().resolve()

        if config.create_directory_if_not_exists:
            self.root.mkdir(parents=True, exist_ok=True)
        elif not self.root.is_dir():
            logger.warning(f"{self._log_prefix()} Root directory does not exist: {self.root}")

        logger.info(f"{self._log_prefix()} FileSystemProvider initialized at {self.root}")

    # --- Path resolution ---

    def _contained(self, path: Path) -> bool:
        return path == self.root or self.root in path.parents

    def _resolve(self, storage_path: str) -> Path:
        """Map a storage path to a file under the root, refusing anything outside it."""
        relative = storage_path.replace("\\", "/").lstrip("/")
        if relative.startswith(f"{DEFAULT_NAMESPACE}/"):
            relative = relative[len(DEFAULT_NAMESPACE) + 1:]

        full = (self.root / relative).resolve()
        if not self._contained(full) or full == self.root:
            raise PermissionDeniedError(
                "Access to path outside root directory is not allowed",
                message_debug=f"{storage_path} resolved to {full}",
            )
        return full

    def _bucket_path(self, bucket_name: str) -> Path:
        return self._resolve(bucket_name.strip("/"))

    @staticmethod
    def _target_bucket(bucket_name: str | None) -> str | None:
        if not bucket_name or bucket_name == DEFAULT_NAMESPACE:
            return None
        return bucket_name.strip("/")

    # --- Object primitives ---

    async def _write(self, bucket_name: str | None, object_key: str, stream: BinaryIO, content_type: str) -> str:
        storage_path = build_storage_path(self._target_bucket(bucket_name), object_key)
        path = self._resolve(storage_path)

        try:
            await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                for chunk in iter(lambda: stream.read(HASH_CHUNK_SIZE), b""):
                    await f.write(chunk)
        except PermissionError as e:
            raise PermissionDeniedError(f"Cannot write '{storage_path}'", cause=e) from e

        return storage_path

    async def _read(self, object_key: str) -> bytes:
        path = self._resolve(object_key)
        if not await asyncio.to_thread(path.is_file):
            raise ObjectNotFoundError(f"File not found: {object_key}")

        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except PermissionError as e:
            raise PermissionDeniedError(f"Cannot read '{object_key}'", cause=e) from e

    async def _delete(self, object_key: str) -> bool:
        path = self._resolve(object_key)
        if not await asyncio.to_thread(path.is_file):
            return False
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        except PermissionError as e:
            raise PermissionDeniedError(f"Cannot delete '{object_key}'", cause=e) from e
        return True

    async def _exists(self, object_key: str) -> bool:
        path = self._resolve(object_key)
        return await asyncio.to_thread(path.is_file)

    async def list_files(self, prefix: str | None = None) -> list[str]:
        base = self._resolve(prefix) if prefix else self.root

        def walk() -> list[str]:
            if not base.is_dir():
                return []
            return sorted(
                p.relative_to(self.root).as_posix() for p in base.rglob("*") if p.is_file()
            )

        return await asyncio.to_thread(walk)

    async def test_connection(self) -> OperationResult:
        probe = self.root / f"test_{uuid.uuid4()}.tmp"
        try:
            async with aiofiles.open(probe, "wb") as f:
                await f.write(b"connection test")
            await asyncio.to_thread(probe.unlink)
        except OSError as e:
            logger.error(f"{self._log_prefix()} Connection test failed at {self.root}: {e}")
            return OperationResult.fail(f"Cannot write to {self.root}: {e}")
        return OperationResult.ok(f"File system is accessible at {self.root}")

    # --- Bucket primitives ---

    def _describe_bucket(self, path: Path) -> BucketInfo:
        files = [p for p in path.rglob("*") if p.is_file()]
        name = path.relative_to(self.root).as_posix()
        return BucketInfo(
            id=deterministic_bucket_id(self.provider_id, name),
            path=name,
            creation_date=datetime.fromtimestamp(path.stat().st_ctime, tz=timezone.utc),
            size=sum(p.stat().st_size for p in files),
            object_count=len(files),
            provider_type=self.provider_type.value,
            provider_name=self.provider_type.value,
            provider_id=self.provider_id,
        )

    async def _list_buckets(self) -> list[BucketInfo]:
        def scan() -> list[BucketInfo]:
            return [self._describe_bucket(p) for p in sorted(self.root.iterdir()) if p.is_dir()]

        try:
            return await asyncio.to_thread(scan)
        except OSError as e:
            raise StorageInternalError(f"Cannot list buckets under {self.root}", cause=e) from e

    async def _bucket_exists(self, bucket_name: str) -> bool:
        return await asyncio.to_thread(self._bucket_path(bucket_name).is_dir)

    async def _create_bucket(self, bucket_name: str) -> None:
        path = self._bucket_path(bucket_name)
        try:
            await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        except PermissionError as e:
            raise PermissionDeniedError(f"Permission denied creating bucket '{bucket_name}'", cause=e) from e

    async def _remove_bucket(self, bucket_name: str, force: bool) -> None:
        path = self._bucket_path(bucket_name)

        def remove() -> None:
            if any(path.iterdir()):
                if not force:
                    raise StorageValidationError(
                        f"Bucket '{bucket_name}' is not empty; use force to remove its contents"
                    )
                shutil.rmtree(path)
            else:
                path.rmdir()

        try:
            await asyncio.to_thread(remove)
        except PermissionError as e:
            raise PermissionDeniedError(f"Permission denied removing bucket '{bucket_name}'", cause=e) from e
