"""
Bounded pool of MinIO clients.

At most ``max_connections`` clients are handed out at once; callers
beyond that wait. Clients are returned to a lock-guarded free list, and
``client()`` guarantees the return on every exit path, cancellation
included.
"""

from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from loguru import logger
from minio import Minio

from app.storage.config_models import MinioProviderConfig
from strata_core.config import settings
from strata_core.domain.exceptions import StorageInternalError


def build_minio_client(config: MinioProviderConfig) -> Minio:
    secure = config.use_ssl if config.use_ssl is not None else settings.MINIO_SECURE
    return Minio(
        endpoint=config.endpoint,
        access_key=config.secret(config.access_key) or None,
        secret_key=config.secret(config.secret_key) or None,
        secure=secure,
        region=config.region,
    )


class MinioConnectionPool:
    """
    Usage:
        pool = MinioConnectionPool(config)
        async with pool.client() as client:
            await asyncio.to_thread(client.bucket_exists, "docs")
    """

    def __init__(
        self,
        config: MinioProviderConfig,
        max_connections: int | None = None,
        client_factory: Callable[[], Minio] | None = None,
    ):
        self.max_connections = max(1, max_connections or config.max_connections or settings.MINIO_POOL_SIZE)
        self._factory = client_factory or (lambda: build_minio_client(config))
        self._semaphore = asyncio.Semaphore(self.max_connections)
        self._free: list[Minio] = []
        self._lock = threading.Lock()
        self._in_use = 0
        self._closed = False

        # Half the capacity is created up front
        for _ in range(self.max_connections // 2):
            self._free.append(self._factory())

        logger.debug(
            f"MinIO pool for {config.endpoint} ready "
            f"({len(self._free)}/{self.max_connections} clients pre-created)"
        )

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def available(self) -> int:
        return len(self._free)

    @property
    def closed(self) -> bool:
        return self._closed

    async def acquire(self) -> Minio:
        if self._closed:
            raise StorageInternalError("MinIO connection pool is closed")

        await self._semaphore.acquire()
        try:
            with self._lock:
                if self._closed:
                    raise StorageInternalError("MinIO connection pool is closed")
                client = self._free.pop() if self._free else self._factory()
                self._in_use += 1
            return client
        except Exception:
            self._semaphore.release()
            raise

    def release(self, client: Minio) -> None:
        with self._lock:
            self._in_use -= 1
            if not self._closed:
                self._free.append(client)
        self._semaphore.release()

    @asynccontextmanager
    async def client(self) -> AsyncIterator[Minio]:
        client = await self.acquire()
        try:
            yield client
        finally:
            self.release(client)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._free.clear()
        logger.debug("MinIO connection pool closed")
