"""
Storage manager: the registry of live providers.

The manager lazily loads active provider records on first use, builds an
adapter and wrapper for each, and keeps them keyed by the record id. It
selects the default provider, falls back to a local filesystem provider
when nothing usable is configured, re-validates a provider's persisted
state on every lookup, and forwards bucket operations only to providers
that manage buckets.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from loguru import logger

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import FileSystemProviderConfig, parse_provider_config
from app.storage.factory import StorageProviderFactory
from app.storage.repository import ProviderRepository
from app.storage.wrapper import StorageProviderWrapper
from strata_core.config import settings
from strata_core.domain.exceptions import (
    ProviderNotActiveError,
    ProviderNotFoundError,
    StorageError,
    UnsupportedOperationError,
)
from strata_core.domain.models import (
    BucketInfo,
    OperationResult,
    ProviderCapabilities,
    ProviderRecord,
    ProviderType,
)
from strata_core.security.protector import SensitiveDataProtector

LOCAL_PROVIDER_ID = "local"


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    READY_DEGRADED = "ready_degraded"


@dataclass
class RegistryEntry:
    provider: StorageProviderWrapper
    last_modified: datetime | None = None
    name: str = ""


class StorageManager:
    """
    Registry mapping provider id to a live provider.

    Usage:
        manager = StorageManager(PostgresProviderRepository())
        provider = await manager.get_provider(provider_id)
        result = await provider.upload(content, "report.pdf", "d1")
    """

    def __init__(
        self,
        repository: ProviderRepository,
        factory: StorageProviderFactory | None = None,
        protector: SensitiveDataProtector | None = None,
        capability_cache: CapabilityCache | None = None,
        fallback_root: str | None = None,
    ):
        self.repository = repository
        self.factory = factory or StorageProviderFactory()
        self.protector = protector or SensitiveDataProtector()
        self.capability_cache = capability_cache or CapabilityCache()
        self.fallback_root = fallback_root or settings.STORAGE_FALLBACK_ROOT

        self._entries: dict[str, RegistryEntry] = {}
        self._last_modified: dict[str, datetime] = {}
        self._default_id: str | None = None
        self._state = ManagerState.UNINITIALIZED
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ManagerState:
        return self._state

    @property
    def default_provider_id(self) -> str | None:
        return self._default_id

    # --- Initialization ---

    async def initialize(self) -> None:
        """Load providers once; concurrent first callers wait for the same load."""
        if self._initialized:
            return
        async with self._lock:
            if self._initialized:
                return
            await self._load()

    async def _load(self) -> None:
        self._state = ManagerState.INITIALIZING
        degraded = False

        try:
            records = await asyncio.to_thread(self.repository.get_all_active)
        except Exception as e:
            logger.error(f"Failed to load storage providers; falling back to local storage: {e}")
            records = []
            degraded = True

        verbose = self._has_changes(records)
        log = logger.info if verbose else logger.debug
        log(f"Loaded {len(records)} storage provider records")

        for record in records:
            try:
                self._register(record)
                log(f"[provider={record.id}] Registered {record.provider_type} provider '{record.name}'")
            except Exception as e:
                logger.error(f"[provider={record.id}] Failed to load provider '{record.name}': {e}")

        loaded_ids = {r.id for r in records}
        for stale_id in set(self._last_modified) - loaded_ids:
            del self._last_modified[stale_id]

        default = next(
            (r for r in records if r.is_default and r.is_active and r.id in self._entries), None
        )
        if default is not None:
            self._default_id = default.id
        elif self._entries:
            self._default_id = next(iter(self._entries))
            logger.warning(f"No default storage provider flagged; using {self._default_id}")

        if not self._entries:
            logger.warning("No usable storage providers configured; registering local fallback provider")
            self._install_fallback()
            degraded = True

        log(f"Default storage provider: {self._default_id}")
        self._state = ManagerState.READY_DEGRADED if degraded else ManagerState.READY
        self._initialized = True

    def _has_changes(self, records: list[ProviderRecord]) -> bool:
        """First load, a different provider count, or any record newer than the last load."""
        if not self._last_modified:
            return True
        if len(self._last_modified) != len(records):
            return True
        for record in records:
            known = self._last_modified.get(record.id)
            if known is None or known < record.last_modified:
                return True
        return False

    def _build(self, record: ProviderRecord) -> StorageProviderWrapper:
        config_json = self.protector.unprotect_config_json(record.config_json, record.provider_type)
        config = parse_provider_config(record.provider_type, config_json, provider_id=record.id)
        adapter = self.factory.create(config, self.capability_cache)
        return StorageProviderWrapper(adapter, config.provider_type, self.capability_cache, provider_name=record.name)

    def _register(self, record: ProviderRecord) -> None:
        wrapper = self._build(record)
        self._entries[record.id] = RegistryEntry(wrapper, record.last_modified, record.name)
        self._last_modified[record.id] = record.last_modified

    def _install_fallback(self) -> None:
        config = FileSystemProviderConfig(
            root_path=self.fallback_root,
            create_directory_if_not_exists=True,
            provider_id=LOCAL_PROVIDER_ID,
        )
        adapter = self.factory.create(config, self.capability_cache)
        wrapper = StorageProviderWrapper(
            adapter, ProviderType.FILESYSTEM, self.capability_cache, provider_name="Local Storage"
        )
        self._entries[LOCAL_PROVIDER_ID] = RegistryEntry(wrapper, None, "Local Storage")
        self._default_id = LOCAL_PROVIDER_ID

    async def _close_entry(self, provider_id: str, entry: RegistryEntry) -> None:
        try:
            await entry.provider.close()
        except Exception as e:
            logger.warning(f"[provider={provider_id}] Error closing provider: {e}")
        self.capability_cache.clear(CapabilityCache.cache_key(provider_id))

    async def reload(self) -> None:
        """Drop every registered provider and load again from persisted configuration."""
        async with self._lock:
            logger.info("Reloading storage providers")
            entries = list(self._entries.items())
            self._entries.clear()
            self._default_id = None
            self._initialized = False
            self._state = ManagerState.UNINITIALIZED

            for provider_id, entry in entries:
                await self._close_entry(provider_id, entry)
            self.capability_cache.clear_all()

            await self._load()

    # --- Lookup ---

    async def get_provider(self, provider_id: str) -> StorageProviderWrapper:
        """
        Return a registered provider after checking its record is still active.

        Raises:
            ProviderNotFoundError: No provider with this id is registered.
            ProviderNotActiveError: The record was deactivated or deleted.
        """
        await self.initialize()

        entry = self._entries.get(provider_id)
        if entry is None:
            raise ProviderNotFoundError(f"Storage provider '{provider_id}' not found")

        if provider_id == LOCAL_PROVIDER_ID:
            return entry.provider

        record = await asyncio.to_thread(self.repository.get_by_id, provider_id)
        if record is None or not record.is_active:
            logger.warning(f"[provider={provider_id}] Attempt to access inactive storage provider")
            raise ProviderNotActiveError(f"Storage provider '{provider_id}' is not active or does not exist")

        if entry.last_modified is not None and record.last_modified > entry.last_modified:
            async with self._lock:
                current = self._entries.get(provider_id)
                if current is entry:
                    logger.info(f"[provider={provider_id}] Configuration changed; rebuilding provider")
                    try:
                        wrapper = self._build(record)
                    except Exception as e:
                        logger.error(
                            f"[provider={provider_id}] Rebuild failed; keeping previous configuration: {e}"
                        )
                        raise
                    await self._close_entry(provider_id, entry)
                    self._entries[provider_id] = RegistryEntry(wrapper, record.last_modified, record.name)
                    self._last_modified[provider_id] = record.last_modified
                entry = self._entries[provider_id]

        return entry.provider

    async def get_default_provider(self) -> StorageProviderWrapper:
        await self.initialize()
        if self._default_id and self._default_id in self._entries:
            return await self.get_provider(self._default_id)
        if not self._entries:
            raise ProviderNotFoundError("No storage providers are registered")
        return next(iter(self._entries.values())).provider

    async def available_provider_ids(self) -> list[str]:
        await self.initialize()
        return list(self._entries)

    async def get_capabilities(self, provider_id: str) -> ProviderCapabilities:
        """Capability flags for a provider; all false when it cannot be resolved."""
        try:
            provider = await self.get_provider(provider_id)
        except StorageError as e:
            logger.warning(f"[provider={provider_id}] Capabilities unavailable: {e}")
            return ProviderCapabilities(provider_id=provider_id)
        return provider.capabilities()

    # --- Registry mutation ---

    async def add_or_update_provider(self, record: ProviderRecord) -> None:
        await self.initialize()
        async with self._lock:
            logger.info(f"[provider={record.id}] Adding or updating storage provider '{record.name}'")
            previous = self._entries.pop(record.id, None)
            if previous is not None:
                await self._close_entry(record.id, previous)

            if not record.is_active:
                self._last_modified.pop(record.id, None)
                self._reassign_default(record.id)
                return

            self._register(record)
            if record.is_default or self._default_id in (None, LOCAL_PROVIDER_ID):
                self._default_id = record.id
                logger.info(f"Default storage provider set to {record.id}")
            if self._state == ManagerState.READY_DEGRADED:
                self._state = ManagerState.READY

    async def remove_provider(self, provider_id: str) -> None:
        await self.initialize()
        async with self._lock:
            entry = self._entries.pop(provider_id, None)
            self._last_modified.pop(provider_id, None)
            if entry is None:
                return
            await self._close_entry(provider_id, entry)
            logger.info(f"[provider={provider_id}] Removed storage provider")
            self._reassign_default(provider_id)

    def _reassign_default(self, removed_id: str) -> None:
        if self._default_id != removed_id:
            return
        if self._entries:
            self._default_id = next(iter(self._entries))
            logger.info(f"Default storage provider changed to {self._default_id} after removal")
        else:
            logger.warning("Last storage provider removed; registering local fallback provider")
            self._install_fallback()
            self._state = ManagerState.READY_DEGRADED

    async def remove_from_cache(self, provider_id: str) -> None:
        """Evict one provider without touching the others' bookkeeping."""
        async with self._lock:
            entry = self._entries.pop(provider_id, None)
            self._last_modified.pop(provider_id, None)
            if entry is not None:
                await self._close_entry(provider_id, entry)
                logger.info(f"[provider={provider_id}] Removed storage provider from cache")

    async def close(self) -> None:
        async with self._lock:
            for provider_id, entry in list(self._entries.items()):
                await self._close_entry(provider_id, entry)
            self._entries.clear()
            self._last_modified.clear()
            self._initialized = False
            self._state = ManagerState.UNINITIALIZED

    # --- Connectivity ---

    async def test_provider_connection(self, provider_type: str, config_json: str) -> OperationResult:
        """Build a throwaway adapter from raw config and test it."""
        test_id = f"test-{uuid.uuid4().hex[:8]}"
        try:
            config_json = self.protector.unprotect_config_json(config_json, provider_type)
            config = parse_provider_config(provider_type, config_json, provider_id=test_id)
            adapter = self.factory.create(config, self.capability_cache)
        except StorageError as e:
            return OperationResult.fail(e.message_safe, e.code)

        wrapper = StorageProviderWrapper(adapter, config.provider_type, self.capability_cache)
        try:
            return await wrapper.test_connection()
        finally:
            await wrapper.close()
            self.capability_cache.clear(CapabilityCache.cache_key(test_id))

    # --- Bucket forwarding ---

    async def _bucket_provider(self, provider_id: str) -> StorageProviderWrapper:
        provider = await self.get_provider(provider_id)
        if not provider.is_bucket_capable:
            raise UnsupportedOperationError(
                f"Provider '{provider_id}' is not a bucket-capable storage provider"
            )
        return provider

    async def list_buckets(self, provider_id: str) -> list[BucketInfo]:
        provider = await self._bucket_provider(provider_id)
        return await provider.list_buckets()

    async def bucket_exists(self, provider_id: str, bucket_name: str) -> bool:
        provider = await self._bucket_provider(provider_id)
        return await provider.bucket_exists(bucket_name)

    async def create_bucket(self, provider_id: str, bucket_name: str) -> OperationResult:
        provider = await self._bucket_provider(provider_id)
        return await provider.create_bucket(bucket_name)

    async def remove_bucket(self, provider_id: str, bucket_name: str, force: bool = False) -> OperationResult:
        provider = await self._bucket_provider(provider_id)
        return await provider.remove_bucket(bucket_name, force)
