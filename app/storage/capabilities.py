"""
Capability cache and nominal capability table.

A backend kind's nominal capability set says what it can do in principle.
The cache holds per-provider-instance overrides discovered at runtime
(e.g. the configured credential may not create buckets); an override
always takes precedence over the nominal table.
"""

from __future__ import annotations

import threading

from loguru import logger

from strata_core.domain.models import ProviderType, StorageCapability

C = StorageCapability

_DIRECTORY_BACKED = frozenset(
    {
        C.BUCKET_LISTING,
        C.BUCKET_EXISTENCE,
        C.BUCKET_CREATION,
        C.BUCKET_DELETION,
        C.NESTED_BUCKETS,
        C.FORCE_DELETE,
    }
)

_OBJECT_STORAGE = frozenset(
    {
        C.BUCKET_LISTING,
        C.BUCKET_EXISTENCE,
        C.BUCKET_CREATION,
        C.BUCKET_DELETION,
        C.FORCE_DELETE,
        C.OBJECT_METADATA,
        C.OBJECT_VERSIONING,
    }
)

NOMINAL_CAPABILITIES: dict[ProviderType, frozenset[StorageCapability]] = {
    ProviderType.FILESYSTEM: _DIRECTORY_BACKED,
    ProviderType.FTP: _DIRECTORY_BACKED,
    ProviderType.SFTP: _DIRECTORY_BACKED,
    ProviderType.MINIO: _OBJECT_STORAGE,
    ProviderType.S3: _OBJECT_STORAGE | {C.OBJECT_ACL, C.BUCKET_ACL, C.BUCKET_LIFECYCLE},
}


def nominal_supports(provider_type: ProviderType | str, capability: StorageCapability) -> bool:
    """Whether a backend kind supports a capability in principle. Unknown kinds support nothing."""
    try:
        kind = ProviderType.parse(provider_type)
    except ValueError:
        return False
    return capability in NOMINAL_CAPABILITIES.get(kind, frozenset())


class CapabilityCache:
    """
    Thread-safe store of capability overrides keyed by (provider key, capability).

    Owned by the StorageManager and injected into every adapter it builds,
    so its lifetime matches the registry: entries are dropped when a
    provider is removed and wholesale on reload.
    """

    def __init__(self):
        self._entries: dict[tuple[str, StorageCapability], bool] = {}
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(provider_id: str) -> str:
        return f"capability_{provider_id}"

    def get(self, cache_key: str, capability: StorageCapability) -> bool | None:
        with self._lock:
            return self._entries.get((cache_key, capability))

    def set(self, cache_key: str, capability: StorageCapability, supported: bool) -> None:
        with self._lock:
            self._entries[(cache_key, capability)] = supported

    def clear(self, cache_key: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k[0] == cache_key]:
                del self._entries[key]

    def clear_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def record_permission_failure(self, provider_id: str, capability: StorageCapability) -> None:
        """
        Downgrade a capability after the backend proved it absent.

        Call only from the branch that observed a permission-denied reply
        for exactly this capability.
        """
        logger.warning(
            f"[provider={provider_id}] Permission denied; marking '{capability.value}' unsupported"
        )
        self.set(self.cache_key(provider_id), capability, False)
