"""
Storage provider layer.

- StorageManager: registry of live providers with lazy load and reload
- FileStorageAdapter: document-facing façade
- StorageProviderWrapper: uniform contract and capability answers
- CapabilityCache: runtime capability overrides
"""

from .capabilities import CapabilityCache
from .file_storage import FileStorageAdapter
from .manager import LOCAL_PROVIDER_ID, ManagerState, StorageManager
from .wrapper import StorageProviderWrapper

__all__ = [
    "CapabilityCache",
    "FileStorageAdapter",
    "LOCAL_PROVIDER_ID",
    "ManagerState",
    "StorageManager",
    "StorageProviderWrapper",
]
