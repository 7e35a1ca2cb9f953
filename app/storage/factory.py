"""
Provider factory.

A small kind-tag keyed table picks the adapter class for a config; the
same table backs the list of supported kinds and the config schemas
offered to admin clients.
"""

from __future__ import annotations

from typing import Any

from pydantic import SecretStr

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import CONFIG_TYPES, ProviderConfig
from app.storage.providers import (
    BaseStorageProvider,
    FileSystemProvider,
    FtpProvider,
    ObjectStorageProvider,
    S3StorageProvider,
    SftpProvider,
)
from strata_core.domain.exceptions import UnsupportedOperationError
from strata_core.domain.models import ProviderType

ADAPTERS: dict[ProviderType, type[BaseStorageProvider]] = {
    ProviderType.FILESYSTEM: FileSystemProvider,
    ProviderType.FTP: FtpProvider,
    ProviderType.SFTP: SftpProvider,
    ProviderType.MINIO: ObjectStorageProvider,
    ProviderType.S3: S3StorageProvider,
}

_URL_FIELDS = {"endpoint", "host"}


class StorageProviderFactory:
    """Builds adapters from typed configs."""

    def __init__(self, adapters: dict[ProviderType, type[BaseStorageProvider]] | None = None):
        self.adapters = dict(adapters or ADAPTERS)

    def supported_types(self) -> list[str]:
        return [kind.value for kind in self.adapters]

    def create(self, config: ProviderConfig, capability_cache: CapabilityCache) -> BaseStorageProvider:
        try:
            kind = ProviderType.parse(config.provider_type)
            adapter_cls = self.adapters[kind]
        except (ValueError, KeyError) as e:
            raise UnsupportedOperationError(
                f"Unsupported provider type '{config.provider_type}'", cause=e
            ) from e
        return adapter_cls(config, capability_cache)

    def get_config_schema(self, provider_type: str) -> dict[str, dict[str, Any]]:
        """
        Describe the config fields of a kind for admin UIs.

        Returns:
            Mapping of camelCase field name to ``{"type", "required", "default"}``.
        """
        try:
            kind = ProviderType.parse(provider_type)
        except ValueError as e:
            raise UnsupportedOperationError(f"Unsupported provider type '{provider_type}'", cause=e) from e
        if kind not in self.adapters:
            raise UnsupportedOperationError(f"Unsupported provider type '{provider_type}'")

        schema: dict[str, dict[str, Any]] = {}
        for name, field in CONFIG_TYPES[kind].model_fields.items():
            if name in ("provider_id", "provider_type"):
                continue
            annotation = str(field.annotation)
            if SecretStr.__name__ in annotation:
                field_type = "password"
            elif name in _URL_FIELDS:
                field_type = "url"
            elif field.annotation is bool or "bool" in annotation:
                field_type = "boolean"
            elif field.annotation is int or "int" in annotation:
                field_type = "number"
            else:
                field_type = "string"

            default = None if field.is_required() or "SecretStr" in annotation else field.default
            schema[field.alias or name] = {
                "type": field_type,
                "required": field.is_required(),
                "default": default,
            }
        return schema
