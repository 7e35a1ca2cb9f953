"""
Typed provider configuration models.

Each backend kind has its own pydantic model, parsed from the JSON stored
on the provider record. Keys are matched case-insensitively against the
camelCase names used in persisted JSON, and credentials are held as
SecretStr so they never show up unmasked in reprs or logs.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from strata_core.domain.exceptions import StorageValidationError
from strata_core.domain.models import ProviderType


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class ProviderConfigBase(BaseModel):
    """Fields shared by every provider configuration."""

    model_config = ConfigDict(
        alias_generator=_camel,
        populate_by_name=True,
        extra="ignore",
    )

    # Alternate persisted key names, lowercased, mapped to field names
    key_aliases: ClassVar[dict[str, str]] = {}

    provider_id: str = ""

    @model_validator(mode="before")
    @classmethod
    def _normalize_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        lookup: dict[str, str] = dict(cls.key_aliases)
        for name in cls.model_fields:
            lookup[name.lower()] = name
            lookup[name.replace("_", "").lower()] = name

        normalized: dict[str, Any] = {}
        for key, value in data.items():
            target = lookup.get(str(key).replace("_", "").lower()) or lookup.get(str(key).lower())
            if target and target not in normalized:
                normalized[target] = value
        return normalized

    @staticmethod
    def secret(value: SecretStr | None) -> str:
        return value.get_secret_value() if value is not None else ""


class FileSystemProviderConfig(ProviderConfigBase):
    provider_type: Literal["filesystem"] = "filesystem"
    root_path: str = "./Storage"
    create_directory_if_not_exists: bool = True


class FtpProviderConfig(ProviderConfigBase):
    provider_type: Literal["ftp"] = "ftp"
    key_aliases: ClassVar[dict[str, str]] = {"rootdirectory": "root_path"}

    host: str = ""
    port: int = 21
    username: str = "anonymous"
    password: Optional[SecretStr] = None
    root_path: str = "/"
    use_ssl: bool = False
    use_passive_mode: bool = True
    calculate_bucket_size: bool = False


class SftpProviderConfig(ProviderConfigBase):
    provider_type: Literal["sftp"] = "sftp"
    key_aliases: ClassVar[dict[str, str]] = {
        "rootdirectory": "root_path",
        "privatekeypassphrase": "passphrase",
        "calculatebucketsize": "calculate_bucket_sizes",
    }

    host: str = ""
    port: int = 22
    username: str = ""
    password: Optional[SecretStr] = None
    private_key_path: Optional[str] = None
    private_key: Optional[SecretStr] = None
    passphrase: Optional[SecretStr] = None
    root_path: str = "/"
    calculate_bucket_sizes: bool = False


class MinioProviderConfig(ProviderConfigBase):
    provider_type: Literal["minio", "s3"] = "minio"

    endpoint: str = "localhost:9000"
    access_key: Optional[SecretStr] = None
    secret_key: Optional[SecretStr] = None
    bucket_name: str = "default"
    use_ssl: Optional[bool] = Field(default=None, alias="useSSL")
    region: Optional[str] = None
    max_connections: Optional[int] = None

    @model_validator(mode="after")
    def _split_scheme(self) -> "MinioProviderConfig":
        # The minio client wants host[:port]; a scheme only decides TLS
        for scheme, secure in (("https://", True), ("http://", False)):
            if self.endpoint.lower().startswith(scheme):
                self.endpoint = self.endpoint[len(scheme):].rstrip("/")
                if self.use_ssl is None:
                    self.use_ssl = secure
        return self


ProviderConfig = Union[
    FileSystemProviderConfig,
    FtpProviderConfig,
    SftpProviderConfig,
    MinioProviderConfig,
]

CONFIG_TYPES: dict[ProviderType, type[ProviderConfigBase]] = {
    ProviderType.FILESYSTEM: FileSystemProviderConfig,
    ProviderType.FTP: FtpProviderConfig,
    ProviderType.SFTP: SftpProviderConfig,
    ProviderType.MINIO: MinioProviderConfig,
    ProviderType.S3: MinioProviderConfig,
}


def parse_provider_config(
    provider_type: ProviderType | str,
    config_json: str | None,
    provider_id: str | None = None,
) -> ProviderConfig:
    """
    Build the typed config for a backend kind from its persisted JSON.

    Args:
        provider_type: Kind tag of the record.
        config_json: Unprotected JSON config; empty yields defaults.
        provider_id: Stable id to stamp on the config.

    Raises:
        StorageValidationError: Unknown kind, malformed JSON or invalid values.
    """
    try:
        kind = ProviderType.parse(provider_type)
    except ValueError as e:
        raise StorageValidationError(f"Unknown provider type '{provider_type}'", cause=e) from e

    data: dict[str, Any] = {}
    if config_json and config_json.strip():
        try:
            data = json.loads(config_json)
        except json.JSONDecodeError as e:
            raise StorageValidationError(
                f"Configuration for {kind.value} provider is not valid JSON", cause=e
            ) from e
        if not isinstance(data, dict):
            raise StorageValidationError(f"Configuration for {kind.value} provider must be an object")

    data = {k: v for k, v in data.items() if str(k).replace("_", "").lower() != "providertype"}
    data["provider_type"] = kind.value
    if provider_id is not None:
        data["provider_id"] = provider_id

    try:
        return CONFIG_TYPES[kind].model_validate(data)  # type: ignore[return-value]
    except ValidationError as e:
        raise StorageValidationError(
            f"Invalid configuration for {kind.value} provider",
            message_debug=str(e),
            cause=e,
        ) from e
