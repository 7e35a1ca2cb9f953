"""
Domain models for the storage layer.

These models are shared between the provider adapters, the storage
manager and the HTTP surface.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from strata_core.config import settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StorageCapability(str, Enum):
    """Optional behaviors a provider instance may or may not support."""

    BUCKET_LISTING = "bucket_listing"
    BUCKET_EXISTENCE = "bucket_existence"
    BUCKET_CREATION = "bucket_creation"
    BUCKET_DELETION = "bucket_deletion"
    NESTED_BUCKETS = "nested_buckets"
    FORCE_DELETE = "force_delete"
    OBJECT_VERSIONING = "object_versioning"
    OBJECT_METADATA = "object_metadata"
    OBJECT_ACL = "object_acl"
    BUCKET_ACL = "bucket_acl"
    BUCKET_LIFECYCLE = "bucket_lifecycle"


class ProviderType(str, Enum):
    """Backend kinds. ``s3`` shares the object-storage adapter with ``minio``."""

    FILESYSTEM = "filesystem"
    FTP = "ftp"
    SFTP = "sftp"
    MINIO = "minio"
    S3 = "s3"

    @classmethod
    def parse(cls, value: str | "ProviderType") -> "ProviderType":
        if isinstance(value, ProviderType):
            return value
        return cls(str(value).strip().lower())


class UploadResult(BaseModel):
    """
    Outcome of a document-centric upload.

    A successful result always carries a storage path and content hash;
    a failed one carries an error message and no storage path.
    """

    success: bool
    storage_path: Optional[str] = None
    file_id: Optional[str] = None
    file_name: Optional[str] = None
    content_type: Optional[str] = None
    file_size: int = 0
    file_hash: Optional[str] = None
    provider_name: Optional[str] = None
    uploaded_at: datetime = Field(default_factory=utcnow)
    error_message: Optional[str] = None

    @model_validator(mode="after")
    def _check_outcome(self) -> "UploadResult":
        if self.success:
            if not self.storage_path or not self.file_hash:
                raise ValueError("successful upload requires storage_path and file_hash")
        else:
            if not self.error_message:
                raise ValueError("failed upload requires error_message")
            if self.storage_path is not None:
                raise ValueError("failed upload must not carry a storage_path")
        return self

    @classmethod
    def ok(cls, **kwargs) -> "UploadResult":
        return cls(success=True, **kwargs)

    @classmethod
    def failed(cls, error_message: str, **kwargs) -> "UploadResult":
        kwargs.pop("storage_path", None)
        return cls(success=False, error_message=error_message or "upload failed", **kwargs)


class OperationResult(BaseModel):
    """Success/message pair returned by bucket lifecycle and connectivity checks."""

    success: bool
    message: str = ""
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, message: str = "") -> "OperationResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, message: str, error_code: str | None = None) -> "OperationResult":
        return cls(success=False, message=message, error_code=error_code)


class BucketInfo(BaseModel):
    id: str
    path: str
    creation_date: Optional[datetime] = None
    size: Optional[int] = None
    object_count: Optional[int] = None
    provider_type: Optional[str] = None
    provider_name: Optional[str] = None
    provider_id: Optional[str] = None
    description: Optional[str] = None


def deterministic_bucket_id(provider_id: str, bucket: str) -> str:
    """Stable id for directory-backed buckets, which have no native identifier."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{provider_id}:{bucket}"))


class ProviderCapabilities(BaseModel):
    """User-facing capability flags for one provider."""

    provider_id: str
    supports_bucket_listing: bool = False
    supports_bucket_creation: bool = False
    supports_bucket_deletion: bool = False
    supports_nested_buckets: bool = False
    supports_force_delete: bool = False
    supports_object_metadata: bool = False
    supports_object_versioning: bool = False


class ProviderRecord(BaseModel):
    """
    Persisted provider configuration record.

    The JSON config may hold protected (encrypted) sensitive fields; it is
    only unprotected in memory right before an adapter is built.
    """

    id: str
    name: str
    provider_type: str
    is_default: bool = False
    is_active: bool = True
    config_json: str = "{}"
    description: Optional[str] = None
    max_file_size: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_config_size(self) -> "ProviderRecord":
        if len(self.config_json.encode("utf-8")) > settings.PROVIDER_CONFIG_MAX_BYTES:
            raise ValueError(
                f"config_json exceeds {settings.PROVIDER_CONFIG_MAX_BYTES} bytes"
            )
        return self

    @property
    def last_modified(self) -> datetime:
        return self.updated_at or self.created_at

    @classmethod
    def from_db_row(cls, row: tuple) -> "ProviderRecord":
        """Create from a storage_providers row (column order of the SELECT)."""
        return cls(
            id=str(row[0]),
            name=row[1],
            provider_type=row[2],
            is_default=bool(row[3]),
            is_active=bool(row[4]),
            config_json=row[5] or "{}",
            description=row[6],
            max_file_size=row[7],
            created_at=row[8],
            updated_at=row[9],
        )


class StorageBucket(BaseModel):
    """Persisted bucket identity; ``path`` is the default lookup key."""

    id: str
    path: str
    provider_id: str
    is_default: bool = False
    is_active: bool = True
    description: Optional[str] = None


class DownloadResult(BaseModel):
    """Outcome of a document-centric download; never raised, always returned."""

    success: bool
    stream: Optional[Any] = None
    content_type: Optional[str] = None
    error_message: Optional[str] = None
