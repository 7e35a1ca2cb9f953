"""Unit tests for storage domain models."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from strata_core.domain.models import (
    OperationResult,
    ProviderRecord,
    ProviderType,
    UploadResult,
    deterministic_bucket_id,
)


class TestUploadResult:
    """Tests for UploadResult invariants."""

    def test_success_requires_path_and_hash(self):
        """A successful result without a hash should be rejected."""
        with pytest.raises(ValidationError):
            UploadResult(success=True, storage_path="default/a.txt")

    def test_ok_result(self):
        """A complete successful result should validate."""
        result = UploadResult.ok(storage_path="default/a.txt", file_hash="ab" * 32, file_size=3)

        assert result.success is True
        assert result.error_message is None

    def test_failed_drops_storage_path(self):
        """A failed result never carries a storage path."""
        result = UploadResult.failed("disk full", storage_path="default/a.txt")

        assert result.success is False
        assert result.storage_path is None
        assert result.error_message == "disk full"

    def test_failure_requires_message(self):
        """A failure without a message should be rejected."""
        with pytest.raises(ValidationError):
            UploadResult(success=False)


class TestProviderType:
    """Tests for provider kind parsing."""

    def test_parse_is_case_insensitive(self):
        assert ProviderType.parse(" MinIO ") == ProviderType.MINIO

    def test_parse_unknown_raises(self):
        with pytest.raises(ValueError):
            ProviderType.parse("gopher")


class TestProviderRecord:
    """Tests for persisted provider records."""

    def test_last_modified_prefers_updated_at(self):
        """updated_at wins over created_at when present."""
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        record = ProviderRecord(
            id="p1", name="P", provider_type="ftp", created_at=created,
            updated_at=created + timedelta(days=1),
        )

        assert record.last_modified == created + timedelta(days=1)

    def test_last_modified_falls_back_to_created_at(self):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc)
        record = ProviderRecord(id="p1", name="P", provider_type="ftp", created_at=created)

        assert record.last_modified == created

    def test_oversized_config_rejected(self):
        """Config JSON over the configured limit should be rejected."""
        with patch("strata_core.domain.models.settings.PROVIDER_CONFIG_MAX_BYTES", 10):
            with pytest.raises(ValidationError):
                ProviderRecord(id="p1", name="P", provider_type="ftp", config_json='{"host": "example.com"}')

    def test_from_db_row(self):
        """Rows should map in SELECT column order."""
        now = datetime.now(timezone.utc)
        row = ("p1", "Primary", "minio", True, True, None, "desc", 1024, now, None)

        record = ProviderRecord.from_db_row(row)

        assert record.id == "p1"
        assert record.is_default is True
        assert record.config_json == "{}"
        assert record.max_file_size == 1024


class TestHelpers:
    """Tests for small model helpers."""

    def test_bucket_id_is_deterministic(self):
        """The same provider and bucket should always give the same id."""
        assert deterministic_bucket_id("p1", "docs") == deterministic_bucket_id("p1", "docs")
        assert deterministic_bucket_id("p1", "docs") != deterministic_bucket_id("p2", "docs")

    def test_operation_result_fail(self):
        result = OperationResult.fail("nope", "FORBIDDEN")

        assert result.success is False
        assert result.error_code == "FORBIDDEN"
