"""Unit tests for the local filesystem provider."""

import io
import re
from pathlib import Path
from unittest.mock import patch

import pytest

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import FileSystemProviderConfig
from app.storage.providers import FileSystemProvider, compute_hash
from strata_core.domain.exceptions import (
    ObjectNotFoundError,
    PermissionDeniedError,
    StorageValidationError,
    UnsupportedOperationError,
)
from strata_core.domain.models import StorageCapability
from strata_core.runtime.errors import ErrorCode


class TestFileSystemUpload:
    """Tests for document uploads."""

    @pytest.mark.asyncio
    async def test_upload_then_download_round_trip(self, provider):
        """Downloaded bytes should match the upload and its hash."""
        result = await provider.upload(b"hello world", "report.pdf", "d1", content_type="application/pdf")

        assert result.success is True
        assert result.file_size == 11
        assert result.file_hash == compute_hash(b"hello world")

        stream = await provider.download(result.storage_path)
        assert stream.read() == b"hello world"

    @pytest.mark.asyncio
    async def test_generated_key_pattern(self, provider):
        """Generated keys should be document id, uuid and file name."""
        result = await provider.upload(b"x", "report.pdf", "d1")

        assert re.fullmatch(r"default/d1/[0-9a-f-]{36}-report\.pdf", result.storage_path)

    @pytest.mark.asyncio
    async def test_same_document_gets_distinct_keys(self, provider):
        """Two uploads of one document never collide."""
        first = await provider.upload(b"x", "report.pdf", "d1")
        second = await provider.upload(b"y", "report.pdf", "d1")

        assert first.storage_path != second.storage_path
        assert (await provider.download(first.storage_path)).read() == b"x"

    @pytest.mark.asyncio
    async def test_unbucketed_objects_live_under_root(self, provider, root):
        """The default namespace maps onto the root directory itself."""
        result = await provider.upload(b"x", "a.txt", "d1", object_key="notes/a.txt")

        assert result.storage_path == "default/notes/a.txt"
        assert (root / "notes" / "a.txt").read_bytes() == b"x"

    @pytest.mark.asyncio
    async def test_bucketed_upload(self, provider, root):
        result = await provider.upload(b"x", "a.txt", "d1", object_key="a.txt", bucket_name="docs")

        assert result.storage_path == "docs/a.txt"
        assert (root / "docs" / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_stream_position_restored_for_hash(self, provider):
        """Hashing should not consume the stream before it is written."""
        stream = io.BytesIO(b"streamed content")

        result = await provider.upload(stream, "s.bin", "d1", object_key="s.bin")

        assert (await provider.download(result.storage_path)).read() == b"streamed content"

    @pytest.mark.asyncio
    async def test_invalid_bucket_name_fails_result(self, provider):
        """Upload never raises; a bad bucket name comes back as a failure."""
        result = await provider.upload(b"x", "a.txt", "d1", bucket_name="bad:name")

        assert result.success is False
        assert result.storage_path is None
        assert result.error_message

    @pytest.mark.asyncio
    async def test_upload_path_requires_key(self, provider):
        with pytest.raises(StorageValidationError):
            await provider.upload_path("", b"x")


class TestFileSystemObjects:
    """Tests for download, delete and existence."""

    @pytest.mark.asyncio
    async def test_missing_object_raises_not_found(self, provider):
        with pytest.raises(ObjectNotFoundError):
            await provider.download("default/nope.txt")

    @pytest.mark.asyncio
    async def test_exists_false_after_delete(self, provider):
        path = await provider.upload_path("a.txt", b"x")

        assert await provider.exists(path) is True
        await provider.delete(path)
        assert await provider.exists(path) is False

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, provider):
        """Deleting a missing object should not raise."""
        await provider.delete("default/never-existed.txt")

    @pytest.mark.asyncio
    async def test_traversal_is_refused(self, provider):
        """Keys escaping the root should be denied."""
        with pytest.raises(PermissionDeniedError):
            await provider.download("../../etc/passwd")

    @pytest.mark.asyncio
    async def test_exists_never_raises_on_traversal(self, provider):
        assert await provider.exists("../../etc/passwd") is False

    @pytest.mark.asyncio
    async def test_list_files(self, provider):
        await provider.upload_path("a/one.txt", b"1")
        await provider.upload_path("a/two.txt", b"2")
        await provider.upload_path("b/three.txt", b"3")

        assert await provider.list_files("a") == ["a/one.txt", "a/two.txt"]

    @pytest.mark.asyncio
    async def test_temporary_url_unsupported(self, provider):
        assert await provider.get_temporary_url("default/a.txt") == ""

    @pytest.mark.asyncio
    async def test_connection(self, provider):
        result = await provider.test_connection()

        assert result.success is True


class TestFileSystemBuckets:
    """Tests for directory-backed buckets."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, provider):
        result = await provider.create_bucket("docs")
        buckets = await provider.list_buckets()

        assert result.success is True
        assert [b.path for b in buckets] == ["docs"]
        assert buckets[0].object_count == 0

    @pytest.mark.asyncio
    async def test_create_existing_is_conflict(self, provider):
        await provider.create_bucket("docs")

        result = await provider.create_bucket("docs")

        assert result.success is False
        assert result.error_code == ErrorCode.CONFLICT

    @pytest.mark.asyncio
    async def test_nested_bucket(self, provider, root):
        result = await provider.create_bucket("tenants/acme")

        assert result.success is True
        assert (root / "tenants" / "acme").is_dir()

    @pytest.mark.asyncio
    async def test_invalid_bucket_name(self, provider):
        result = await provider.create_bucket("..")

        assert result.success is False
        assert result.error_code == ErrorCode.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_remove_non_empty_requires_force(self, provider, root):
        """A non-empty bucket is only removed with force."""
        await provider.upload(b"x", "a.txt", "d1", object_key="a.txt", bucket_name="docs")

        refused = await provider.remove_bucket("docs")
        assert refused.success is False
        assert (root / "docs").is_dir()

        removed = await provider.remove_bucket("docs", force=True)
        assert removed.success is True
        assert not (root / "docs").exists()

    @pytest.mark.asyncio
    async def test_remove_missing_bucket(self, provider):
        result = await provider.remove_bucket("ghost")

        assert result.success is False
        assert result.error_code == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_permission_denied_downgrades_creation(self, provider):
        """A denied mkdir should mark bucket creation unsupported for this provider."""
        with patch.object(Path, "mkdir", side_effect=PermissionError("denied")):
            result = await provider.create_bucket("locked")

        assert result.success is False
        assert result.error_code == ErrorCode.FORBIDDEN
        assert provider.supports_capability(StorageCapability.BUCKET_CREATION) is False

        with pytest.raises(UnsupportedOperationError):
            provider.require_capability(StorageCapability.BUCKET_CREATION)

    @pytest.mark.asyncio
    async def test_downgrade_does_not_leak_to_other_providers(self, provider, root, cache):
        """Overrides are keyed by provider id."""
        cache.record_permission_failure(provider.provider_id, StorageCapability.BUCKET_CREATION)
        other = FileSystemProvider(
            FileSystemProviderConfig(root_path=str(root / "other"), provider_id="fs-2"), cache
        )

        assert other.supports_capability(StorageCapability.BUCKET_CREATION) is True


# --- Fixtures ---


@pytest.fixture
def root(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def cache():
    return CapabilityCache()


@pytest.fixture
def provider(root, cache):
    config = FileSystemProviderConfig(root_path=str(root), provider_id="fs-1")
    return FileSystemProvider(config, cache)
