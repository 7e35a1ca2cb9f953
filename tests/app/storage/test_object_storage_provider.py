"""
Unit tests for the MinIO/S3 provider.

The MinIO client is mocked; the pool hands out the same mock every time.
"""

import asyncio
import threading
from unittest.mock import MagicMock

import pytest
from minio.error import S3Error
from urllib3.exceptions import HTTPError

from app.storage.capabilities import CapabilityCache
from app.storage.config_models import MinioProviderConfig
from app.storage.pool import MinioConnectionPool
from app.storage.providers import ObjectStorageProvider, S3StorageProvider
from app.storage.providers.base import compute_hash
from app.storage.providers.object_storage import translate_s3_error
from strata_core.domain.exceptions import ObjectNotFoundError, PermissionDeniedError, StorageInternalError
from strata_core.domain.models import StorageCapability
from strata_core.runtime.errors import ErrorCode
from tests.app.storage.fakes import FakeMinio


class TestS3ErrorTranslation:
    """Tests for S3 error code mapping."""

    def test_not_found(self):
        assert isinstance(translate_s3_error(_s3_error("NoSuchKey"), "x"), ObjectNotFoundError)

    def test_access_denied(self):
        assert isinstance(translate_s3_error(_s3_error("AccessDenied"), "x"), PermissionDeniedError)

    def test_other_codes(self):
        assert isinstance(translate_s3_error(_s3_error("SlowDown"), "x"), StorageInternalError)


class TestObjectUploads:
    """Tests for uploads to object storage."""

    @pytest.mark.asyncio
    async def test_unbucketed_upload_uses_configured_bucket(self, provider, minio_client):
        """The default namespace maps onto the configured bucket."""
        result = await provider.upload(b"hello", "a.txt", "d1", object_key="d1/a.txt")

        assert result.success is True
        assert result.storage_path == "default/d1/a.txt"
        kwargs = minio_client.put_object.call_args.kwargs
        assert kwargs["bucket_name"] == "documents"
        assert kwargs["object_name"] == "d1/a.txt"
        assert kwargs["length"] == 5

    @pytest.mark.asyncio
    async def test_missing_bucket_is_created(self, provider, minio_client):
        minio_client.bucket_exists.return_value = False

        result = await provider.upload(b"x", "a.txt", "d1", object_key="a.txt", bucket_name="invoices")

        assert result.storage_path == "invoices/a.txt"
        minio_client.make_bucket.assert_called_once_with(bucket_name="invoices")

    @pytest.mark.asyncio
    async def test_upload_failure_returns_result(self, provider, minio_client):
        minio_client.put_object.side_effect = _s3_error("AccessDenied")

        result = await provider.upload(b"x", "a.txt", "d1")

        assert result.success is False
        assert "Access denied" in result.error_message

    @pytest.mark.asyncio
    async def test_explicit_default_bucket_keeps_default_namespace(self, provider, minio_client):
        """Naming the default namespace explicitly gives the same path as omitting it."""
        result = await provider.upload(b"x", "a.txt", "d1", object_key="a.txt", bucket_name="default")

        assert result.storage_path == "default/a.txt"
        assert minio_client.put_object.call_args.kwargs["bucket_name"] == "documents"


class TestObjectReads:
    """Tests for download, delete and existence."""

    @pytest.mark.asyncio
    async def test_download_reads_bucket_from_path(self, provider, minio_client):
        response = MagicMock()
        response.read.return_value = b"payload"
        minio_client.get_object.return_value = response

        stream = await provider.download("invoices/2024/a.pdf")

        assert stream.read() == b"payload"
        minio_client.get_object.assert_called_once_with(bucket_name="invoices", object_name="2024/a.pdf")
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    @pytest.mark.asyncio
    async def test_default_namespace_resolves_to_configured_bucket(self, provider, minio_client):
        minio_client.get_object.return_value = MagicMock(read=MagicMock(return_value=b""))

        await provider.download("default/a.txt")

        assert minio_client.get_object.call_args.kwargs["bucket_name"] == "documents"

    @pytest.mark.asyncio
    async def test_download_missing(self, provider, minio_client):
        minio_client.get_object.side_effect = _s3_error("NoSuchKey")

        with pytest.raises(ObjectNotFoundError):
            await provider.download("documents/missing.txt")

    @pytest.mark.asyncio
    async def test_delete_missing_skips_remove(self, provider, minio_client):
        minio_client.stat_object.side_effect = _s3_error("NoSuchKey")

        await provider.delete("documents/missing.txt")

        minio_client.remove_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_uses_bucket_from_path(self, provider, minio_client):
        await provider.delete("invoices/a.txt")

        minio_client.remove_object.assert_called_once_with(bucket_name="invoices", object_name="a.txt")

    @pytest.mark.asyncio
    async def test_exists(self, provider, minio_client):
        assert await provider.exists("documents/a.txt") is True

        minio_client.stat_object.side_effect = _s3_error("NoSuchKey")
        assert await provider.exists("documents/a.txt") is False

    @pytest.mark.asyncio
    async def test_exists_false_when_unreachable(self, provider, minio_client):
        minio_client.stat_object.side_effect = HTTPError("connection refused")

        assert await provider.exists("documents/a.txt") is False

    @pytest.mark.asyncio
    async def test_temporary_url(self, provider, minio_client):
        minio_client.presigned_get_object.return_value = "https://minio/documents/a.txt?sig"

        assert await provider.get_temporary_url("default/a.txt") == "https://minio/documents/a.txt?sig"

    @pytest.mark.asyncio
    async def test_client_returned_to_pool(self, provider, pool, minio_client):
        minio_client.stat_object.side_effect = HTTPError("reset")

        await provider.exists("documents/a.txt")

        assert pool.in_use == 0

    @pytest.mark.asyncio
    async def test_cancelled_call_holds_client_until_thread_finishes(self, cache, minio_client):
        """A cancelled caller must not hand the client back while a worker thread still uses it."""
        pool = MinioConnectionPool(_config(), max_connections=1, client_factory=lambda: minio_client)
        provider = ObjectStorageProvider(_config(), cache, pool=pool)
        started = threading.Event()
        finish = threading.Event()

        def slow_stat(**kwargs):
            started.set()
            finish.wait(5)

        minio_client.stat_object.side_effect = slow_stat

        task = asyncio.create_task(provider.exists("documents/a.txt"))
        await asyncio.to_thread(started.wait, 5)
        task.cancel()
        await asyncio.sleep(0.05)

        assert pool.in_use == 1

        finish.set()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert pool.in_use == 0


class TestObjectRoundTrip:
    """Tests against an in-memory object store."""

    @pytest.mark.asyncio
    async def test_upload_download_is_byte_identical(self, fake_provider):
        payload = b"%PDF-1.7 quarterly report"

        result = await fake_provider.upload(payload, "report.pdf", "d1", object_key="d1/report.pdf")
        downloaded = (await fake_provider.download(result.storage_path)).read()

        assert downloaded == payload
        assert result.file_hash == compute_hash(downloaded)
        assert result.file_size == len(payload)

    @pytest.mark.asyncio
    async def test_bucketed_round_trip(self, fake_provider, fake_minio):
        result = await fake_provider.upload(b"row,1\n", "a.csv", "d1", object_key="a.csv", bucket_name="invoices")

        assert result.storage_path == "invoices/a.csv"
        assert fake_minio.buckets["invoices"]["a.csv"] == b"row,1\n"
        assert (await fake_provider.download("invoices/a.csv")).read() == b"row,1\n"

    @pytest.mark.asyncio
    async def test_delete_then_exists_is_false(self, fake_provider):
        path = await fake_provider.upload_path("notes/a.txt", b"content")
        assert await fake_provider.exists(path) is True

        await fake_provider.delete(path)

        assert await fake_provider.exists(path) is False
        with pytest.raises(ObjectNotFoundError):
            await fake_provider.download(path)

    @pytest.mark.asyncio
    async def test_list_files_in_configured_bucket(self, fake_provider):
        await fake_provider.upload_path("b.txt", b"b")
        await fake_provider.upload_path("a.txt", b"a")

        assert await fake_provider.list_files() == ["a.txt", "b.txt"]


class TestObjectBuckets:
    """Tests for bucket lifecycle on object storage."""

    @pytest.mark.asyncio
    async def test_create_bucket_with_region(self, cache, pool, minio_client):
        minio_client.bucket_exists.return_value = False
        provider = ObjectStorageProvider(_config(region="eu-west-1"), cache, pool=pool)

        result = await provider.create_bucket("invoices")

        assert result.success is True
        minio_client.make_bucket.assert_called_once_with(bucket_name="invoices", location="eu-west-1")

    @pytest.mark.asyncio
    async def test_nested_bucket_rejected_before_io(self, provider, minio_client):
        """Object storage has flat buckets; nested names fail without a round trip."""
        result = await provider.create_bucket("a/b")

        assert result.success is False
        assert result.error_code == ErrorCode.UNSUPPORTED_OPERATION
        minio_client.bucket_exists.assert_not_called()
        minio_client.make_bucket.assert_not_called()

    @pytest.mark.asyncio
    async def test_access_denied_downgrades_creation(self, provider, minio_client):
        minio_client.bucket_exists.return_value = False
        minio_client.make_bucket.side_effect = _s3_error("AccessDenied")

        result = await provider.create_bucket("invoices")

        assert result.error_code == ErrorCode.FORBIDDEN
        assert provider.supports_capability(StorageCapability.BUCKET_CREATION) is False

        second = await provider.create_bucket("other")
        assert second.error_code == ErrorCode.UNSUPPORTED_OPERATION

    @pytest.mark.asyncio
    async def test_remove_non_empty_requires_force(self, provider, minio_client):
        minio_client.list_objects.return_value = [MagicMock(object_name="a.txt"), MagicMock(object_name="b.txt")]
        minio_client.remove_objects.return_value = iter([])

        refused = await provider.remove_bucket("invoices")
        assert refused.success is False
        minio_client.remove_bucket.assert_not_called()

        minio_client.list_objects.return_value = [MagicMock(object_name="a.txt"), MagicMock(object_name="b.txt")]
        removed = await provider.remove_bucket("invoices", force=True)
        assert removed.success is True
        batch = minio_client.remove_objects.call_args.kwargs["delete_object_list"]
        assert len(batch) == 2
        minio_client.remove_bucket.assert_called_once_with(bucket_name="invoices")

    @pytest.mark.asyncio
    async def test_failed_object_deletes_keep_bucket(self, provider, minio_client):
        minio_client.list_objects.return_value = [MagicMock(object_name="a.txt")]
        minio_client.remove_objects.return_value = iter([MagicMock()])

        result = await provider.remove_bucket("invoices", force=True)

        assert result.success is False
        minio_client.remove_bucket.assert_not_called()

    @pytest.mark.asyncio
    async def test_list_buckets(self, provider, minio_client):
        bucket = MagicMock(creation_date=None)
        bucket.name = "invoices"
        minio_client.list_buckets.return_value = [bucket]

        buckets = await provider.list_buckets()

        assert [b.path for b in buckets] == ["invoices"]
        assert buckets[0].provider_id == "minio-1"

    def test_s3_has_wider_capabilities(self, cache, pool):
        s3 = S3StorageProvider(_config(provider_type="s3"), cache, pool=pool)

        assert s3.supports_capability(StorageCapability.BUCKET_ACL) is True
        assert s3.supports_capability(StorageCapability.NESTED_BUCKETS) is False


class TestObjectConnection:
    """Tests for connectivity checks and shutdown."""

    @pytest.mark.asyncio
    async def test_connection_creates_missing_bucket(self, provider, minio_client):
        minio_client.bucket_exists.side_effect = [False, True]

        result = await provider.test_connection()

        assert result.success is True
        minio_client.make_bucket.assert_called_once_with(bucket_name="documents")

    @pytest.mark.asyncio
    async def test_connection_failure(self, provider, minio_client):
        minio_client.bucket_exists.side_effect = HTTPError("refused")

        result = await provider.test_connection()

        assert result.success is False
        assert result.error_code == ErrorCode.CONNECTION_ERROR

    @pytest.mark.asyncio
    async def test_close_closes_pool(self, provider, pool):
        await provider.close()

        assert pool.closed is True


def _s3_error(code: str) -> S3Error:
    return S3Error(
        code=code,
        message=code,
        resource="/documents",
        request_id="req-1",
        host_id="host-1",
        response=MagicMock(),
    )


def _config(**overrides) -> MinioProviderConfig:
    fields = {
        "endpoint": "localhost:9000",
        "access_key": "ak",
        "secret_key": "sk",
        "bucket_name": "documents",
        "provider_id": "minio-1",
    }
    fields.update(overrides)
    return MinioProviderConfig(**fields)


# --- Fixtures ---


@pytest.fixture
def minio_client():
    client = MagicMock()
    client.bucket_exists.return_value = True
    return client


@pytest.fixture
def pool(minio_client):
    return MinioConnectionPool(_config(), max_connections=2, client_factory=lambda: minio_client)


@pytest.fixture
def cache():
    return CapabilityCache()


@pytest.fixture
def provider(cache, pool):
    return ObjectStorageProvider(_config(), cache, pool=pool)


@pytest.fixture
def fake_minio():
    return FakeMinio(buckets=("documents",))


@pytest.fixture
def fake_provider(cache, fake_minio):
    pool = MinioConnectionPool(_config(), max_connections=2, client_factory=lambda: fake_minio)
    return ObjectStorageProvider(_config(), cache, pool=pool)
