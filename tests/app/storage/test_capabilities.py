"""Unit tests for the capability table and cache."""

import pytest

from app.storage.capabilities import CapabilityCache, nominal_supports
from strata_core.domain.models import StorageCapability


class TestNominalCapabilities:
    """Tests for per-kind nominal capability sets."""

    def test_directory_backed_kinds_support_nesting(self):
        """Filesystem, FTP and SFTP treat buckets as directories."""
        for kind in ("filesystem", "ftp", "sftp"):
            assert nominal_supports(kind, StorageCapability.NESTED_BUCKETS) is True
            assert nominal_supports(kind, StorageCapability.OBJECT_VERSIONING) is False

    def test_object_storage_has_no_nesting(self):
        """MinIO buckets are flat."""
        assert nominal_supports("minio", StorageCapability.NESTED_BUCKETS) is False
        assert nominal_supports("minio", StorageCapability.OBJECT_METADATA) is True

    def test_s3_adds_acl_and_lifecycle(self):
        """S3 supports everything MinIO does plus ACLs and lifecycle."""
        assert nominal_supports("s3", StorageCapability.BUCKET_ACL) is True
        assert nominal_supports("s3", StorageCapability.BUCKET_LIFECYCLE) is True
        assert nominal_supports("minio", StorageCapability.BUCKET_ACL) is False

    def test_unknown_kind_supports_nothing(self):
        assert nominal_supports("gopher", StorageCapability.BUCKET_LISTING) is False


class TestCapabilityCache:
    """Tests for runtime capability overrides."""

    def test_missing_entry_is_none(self, cache):
        """An unknown entry should not answer either way."""
        assert cache.get("capability_p1", StorageCapability.BUCKET_CREATION) is None

    def test_set_and_get(self, cache):
        cache.set("capability_p1", StorageCapability.BUCKET_CREATION, False)

        assert cache.get("capability_p1", StorageCapability.BUCKET_CREATION) is False

    def test_clear_removes_only_one_provider(self, cache):
        """Clearing one provider should leave the others intact."""
        cache.set("capability_p1", StorageCapability.BUCKET_CREATION, False)
        cache.set("capability_p2", StorageCapability.BUCKET_CREATION, False)

        cache.clear("capability_p1")

        assert cache.get("capability_p1", StorageCapability.BUCKET_CREATION) is None
        assert cache.get("capability_p2", StorageCapability.BUCKET_CREATION) is False

    def test_clear_all(self, cache):
        cache.set("capability_p1", StorageCapability.BUCKET_LISTING, True)

        cache.clear_all()

        assert len(cache) == 0

    def test_record_permission_failure_downgrades(self, cache):
        """A denied operation should mark exactly that capability unsupported."""
        cache.record_permission_failure("p1", StorageCapability.BUCKET_DELETION)

        key = CapabilityCache.cache_key("p1")
        assert key == "capability_p1"
        assert cache.get(key, StorageCapability.BUCKET_DELETION) is False
        assert cache.get(key, StorageCapability.BUCKET_CREATION) is None


# --- Fixtures ---


@pytest.fixture
def cache():
    return CapabilityCache()
