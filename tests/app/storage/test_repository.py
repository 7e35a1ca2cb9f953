"""Unit tests for provider configuration repositories."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from app.storage.repository import (
    InMemoryProviderRepository,
    PostgresProviderRepository,
    ProviderRepository,
)
from strata_core.domain.models import ProviderRecord

NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestPostgresProviderRepository:
    """Tests for the PostgreSQL-backed repository."""

    def test_get_all_active_maps_rows(self, mock_db):
        mock_db.fetchall.return_value = [
            ("p1", "Primary", "minio", True, True, '{"endpoint": "minio:9000"}', None, None, NOW, None),
            ("p2", "Archive", "sftp", False, True, None, "cold storage", 10, NOW, NOW),
        ]

        records = PostgresProviderRepository().get_all_active()

        assert [r.id for r in records] == ["p1", "p2"]
        assert records[0].is_default is True
        assert records[1].config_json == "{}"
        sql = mock_db.execute.call_args.args[0]
        assert "storage_providers" in sql
        assert "is_active = TRUE" in sql

    def test_get_by_id(self, mock_db):
        mock_db.fetchone.return_value = ("p1", "Primary", "ftp", False, False, "{}", None, None, NOW, None)

        record = PostgresProviderRepository().get_by_id("p1")

        assert record.is_active is False
        assert mock_db.execute.call_args.args[1] == ("p1",)

    def test_get_by_id_missing(self, mock_db):
        mock_db.fetchone.return_value = None

        assert PostgresProviderRepository().get_by_id("nope") is None

    def test_satisfies_protocol(self):
        assert isinstance(PostgresProviderRepository(), ProviderRepository)


class TestInMemoryProviderRepository:
    """Tests for the in-memory repository."""

    def test_active_records_default_first(self):
        repository = InMemoryProviderRepository(
            [
                _record("a", created_at=NOW),
                _record("b", created_at=NOW + timedelta(minutes=1), is_default=True),
                _record("c", created_at=NOW - timedelta(minutes=1), is_active=False),
            ]
        )

        assert [r.id for r in repository.get_all_active()] == ["b", "a"]

    def test_update_bumps_last_modified(self):
        repository = InMemoryProviderRepository([_record("a", created_at=NOW)])

        updated = repository.update("a", name="Renamed")

        assert updated.name == "Renamed"
        assert updated.last_modified > NOW
        assert repository.get_by_id("a").name == "Renamed"

    def test_remove(self):
        repository = InMemoryProviderRepository([_record("a", created_at=NOW)])

        repository.remove("a")
        repository.remove("a")

        assert repository.get_by_id("a") is None


def _record(provider_id: str, **fields) -> ProviderRecord:
    return ProviderRecord(id=provider_id, name=provider_id, provider_type="filesystem", **fields)


# --- Fixtures ---


@pytest.fixture
def mock_db():
    """Patches get_db_connection and yields the cursor mock."""
    cursor = MagicMock()
    conn = MagicMock()
    conn.cursor.return_value = cursor
    conn.__enter__.return_value = conn
    with patch("app.storage.repository.get_db_connection", return_value=conn):
        yield cursor
