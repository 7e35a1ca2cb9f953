"""
Provider configuration repositories.

The storage layer reads provider records but does not own them; the
PostgreSQL repository queries the ``storage_providers`` table, and the
in-memory one serves local development and tests.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from loguru import logger

from strata_core.domain.models import ProviderRecord, utcnow
from strata_core.infrastructure.postgres import get_db_connection

_SELECT_COLUMNS = """
    SELECT id, name, provider_type, is_default, is_active, config_json,
           description, max_file_size, created_at, updated_at
    FROM storage_providers
"""


@runtime_checkable
class ProviderRepository(Protocol):
    """Read access to persisted provider configuration."""

    def get_all_active(self) -> list[ProviderRecord]: ...

    def get_by_id(self, provider_id: str) -> ProviderRecord | None: ...


class PostgresProviderRepository:
    """Reads provider records from PostgreSQL."""

    def get_all_active(self) -> list[ProviderRecord]:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                _SELECT_COLUMNS
                + """
                WHERE is_active = TRUE
                ORDER BY is_default DESC, created_at ASC
                """
            )
            rows = cursor.fetchall()

        logger.debug(f"Loaded {len(rows)} active storage provider records")
        return [ProviderRecord.from_db_row(row) for row in rows]

    def get_by_id(self, provider_id: str) -> ProviderRecord | None:
        with get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(_SELECT_COLUMNS + " WHERE id = %s", (provider_id,))
            row = cursor.fetchone()

        if not row:
            return None
        return ProviderRecord.from_db_row(row)


class InMemoryProviderRepository:
    """Dictionary-backed repository."""

    def __init__(self, records: list[ProviderRecord] | None = None):
        self._records: dict[str, ProviderRecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self._records[record.id] = record

    def get_all_active(self) -> list[ProviderRecord]:
        with self._lock:
            active = [r for r in self._records.values() if r.is_active]
        return sorted(active, key=lambda r: (not r.is_default, r.created_at))

    def get_by_id(self, provider_id: str) -> ProviderRecord | None:
        with self._lock:
            return self._records.get(provider_id)

    def add(self, record: ProviderRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def update(self, provider_id: str, **changes) -> ProviderRecord:
        with self._lock:
            current = self._records[provider_id]
            updated = current.model_copy(update={**changes, "updated_at": utcnow()})
            self._records[provider_id] = updated
            return updated

    def remove(self, provider_id: str) -> None:
        with self._lock:
            self._records.pop(provider_id, None)
