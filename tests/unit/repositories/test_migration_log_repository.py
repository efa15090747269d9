"""
Unit tests for the migration log repositories.

Tests cover:
- Recording and listing entries per migration id
- PostgreSQLMigrationLogRepository SQL against SQLite, including JSON metadata
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import text

from legacymigrate.models import EntityType, MigrationLogEntry
from legacymigrate.repositories import (
    MigrationLogRepository,
    PostgreSQLMigrationLogRepository,
)

LOG_DDL = """
    CREATE TABLE migration_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        migration_id TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        phase_name TEXT NOT NULL,
        status TEXT NOT NULL,
        records_processed INTEGER,
        records_successful INTEGER,
        records_failed INTEGER,
        started_at TIMESTAMP,
        completed_at TIMESTAMP,
        duration_seconds REAL,
        error_details TEXT,
        metadata TEXT
    )
"""


def entry(migration_id, status="completed", **overrides):
    started = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
    values = {
        "migration_id": migration_id,
        "entity_type": EntityType.OFFICES,
        "phase_name": "done",
        "status": status,
        "records_processed": 2,
        "records_successful": 1,
        "records_failed": 1,
        "started_at": started,
        "completed_at": started + timedelta(seconds=3),
        "duration_seconds": 3.0,
        "metadata": {"stats": {"created": 1}, "config": {"batch_size": 100}},
    }
    values.update(overrides)
    return MigrationLogEntry(**values)


class TestInMemoryMigrationLogRepository:
    """Tests for InMemoryMigrationLogRepository."""

    def test_satisfies_protocol(self, migration_log):
        assert isinstance(migration_log, MigrationLogRepository)

    @pytest.mark.asyncio
    async def test_lists_entries_per_migration(self, migration_log):
        first, second = uuid4(), uuid4()
        await migration_log.record(entry(first))
        await migration_log.record(entry(second, status="failed"))

        entries = await migration_log.list_for_migration(second)

        assert [e.status for e in entries] == ["failed"]
        assert len(migration_log.entries) == 2


@pytest.mark.sqlite
class TestPostgreSQLMigrationLogRepositoryOnSQLite:
    """Tests for the SQL implementation using SQLite."""

    @pytest.mark.asyncio
    async def test_record_and_list(self, sqlite_engine):
        async with sqlite_engine.begin() as conn:
            await conn.execute(text(LOG_DDL))
        repo = PostgreSQLMigrationLogRepository(sqlite_engine, enable_tracing=False)
        migration_id = uuid4()

        await repo.record(entry(migration_id, error_details="Validation failed"))

        [stored] = await repo.list_for_migration(migration_id)
        assert stored.migration_id == migration_id
        assert stored.entity_type == EntityType.OFFICES
        assert stored.records_failed == 1
        assert stored.error_details == "Validation failed"
        assert stored.metadata == {"stats": {"created": 1}, "config": {"batch_size": 100}}
        assert stored.started_at is not None

    @pytest.mark.asyncio
    async def test_unknown_migration_is_empty(self, sqlite_engine):
        async with sqlite_engine.begin() as conn:
            await conn.execute(text(LOG_DDL))
        repo = PostgreSQLMigrationLogRepository(sqlite_engine, enable_tracing=False)

        assert await repo.list_for_migration(uuid4()) == []
