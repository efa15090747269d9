"""
MigrationLogRepository - one row per orchestrator run.

Database Table:
    migration_log (migration_id, entity_type, phase_name, status,
    records_processed, records_successful, records_failed, started_at,
    completed_at, duration_seconds, error_details, metadata)

The log is append-only; a rerun of the same entity gets a new
migration_id and therefore a new row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.models import EntityType, MigrationLogEntry
from legacymigrate.observability import ATTR_DB_SYSTEM, ATTR_MIGRATION_ID, Tracer, create_tracer
from legacymigrate.repositories._connection import execute_with_connection
from legacymigrate.serialization import json_dumps, json_loads


@runtime_checkable
class MigrationLogRepository(Protocol):
    """Protocol for the per-run migration log."""

    async def record(self, entry: MigrationLogEntry) -> None:
        """Append a log entry."""
        ...

    async def list_for_migration(self, migration_id: UUID) -> list[MigrationLogEntry]:
        """Entries recorded for one run, oldest first."""
        ...


def _timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class PostgreSQLMigrationLogRepository:
    """PostgreSQL implementation of MigrationLogRepository."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def record(self, entry: MigrationLogEntry) -> None:
        with self._tracer.span(
            "legacymigrate.migration_log_repo.record",
            {ATTR_MIGRATION_ID: str(entry.migration_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                INSERT INTO migration_log (
                    migration_id, entity_type, phase_name, status,
                    records_processed, records_successful, records_failed,
                    started_at, completed_at, duration_seconds,
                    error_details, metadata
                ) VALUES (
                    :migration_id, :entity_type, :phase_name, :status,
                    :records_processed, :records_successful, :records_failed,
                    :started_at, :completed_at, :duration_seconds,
                    :error_details, :metadata
                )
            """)
            params = {
                "migration_id": str(entry.migration_id),
                "entity_type": entry.entity_type.value,
                "phase_name": entry.phase_name,
                "status": entry.status,
                "records_processed": entry.records_processed,
                "records_successful": entry.records_successful,
                "records_failed": entry.records_failed,
                "started_at": entry.started_at,
                "completed_at": entry.completed_at,
                "duration_seconds": entry.duration_seconds,
                "error_details": entry.error_details,
                "metadata": json_dumps(entry.metadata),
            }
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def list_for_migration(self, migration_id: UUID) -> list[MigrationLogEntry]:
        with self._tracer.span(
            "legacymigrate.migration_log_repo.list_for_migration",
            {ATTR_MIGRATION_ID: str(migration_id), ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT migration_id, entity_type, phase_name, status,
                       records_processed, records_successful, records_failed,
                       started_at, completed_at, duration_seconds,
                       error_details, metadata
                FROM migration_log
                WHERE migration_id = :migration_id
                ORDER BY started_at
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"migration_id": str(migration_id)})
                rows = result.fetchall()

            return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row: Any) -> MigrationLogEntry:
        metadata = json_loads(row[11]) if row[11] is not None else {}
        return MigrationLogEntry(
            migration_id=UUID(str(row[0])),
            entity_type=EntityType(row[1]),
            phase_name=row[2],
            status=row[3],
            records_processed=row[4],
            records_successful=row[5],
            records_failed=row[6],
            started_at=_timestamp(row[7]),  # type: ignore[arg-type]
            completed_at=_timestamp(row[8]),
            duration_seconds=row[9],
            error_details=row[10],
            metadata=metadata,
        )


class InMemoryMigrationLogRepository:
    """In-memory implementation of MigrationLogRepository for testing."""

    def __init__(self) -> None:
        self.entries: list[MigrationLogEntry] = []

    async def record(self, entry: MigrationLogEntry) -> None:
        self.entries.append(entry)

    async def list_for_migration(self, migration_id: UUID) -> list[MigrationLogEntry]:
        return [e for e in self.entries if e.migration_id == migration_id]


__all__ = [
    "MigrationLogRepository",
    "PostgreSQLMigrationLogRepository",
    "InMemoryMigrationLogRepository",
]
