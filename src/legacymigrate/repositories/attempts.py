"""
MigrationAttemptRepository - write-ahead markers for migrated records.

Before a batch is written, each valid record gets a PENDING marker.
After the write, the marker becomes SUCCEEDED (with the target id) or
FAILED (with the error). Records rejected by their transformer are
marked FAILED directly. A rerun can therefore tell apart records that
were never attempted, attempted and failed, and succeeded, including
batches interrupted between the marker and the write (still PENDING).

Database Table:
    migration_attempts (entity_type, legacy_id) primary key, with
    status, target_id, error and attempted_at columns. Legacy ids are
    stored as text so that string-keyed reference data fits too.

Usage:
    >>> repo = PostgreSQLMigrationAttemptRepository(engine)
    >>> await repo.mark_pending(EntityType.OFFICES, [1, 2])
    >>> await repo.mark_succeeded(EntityType.OFFICES, [(1, "uuid-1")])
    >>> await repo.mark_failed(EntityType.OFFICES, [(2, "Office name is required")])
    >>> await repo.summary(EntityType.OFFICES)
    {<MigrationAttemptStatus.SUCCEEDED: 'succeeded'>: 1, <MigrationAttemptStatus.FAILED: 'failed'>: 1}
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.models import (
    EntityType,
    LegacyKey,
    MigrationAttempt,
    MigrationAttemptStatus,
)
from legacymigrate.observability import (
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_TYPE,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from legacymigrate.repositories._connection import execute_with_connection


@runtime_checkable
class MigrationAttemptRepository(Protocol):
    """
    Protocol for write-ahead migration attempt markers.

    Markers are keyed by (entity type, legacy id); each call overwrites
    the previous state of the markers it touches.
    """

    async def mark_pending(self, entity_type: EntityType, legacy_ids: Sequence[LegacyKey]) -> int:
        """
        Mark records as about to be written.

        Returns:
            Number of markers written
        """
        ...

    async def mark_succeeded(
        self,
        entity_type: EntityType,
        results: Sequence[tuple[LegacyKey, str]],
        notes: Mapping[LegacyKey, str] | None = None,
    ) -> int:
        """
        Mark (legacy id, target id) pairs as written.

        ``notes`` keeps a non-blocking problem (a failed relationship) in
        the marker's error column while the status stays SUCCEEDED.
        """
        ...

    async def mark_failed(
        self,
        entity_type: EntityType,
        failures: Sequence[tuple[LegacyKey, str]],
    ) -> int:
        """Mark (legacy id, error) pairs as failed."""
        ...

    async def get(self, entity_type: EntityType, legacy_id: LegacyKey) -> MigrationAttempt | None:
        """
        Get the marker for one record.

        Returns:
            MigrationAttempt or None if the record was never attempted
        """
        ...

    async def summary(self, entity_type: EntityType) -> dict[MigrationAttemptStatus, int]:
        """Marker counts per status for an entity type."""
        ...


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class PostgreSQLMigrationAttemptRepository:
    """
    PostgreSQL implementation of MigrationAttemptRepository.

    Uses ``INSERT ... ON CONFLICT (entity_type, legacy_id) DO UPDATE`` so
    that markers move between states without a read.

    Example:
        >>> async with engine.begin() as conn:
        ...     repo = PostgreSQLMigrationAttemptRepository(conn)
        ...     await repo.mark_pending(EntityType.ORDERS, [10, 11, 12])
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        """
        Initialize the repository.

        Args:
            conn: Database connection or engine
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def _upsert(
        self,
        entity_type: EntityType,
        status: MigrationAttemptStatus,
        rows: Sequence[tuple[LegacyKey, str | None, str | None]],
    ) -> int:
        if not rows:
            return 0

        # ON CONFLICT cannot touch the same row twice in one statement
        latest: dict[str, tuple[str | None, str | None]] = {}
        for legacy_id, target_id, error in rows:
            latest[str(legacy_id)] = (target_id, error)

        with self._tracer.span(
            f"legacymigrate.attempt_repo.mark_{status.value}",
            {
                ATTR_ENTITY_TYPE: entity_type.value,
                ATTR_RECORD_COUNT: len(latest),
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO migration_attempts (
                    entity_type, legacy_id, status, target_id, error, attempted_at
                ) VALUES (
                    :entity_type, :legacy_id, :status, :target_id, :error, :attempted_at
                )
                ON CONFLICT (entity_type, legacy_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    target_id = EXCLUDED.target_id,
                    error = EXCLUDED.error,
                    attempted_at = EXCLUDED.attempted_at
            """)
            now = datetime.now(UTC)
            params = [
                {
                    "entity_type": entity_type.value,
                    "legacy_id": legacy_id,
                    "status": status.value,
                    "target_id": target_id,
                    "error": error,
                    "attempted_at": now,
                }
                for legacy_id, (target_id, error) in latest.items()
            ]

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

            return len(params)

    async def mark_pending(self, entity_type: EntityType, legacy_ids: Sequence[LegacyKey]) -> int:
        return await self._upsert(
            entity_type,
            MigrationAttemptStatus.PENDING,
            [(legacy_id, None, None) for legacy_id in legacy_ids],
        )

    async def mark_succeeded(
        self,
        entity_type: EntityType,
        results: Sequence[tuple[LegacyKey, str]],
        notes: Mapping[LegacyKey, str] | None = None,
    ) -> int:
        notes = notes or {}
        return await self._upsert(
            entity_type,
            MigrationAttemptStatus.SUCCEEDED,
            [(legacy_id, target_id, notes.get(legacy_id)) for legacy_id, target_id in results],
        )

    async def mark_failed(
        self,
        entity_type: EntityType,
        failures: Sequence[tuple[LegacyKey, str]],
    ) -> int:
        return await self._upsert(
            entity_type,
            MigrationAttemptStatus.FAILED,
            [(legacy_id, None, error) for legacy_id, error in failures],
        )

    async def get(self, entity_type: EntityType, legacy_id: LegacyKey) -> MigrationAttempt | None:
        with self._tracer.span(
            "legacymigrate.attempt_repo.get",
            {ATTR_ENTITY_TYPE: entity_type.value, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT status, target_id, error, attempted_at
                FROM migration_attempts
                WHERE entity_type = :entity_type AND legacy_id = :legacy_id
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(
                    query,
                    {"entity_type": entity_type.value, "legacy_id": str(legacy_id)},
                )
                row = result.fetchone()

            if row is None:
                return None

            return MigrationAttempt(
                entity_type=entity_type,
                legacy_id=legacy_id,
                status=MigrationAttemptStatus(row[0]),
                target_id=row[1],
                error=row[2],
                attempted_at=_parse_timestamp(row[3]),
            )

    async def summary(self, entity_type: EntityType) -> dict[MigrationAttemptStatus, int]:
        with self._tracer.span(
            "legacymigrate.attempt_repo.summary",
            {ATTR_ENTITY_TYPE: entity_type.value, ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT status, COUNT(*)
                FROM migration_attempts
                WHERE entity_type = :entity_type
                GROUP BY status
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"entity_type": entity_type.value})
                rows = result.fetchall()

            return {MigrationAttemptStatus(row[0]): int(row[1]) for row in rows}


class InMemoryMigrationAttemptRepository:
    """
    In-memory implementation of MigrationAttemptRepository for testing.

    Example:
        >>> repo = InMemoryMigrationAttemptRepository()
        >>> await repo.mark_pending(EntityType.OFFICES, [1])
        >>> (await repo.get(EntityType.OFFICES, 1)).status
        <MigrationAttemptStatus.PENDING: 'pending'>
    """

    def __init__(self) -> None:
        self._attempts: dict[tuple[EntityType, str], MigrationAttempt] = {}

    def _put(
        self,
        entity_type: EntityType,
        legacy_id: LegacyKey,
        status: MigrationAttemptStatus,
        target_id: str | None = None,
        error: str | None = None,
    ) -> None:
        self._attempts[(entity_type, str(legacy_id))] = MigrationAttempt(
            entity_type=entity_type,
            legacy_id=legacy_id,
            status=status,
            attempted_at=datetime.now(UTC),
            target_id=target_id,
            error=error,
        )

    async def mark_pending(self, entity_type: EntityType, legacy_ids: Sequence[LegacyKey]) -> int:
        for legacy_id in legacy_ids:
            self._put(entity_type, legacy_id, MigrationAttemptStatus.PENDING)
        return len(legacy_ids)

    async def mark_succeeded(
        self,
        entity_type: EntityType,
        results: Sequence[tuple[LegacyKey, str]],
        notes: Mapping[LegacyKey, str] | None = None,
    ) -> int:
        notes = notes or {}
        for legacy_id, target_id in results:
            self._put(
                entity_type,
                legacy_id,
                MigrationAttemptStatus.SUCCEEDED,
                target_id=target_id,
                error=notes.get(legacy_id),
            )
        return len(results)

    async def mark_failed(
        self,
        entity_type: EntityType,
        failures: Sequence[tuple[LegacyKey, str]],
    ) -> int:
        for legacy_id, error in failures:
            self._put(entity_type, legacy_id, MigrationAttemptStatus.FAILED, error=error)
        return len(failures)

    async def get(self, entity_type: EntityType, legacy_id: LegacyKey) -> MigrationAttempt | None:
        return self._attempts.get((entity_type, str(legacy_id)))

    async def summary(self, entity_type: EntityType) -> dict[MigrationAttemptStatus, int]:
        counts: dict[MigrationAttemptStatus, int] = {}
        for (attempt_entity, _), attempt in self._attempts.items():
            if attempt_entity == entity_type:
                counts[attempt.status] = counts.get(attempt.status, 0) + 1
        return counts

    def clear(self) -> None:
        self._attempts.clear()


__all__ = [
    "MigrationAttemptRepository",
    "PostgreSQLMigrationAttemptRepository",
    "InMemoryMigrationAttemptRepository",
]
