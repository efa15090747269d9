"""
LegacyReader - read-only access to the legacy Django schema.

One SELECT per entity type, ordered by id, fully materialized in memory.
The reader never writes and has no side effects.

Legacy tables:
    auth_user, dispatch_patient, dispatch_office, dispatch_course,
    dispatch_instruction, dispatch_project, dispatch_state,
    dispatch_record, django_content_type

Failure to reach the database raises SourceUnavailableError, which is
fatal to the orchestrator run.

Usage:
    >>> reader = SQLAlchemyLegacyReader(create_async_engine(settings.legacy_database_url))
    >>> offices = await reader.fetch_all(EntityType.OFFICES)
    >>> counts = await reader.count_records()
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.exceptions import MigrationError, SourceUnavailableError
from legacymigrate.models import ContentType, EntityType, LegacyRecord
from legacymigrate.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ENTITY_TYPE,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from legacymigrate.repositories._connection import execute_with_connection

logger = logging.getLogger(__name__)

LEGACY_QUERIES: dict[EntityType, str] = {
    EntityType.PROFILES: """
        SELECT id, username, first_name, last_name, email,
               is_staff, is_active, is_superuser, date_joined, last_login
        FROM auth_user
        ORDER BY id
    """,
    EntityType.PATIENTS: """
        SELECT id, user_id, birthdate, sex, updated_at
        FROM dispatch_patient
        ORDER BY id
    """,
    EntityType.OFFICES: """
        SELECT id, name, address, apt, city, state, zip, phone, emails,
               sq_customer_id, created_at, updated_at
        FROM dispatch_office
        ORDER BY id
    """,
    EntityType.ORDER_TYPES: """
        SELECT id, name, description, category, is_active, created_at, updated_at
        FROM dispatch_course
        ORDER BY id
    """,
    EntityType.ORDERS: """
        SELECT id, patient_id, doctor_id, office_id, course_id, title,
               description, priority, subtotal, tax_amount, total_amount,
               currency, data, notes, created_at, updated_at,
               completed_at, cancelled_at
        FROM dispatch_instruction
        ORDER BY id
    """,
    EntityType.PROJECTS: """
        SELECT id, uid, name, size, type, status, creator_id, created_at, public
        FROM dispatch_project
        ORDER BY id
    """,
    EntityType.INSTRUCTION_STATES: """
        SELECT id, status, "on", changed_at, actor_id, instruction_id
        FROM dispatch_state
        ORDER BY id
    """,
    EntityType.MESSAGES: """
        SELECT id, content_type_id, object_id, subject, body, sender_id,
               recipient_id, is_read, read_at, requires_response,
               response_due_date, attachments, created_at, updated_at
        FROM dispatch_record
        ORDER BY id
    """,
}

RECORD_COUNT_TABLES: dict[str, str] = {
    "users": "auth_user",
    "patients": "dispatch_patient",
    "offices": "dispatch_office",
    "courses": "dispatch_course",
    "instructions": "dispatch_instruction",
    "projects": "dispatch_project",
    "states": "dispatch_state",
    "records": "dispatch_record",
}

# Distinct doctor/office pairs, ordered by the first instruction that links them
DOCTOR_OFFICE_QUERY = """
    SELECT doctor_id, office_id, MIN(id) AS first_instruction_id
    FROM dispatch_instruction
    WHERE doctor_id IS NOT NULL AND office_id IS NOT NULL
    GROUP BY doctor_id, office_id
    ORDER BY first_instruction_id
"""

CONTENT_TYPE_QUERY = """
    SELECT id, app_label, model
    FROM django_content_type
    ORDER BY id
"""


@runtime_checkable
class LegacyReader(Protocol):
    """Protocol for read-only access to the legacy schema."""

    async def fetch_all(self, entity_type: EntityType) -> Sequence[LegacyRecord]:
        """
        Read every legacy row for an entity type in one round trip.

        Raises:
            SourceUnavailableError: If the legacy database cannot be reached.
        """
        ...

    async def count_records(self) -> dict[str, int]:
        """Row counts of the legacy tables, keyed by short name."""
        ...

    async def get_doctor_office_relationships(self) -> list[tuple[int, int]]:
        """
        Distinct (doctor_id, office_id) pairs found on instructions.

        Ordered by the id of the first instruction linking each pair.
        """
        ...

    async def get_content_types(self) -> dict[int, ContentType]:
        """Django content types keyed by id."""
        ...

    async def check_connection(self) -> None:
        """
        Verify the legacy database is reachable.

        Raises:
            SourceUnavailableError: If it is not.
        """
        ...


class SQLAlchemyLegacyReader:
    """
    Legacy reader over a SQLAlchemy async engine (asyncpg in production).

    Example:
        >>> reader = SQLAlchemyLegacyReader(engine)
        >>> users = await reader.fetch_all(EntityType.PROFILES)
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def _query(self, sql: str, label: str) -> list[dict[str, Any]]:
        try:
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(text(sql))
                return [dict(row._mapping) for row in result.fetchall()]
        except (OperationalError, InterfaceError, OSError, TimeoutError) as e:
            raise SourceUnavailableError(str(e)) from e
        except SQLAlchemyError as e:
            raise MigrationError(f"Legacy query for {label} failed: {e}") from e

    async def fetch_all(self, entity_type: EntityType) -> Sequence[LegacyRecord]:
        sql = LEGACY_QUERIES.get(entity_type)
        if sql is None:
            raise ValueError(f"{entity_type.value} has no legacy source table")

        with self._tracer.span(
            "legacymigrate.legacy_reader.fetch_all",
            {
                ATTR_ENTITY_TYPE: entity_type.value,
                ATTR_DB_OPERATION: "SELECT",
                ATTR_DB_SYSTEM: "postgresql",
            },
        ) as span:
            try:
                rows = await self._query(sql, entity_type.value)
            except SourceUnavailableError as e:
                raise e.with_context(entity_type=entity_type) from e.__cause__
            if span is not None:
                span.set_attribute(ATTR_RECORD_COUNT, len(rows))

        logger.info("Retrieved %d legacy rows from %s", len(rows), entity_type.source_table)
        return rows

    async def count_records(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for name, table in RECORD_COUNT_TABLES.items():
            rows = await self._query(f"SELECT COUNT(*) AS count FROM {table}", name)  # nosec B608
            counts[name] = int(rows[0]["count"])
        return counts

    async def get_doctor_office_relationships(self) -> list[tuple[int, int]]:
        rows = await self._query(DOCTOR_OFFICE_QUERY, "doctor_office_relationships")
        return [(int(row["doctor_id"]), int(row["office_id"])) for row in rows]

    async def get_content_types(self) -> dict[int, ContentType]:
        rows = await self._query(CONTENT_TYPE_QUERY, "content_types")
        return {
            int(row["id"]): ContentType(
                id=int(row["id"]), app_label=row["app_label"], model=row["model"]
            )
            for row in rows
        }

    async def check_connection(self) -> None:
        await self._query("SELECT 1", "connection check")


class InMemoryLegacyReader:
    """
    Legacy reader serving fixed rows, for tests and dry runs.

    Example:
        >>> reader = InMemoryLegacyReader({
        ...     EntityType.OFFICES: [{"id": 1, "name": "A"}],
        ... })
        >>> await reader.fetch_all(EntityType.OFFICES)
        [{'id': 1, 'name': 'A'}]
    """

    def __init__(
        self,
        tables: Mapping[EntityType, Sequence[LegacyRecord]] | None = None,
        *,
        content_types: Mapping[int, ContentType] | None = None,
        available: bool = True,
    ) -> None:
        self._tables = {k: [dict(r) for r in v] for k, v in (tables or {}).items()}
        self._content_types = dict(content_types or {})
        self.available = available
        self.fetch_calls: list[EntityType] = []

    def _ensure_available(self) -> None:
        if not self.available:
            raise SourceUnavailableError("in-memory reader marked unavailable")

    async def fetch_all(self, entity_type: EntityType) -> Sequence[LegacyRecord]:
        self._ensure_available()
        self.fetch_calls.append(entity_type)
        return [dict(r) for r in sorted(self._tables.get(entity_type, []), key=lambda r: r["id"])]

    async def count_records(self) -> dict[str, int]:
        self._ensure_available()
        names = {
            EntityType.PROFILES: "users",
            EntityType.PATIENTS: "patients",
            EntityType.OFFICES: "offices",
            EntityType.ORDER_TYPES: "courses",
            EntityType.ORDERS: "instructions",
            EntityType.PROJECTS: "projects",
            EntityType.INSTRUCTION_STATES: "states",
            EntityType.MESSAGES: "records",
        }
        return {name: len(self._tables.get(et, [])) for et, name in names.items()}

    async def get_doctor_office_relationships(self) -> list[tuple[int, int]]:
        self._ensure_available()
        pairs: list[tuple[int, int]] = []
        for row in sorted(self._tables.get(EntityType.ORDERS, []), key=lambda r: r["id"]):
            doctor_id, office_id = row.get("doctor_id"), row.get("office_id")
            if doctor_id is None or office_id is None:
                continue
            if (doctor_id, office_id) not in pairs:
                pairs.append((doctor_id, office_id))
        return pairs

    async def get_content_types(self) -> dict[int, ContentType]:
        self._ensure_available()
        return dict(self._content_types)

    async def check_connection(self) -> None:
        self._ensure_available()


__all__ = [
    "LegacyReader",
    "SQLAlchemyLegacyReader",
    "InMemoryLegacyReader",
    "LEGACY_QUERIES",
    "RECORD_COUNT_TABLES",
]
