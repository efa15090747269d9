"""
TargetStore - table-oriented access to the Supabase/Postgres target schema.

The migration only needs a handful of operations against the target:
bulk inserts, single inserts for association rows, and the legacy-id
queries that drive lookup loading and post-validation.

Responsibilities:
    - Multi-row INSERT per batch, all or nothing
    - Client-side UUID assignment so ids are known without RETURNING
    - JSON serialization of settings/metadata/data columns
    - Legacy-id maps for the lookup index
    - Legacy-id counts for post-validation

Implementations:
    - PostgreSQLTargetStore: SQLAlchemy async engine or connection
    - InMemoryTargetStore: For tests; enforces unique keys and can inject failures

Usage:
    >>> store = PostgreSQLTargetStore(engine, schema="public")
    >>> ids = await store.insert_rows("offices", rows)
    >>> await store.count_with_legacy_id("offices", "legacy_office_id")
"""

from __future__ import annotations

import asyncio
import copy
import logging
import re
from collections.abc import Iterable, Sequence
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.exceptions import TargetUnavailableError
from legacymigrate.models import EntityType, LegacyKey
from legacymigrate.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    Tracer,
    create_tracer,
)
from legacymigrate.repositories._connection import execute_with_connection
from legacymigrate.serialization import json_dumps

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Association tables and their composite unique keys
RELATIONSHIP_UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "doctor_offices": ("doctor_id", "office_id"),
}


def _check_identifier(name: str) -> str:
    """Reject table/column names that are not plain identifiers."""
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


@runtime_checkable
class TargetStore(Protocol):
    """
    Protocol for the target database.

    Every row written through ``insert_rows``/``insert_row`` gets an
    ``id`` (a UUID string) if it does not carry one already.
    """

    async def insert_rows(self, table: str, rows: Sequence[dict[str, Any]]) -> list[str]:
        """
        Insert rows in a single call.

        Either every row is written or none is; the store raises on failure.

        Args:
            table: Target table name
            rows: Rows to insert

        Returns:
            Target ids of the inserted rows, in input order
        """
        ...

    async def insert_row(self, table: str, row: dict[str, Any]) -> str:
        """Insert one row and return its target id."""
        ...

    async def fetch_legacy_id_map(self, table: str, column: str) -> dict[LegacyKey, str]:
        """
        Map legacy id to target id for rows with a non-null legacy-id column.

        Args:
            table: Target table name
            column: Legacy-id (or reference key) column

        Returns:
            Dictionary of legacy id -> target id
        """
        ...

    async def count_with_legacy_id(self, table: str, column: str) -> int:
        """Count rows whose legacy-id column is not null."""
        ...

    async def fetch_rows(self, table: str, ids: Sequence[str]) -> list[dict[str, Any]]:
        """Fetch rows by target id (order not guaranteed)."""
        ...

    async def check_connection(self) -> None:
        """
        Verify the store is reachable.

        Raises:
            TargetUnavailableError: If it is not.
        """
        ...


def _assign_ids(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    prepared = []
    for row in rows:
        prepared_row = dict(row)
        if not prepared_row.get("id"):
            prepared_row["id"] = str(uuid4())
        prepared.append(prepared_row)
    return prepared


class PostgreSQLTargetStore:
    """
    Target store backed by a SQLAlchemy async engine.

    Works against PostgreSQL (asyncpg) in production. Column values that
    are dicts or lists are serialized to JSON text, which PostgreSQL casts
    into JSONB columns on insert.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> store = PostgreSQLTargetStore(engine, schema="public")
        >>> await store.insert_rows("offices", [{"name": "Main", "legacy_office_id": 1}])
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        *,
        schema: str | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            conn: Database connection or engine
            schema: Optional schema qualifier for table names
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn
        self._schema = _check_identifier(schema) if schema else None
        self._db_system = self._detect_db_system(conn)

    @staticmethod
    def _detect_db_system(conn: AsyncConnection | AsyncEngine) -> str:
        dialect = getattr(conn, "dialect", None)
        return getattr(dialect, "name", "postgresql")

    def _table(self, table: str) -> str:
        _check_identifier(table)
        return f"{self._schema}.{table}" if self._schema else table

    @staticmethod
    def _to_param(value: Any) -> Any:
        if isinstance(value, (dict, list)):
            return json_dumps(value)
        return value

    async def insert_rows(self, table: str, rows: Sequence[dict[str, Any]]) -> list[str]:
        """
        Insert rows with one multi-row INSERT inside a transaction.

        Rows may carry different key sets; missing columns are inserted
        as NULL.

        Args:
            table: Target table name
            rows: Rows to insert

        Returns:
            Target ids of the inserted rows, in input order
        """
        if not rows:
            return []

        prepared = _assign_ids(rows)
        columns: list[str] = []
        for row in prepared:
            for column in row:
                if column not in columns:
                    columns.append(_check_identifier(column))

        with self._tracer.span(
            "legacymigrate.target_store.insert_rows",
            {
                ATTR_DB_TABLE: table,
                ATTR_BATCH_SIZE: len(prepared),
                ATTR_DB_OPERATION: "INSERT",
                ATTR_DB_SYSTEM: self._db_system,
            },
        ):
            values_list: list[str] = []
            params: dict[str, Any] = {}
            for i, row in enumerate(prepared):
                placeholders = []
                for j, column in enumerate(columns):
                    key = f"p{i}_{j}"
                    placeholders.append(f":{key}")
                    params[key] = self._to_param(row.get(column))
                values_list.append(f"({', '.join(placeholders)})")

            # Identifiers are validated above; all values are bound parameters
            query = text(
                f"INSERT INTO {self._table(table)} ({', '.join(columns)}) "
                f"VALUES {', '.join(values_list)}"
            )  # nosec B608 - parameterized query construction

            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

            logger.debug("Inserted %d rows into %s", len(prepared), table)
            return [str(row["id"]) for row in prepared]

    async def insert_row(self, table: str, row: dict[str, Any]) -> str:
        ids = await self.insert_rows(table, [row])
        return ids[0]

    async def fetch_legacy_id_map(self, table: str, column: str) -> dict[LegacyKey, str]:
        _check_identifier(column)
        with self._tracer.span(
            "legacymigrate.target_store.fetch_legacy_id_map",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT", ATTR_DB_SYSTEM: self._db_system},
        ):
            query = text(
                f"SELECT {column}, id FROM {self._table(table)} WHERE {column} IS NOT NULL"
            )  # nosec B608 - validated identifiers

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query)
                rows = result.fetchall()

            return {row[0]: str(row[1]) for row in rows}

    async def count_with_legacy_id(self, table: str, column: str) -> int:
        _check_identifier(column)
        with self._tracer.span(
            "legacymigrate.target_store.count_with_legacy_id",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT", ATTR_DB_SYSTEM: self._db_system},
        ):
            query = text(
                f"SELECT COUNT(*) FROM {self._table(table)} WHERE {column} IS NOT NULL"
            )  # nosec B608 - validated identifiers

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query)
                return int(result.scalar_one())

    async def fetch_rows(self, table: str, ids: Sequence[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        with self._tracer.span(
            "legacymigrate.target_store.fetch_rows",
            {ATTR_DB_TABLE: table, ATTR_DB_OPERATION: "SELECT", ATTR_DB_SYSTEM: self._db_system},
        ):
            query = text(
                f"SELECT * FROM {self._table(table)} WHERE id IN :ids"
            ).bindparams(bindparam("ids", expanding=True))  # nosec B608 - validated identifiers

            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(query, {"ids": [str(i) for i in ids]})
                return [dict(row._mapping) for row in result.fetchall()]

    async def check_connection(self) -> None:
        try:
            async with execute_with_connection(self._conn, transactional=False) as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            raise TargetUnavailableError(str(e)) from e


class InMemoryTargetStore:
    """
    In-memory target store for testing.

    Enforces the unique keys the real schema has: every legacy-id column
    (ignoring NULLs) and the composite keys of association tables. Tests
    can make the next inserts fail to exercise retry and failure paths.

    Example:
        >>> store = InMemoryTargetStore()
        >>> await store.insert_rows("offices", [{"name": "A", "legacy_office_id": 1}])
        >>> store.rows("offices")[0]["name"]
        'A'
    """

    def __init__(self, *, available: bool = True) -> None:
        self._tables: dict[str, list[dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._failures: list[Exception] = []
        self._failing_tables: dict[str, Exception] = {}
        self.available = available
        self.insert_calls: list[tuple[str, int]] = []
        self._unique_keys: dict[str, list[tuple[str, ...]]] = {}
        for entity_type in EntityType:
            self._unique_keys.setdefault(entity_type.target_table, [])
            key = (entity_type.legacy_id_column,)
            if key not in self._unique_keys[entity_type.target_table]:
                self._unique_keys[entity_type.target_table].append(key)
        for table, key in RELATIONSHIP_UNIQUE_KEYS.items():
            self._unique_keys.setdefault(table, []).append(key)

    def fail_next_inserts(self, count: int, error: Exception | None = None) -> None:
        """Make the next ``count`` insert calls raise ``error``."""
        for _ in range(count):
            self._failures.append(error or RuntimeError("simulated insert failure"))

    def fail_table(self, table: str, error: Exception | None = None) -> None:
        """Make every insert into ``table`` raise ``error``."""
        self._failing_tables[table] = error or RuntimeError(f"simulated failure on {table}")

    def rows(self, table: str) -> list[dict[str, Any]]:
        """Copies of the rows stored for ``table``."""
        return [dict(row) for row in self._tables.get(table, [])]

    def seed(self, table: str, rows: Iterable[dict[str, Any]]) -> list[str]:
        """Insert rows directly, bypassing failure injection."""
        prepared = _assign_ids(rows)
        self._tables.setdefault(table, []).extend(prepared)
        return [row["id"] for row in prepared]

    def _check_unique(self, table: str, rows: Sequence[dict[str, Any]]) -> None:
        existing = self._tables.get(table, [])
        for key in self._unique_keys.get(table, []):
            seen = {
                tuple(row.get(c) for c in key)
                for row in existing
                if all(row.get(c) is not None for c in key)
            }
            for row in rows:
                value = tuple(row.get(c) for c in key)
                if any(v is None for v in value):
                    continue
                if value in seen:
                    raise ValueError(
                        f"duplicate key value violates unique constraint on {table}{key}"
                    )
                seen.add(value)

    async def insert_rows(self, table: str, rows: Sequence[dict[str, Any]]) -> list[str]:
        if not rows:
            return []
        async with self._lock:
            self.insert_calls.append((table, len(rows)))
            if self._failures:
                raise self._failures.pop(0)
            if table in self._failing_tables:
                raise self._failing_tables[table]
            prepared = [copy.deepcopy(row) for row in _assign_ids(rows)]
            self._check_unique(table, prepared)
            self._tables.setdefault(table, []).extend(prepared)
            return [row["id"] for row in prepared]

    async def insert_row(self, table: str, row: dict[str, Any]) -> str:
        ids = await self.insert_rows(table, [row])
        return ids[0]

    async def fetch_legacy_id_map(self, table: str, column: str) -> dict[LegacyKey, str]:
        return {
            row[column]: row["id"]
            for row in self._tables.get(table, [])
            if row.get(column) is not None
        }

    async def count_with_legacy_id(self, table: str, column: str) -> int:
        return sum(1 for row in self._tables.get(table, []) if row.get(column) is not None)

    async def fetch_rows(self, table: str, ids: Sequence[str]) -> list[dict[str, Any]]:
        wanted = set(ids)
        return [dict(row) for row in self._tables.get(table, []) if row["id"] in wanted]

    async def check_connection(self) -> None:
        if not self.available:
            raise TargetUnavailableError("in-memory store marked unavailable")


__all__ = [
    "TargetStore",
    "PostgreSQLTargetStore",
    "InMemoryTargetStore",
    "RELATIONSHIP_UNIQUE_KEYS",
]
