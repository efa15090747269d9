"""
EmbeddingQueue - append-only queue of rows awaiting embedding.

Migrators enqueue ``(source_table, source_id, operation)`` for every
embeddable row they write. The embedding pipeline, a separate and
optional run, consumes pending items and marks each one completed,
skipped or failed.

Database Table:
    embedding_queue (id, source_table, source_id, operation, status,
    document_id, error, created_at, processed_at)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from legacymigrate.observability import (
    ATTR_DB_SYSTEM,
    ATTR_RECORD_COUNT,
    ATTR_SOURCE_TABLE,
    Tracer,
    create_tracer,
)
from legacymigrate.repositories._connection import execute_with_connection


class EmbeddingQueueStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class EmbeddingQueueItem:
    """
    One queued embedding request.

    Attributes:
        id: Queue item id.
        source_table: Target table of the row to embed (e.g. ``messages``).
        source_id: Target id of the row.
        operation: ``insert``, ``update`` or ``delete``.
        status: Processing state.
        created_at: When the item was queued.
        document_id: Provider document (or stored vector) id once completed.
        error: Failure or skip reason.
    """

    id: str
    source_table: str
    source_id: str
    operation: str
    status: EmbeddingQueueStatus
    created_at: datetime
    document_id: str | None = None
    error: str | None = None


@runtime_checkable
class EmbeddingQueue(Protocol):
    """Protocol for the embedding queue."""

    async def enqueue(self, source_table: str, source_id: str, operation: str = "insert") -> str:
        """Queue one row; returns the queue item id."""
        ...

    async def enqueue_many(
        self,
        source_table: str,
        source_ids: Sequence[str],
        operation: str = "insert",
    ) -> int:
        """Queue several rows of one table; returns the number queued."""
        ...

    async def fetch_pending(self, limit: int = 100) -> list[EmbeddingQueueItem]:
        """Oldest pending items first."""
        ...

    async def mark_completed(self, item_id: str, document_id: str | None) -> None:
        ...

    async def mark_skipped(self, item_id: str, reason: str) -> None:
        ...

    async def mark_failed(self, item_id: str, error: str) -> None:
        ...


def _timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class PostgreSQLEmbeddingQueue:
    """PostgreSQL implementation of EmbeddingQueue."""

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ):
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._conn = conn

    async def enqueue(self, source_table: str, source_id: str, operation: str = "insert") -> str:
        item_id = str(uuid4())
        await self._insert(source_table, [(item_id, source_id)], operation)
        return item_id

    async def enqueue_many(
        self,
        source_table: str,
        source_ids: Sequence[str],
        operation: str = "insert",
    ) -> int:
        if not source_ids:
            return 0
        await self._insert(
            source_table, [(str(uuid4()), source_id) for source_id in source_ids], operation
        )
        return len(source_ids)

    async def _insert(
        self,
        source_table: str,
        items: Sequence[tuple[str, str]],
        operation: str,
    ) -> None:
        with self._tracer.span(
            "legacymigrate.embedding_queue.enqueue",
            {
                ATTR_SOURCE_TABLE: source_table,
                ATTR_RECORD_COUNT: len(items),
                ATTR_DB_SYSTEM: "postgresql",
            },
        ):
            query = text("""
                INSERT INTO embedding_queue (
                    id, source_table, source_id, operation, status, created_at
                ) VALUES (
                    :id, :source_table, :source_id, :operation, :status, :created_at
                )
            """)
            now = datetime.now(UTC)
            params = [
                {
                    "id": item_id,
                    "source_table": source_table,
                    "source_id": source_id,
                    "operation": operation,
                    "status": EmbeddingQueueStatus.PENDING.value,
                    "created_at": now,
                }
                for item_id, source_id in items
            ]
            async with execute_with_connection(self._conn, transactional=True) as conn:
                await conn.execute(query, params)

    async def fetch_pending(self, limit: int = 100) -> list[EmbeddingQueueItem]:
        with self._tracer.span(
            "legacymigrate.embedding_queue.fetch_pending",
            {ATTR_DB_SYSTEM: "postgresql"},
        ):
            query = text("""
                SELECT id, source_table, source_id, operation, status,
                       created_at, document_id, error
                FROM embedding_queue
                WHERE status = :status
                ORDER BY created_at, id
                LIMIT :limit
            """)
            async with execute_with_connection(self._conn, transactional=False) as conn:
                result = await conn.execute(
                    query, {"status": EmbeddingQueueStatus.PENDING.value, "limit": limit}
                )
                rows = result.fetchall()

            return [
                EmbeddingQueueItem(
                    id=str(row[0]),
                    source_table=row[1],
                    source_id=str(row[2]),
                    operation=row[3],
                    status=EmbeddingQueueStatus(row[4]),
                    created_at=_timestamp(row[5]),
                    document_id=row[6],
                    error=row[7],
                )
                for row in rows
            ]

    async def _finish(
        self,
        item_id: str,
        status: EmbeddingQueueStatus,
        document_id: str | None = None,
        error: str | None = None,
    ) -> None:
        query = text("""
            UPDATE embedding_queue
            SET status = :status, document_id = :document_id,
                error = :error, processed_at = :processed_at
            WHERE id = :id
        """)
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(
                query,
                {
                    "id": item_id,
                    "status": status.value,
                    "document_id": document_id,
                    "error": error,
                    "processed_at": datetime.now(UTC),
                },
            )

    async def mark_completed(self, item_id: str, document_id: str | None) -> None:
        await self._finish(item_id, EmbeddingQueueStatus.COMPLETED, document_id=document_id)

    async def mark_skipped(self, item_id: str, reason: str) -> None:
        await self._finish(item_id, EmbeddingQueueStatus.SKIPPED, error=reason)

    async def mark_failed(self, item_id: str, error: str) -> None:
        await self._finish(item_id, EmbeddingQueueStatus.FAILED, error=error)


class InMemoryEmbeddingQueue:
    """In-memory implementation of EmbeddingQueue for testing."""

    def __init__(self) -> None:
        self._items: dict[str, EmbeddingQueueItem] = {}

    @property
    def items(self) -> list[EmbeddingQueueItem]:
        return list(self._items.values())

    async def enqueue(self, source_table: str, source_id: str, operation: str = "insert") -> str:
        item = EmbeddingQueueItem(
            id=str(uuid4()),
            source_table=source_table,
            source_id=source_id,
            operation=operation,
            status=EmbeddingQueueStatus.PENDING,
            created_at=datetime.now(UTC),
        )
        self._items[item.id] = item
        return item.id

    async def enqueue_many(
        self,
        source_table: str,
        source_ids: Sequence[str],
        operation: str = "insert",
    ) -> int:
        for source_id in source_ids:
            await self.enqueue(source_table, source_id, operation)
        return len(source_ids)

    async def fetch_pending(self, limit: int = 100) -> list[EmbeddingQueueItem]:
        pending = [i for i in self._items.values() if i.status == EmbeddingQueueStatus.PENDING]
        return pending[:limit]

    async def mark_completed(self, item_id: str, document_id: str | None) -> None:
        self._items[item_id] = replace(
            self._items[item_id], status=EmbeddingQueueStatus.COMPLETED, document_id=document_id
        )

    async def mark_skipped(self, item_id: str, reason: str) -> None:
        self._items[item_id] = replace(
            self._items[item_id], status=EmbeddingQueueStatus.SKIPPED, error=reason
        )

    async def mark_failed(self, item_id: str, error: str) -> None:
        self._items[item_id] = replace(
            self._items[item_id], status=EmbeddingQueueStatus.FAILED, error=error
        )


__all__ = [
    "EmbeddingQueue",
    "EmbeddingQueueItem",
    "EmbeddingQueueStatus",
    "PostgreSQLEmbeddingQueue",
    "InMemoryEmbeddingQueue",
]
