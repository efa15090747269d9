"""
BatchWriter and RelationshipStitcher - the write side of a migration run.

BatchWriter:
    Submits one batch of valid mappings as a single bulk insert. The
    caller controls batch size; the writer never splits. A rejected call
    is retried with exponential backoff (bounded by the run's RetryConfig).
    If every attempt fails, every record in the batch is reported failed
    with the store's error message: the batch is atomic on failure.

RelationshipStitcher:
    Writes one association row (e.g. doctor_offices) after its primary
    record was written. A failure is returned, never raised, and the
    primary record is not rolled back.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from legacymigrate.exceptions import (
    BatchWriteError,
    ErrorHandler,
    MigrationError,
    RelationshipWriteError,
    RetryConfig,
)
from legacymigrate.models import (
    BatchResult,
    EntityType,
    LegacyKey,
    MappingResult,
    RelationshipRecord,
    WriteFailure,
    WriteSuccess,
)
from legacymigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_DB_TABLE,
    ATTR_ENTITY_TYPE,
    ATTR_RETRY_COUNT,
    Tracer,
    create_tracer,
)
from legacymigrate.targets.store import TargetStore

logger = logging.getLogger(__name__)


class BatchWriter:
    """
    Writes batches of mapped records to the target store.

    Example:
        >>> writer = BatchWriter(store, retry_config=config.retry_config)
        >>> result = await writer.write_batch(EntityType.OFFICES, mappings, batch_number=1)
        >>> len(result.successful), len(result.failed)
        (100, 0)
    """

    def __init__(
        self,
        store: TargetStore,
        *,
        retry_config: RetryConfig | None = None,
        error_handler: ErrorHandler | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the writer.

        Args:
            store: Target store to insert into.
            retry_config: Backoff policy for rejected inserts. Defaults to
                BatchWriteError's classification policy.
            error_handler: Retry executor (one is created if not given).
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._store = store
        self._retry_config = retry_config
        self._error_handler = error_handler or ErrorHandler()

    async def write_batch(
        self,
        entity_type: EntityType,
        mappings: Sequence[MappingResult],
        batch_number: int,
    ) -> BatchResult:
        """
        Insert the target rows of ``mappings`` with one call per attempt.

        Args:
            entity_type: Entity being written (selects the target table).
            mappings: Valid mappings to write.
            batch_number: 1-based batch number, for reporting.

        Returns:
            BatchResult with every mapping either successful or failed.
        """
        result = BatchResult(batch_number=batch_number)
        if not mappings:
            return result

        table = entity_type.target_table
        rows = [dict(m.target) for m in mappings]
        attempts = 0
        start = time.monotonic()

        async def insert() -> list[str]:
            nonlocal attempts
            attempts += 1
            try:
                return await self._store.insert_rows(table, rows)
            except MigrationError:
                raise
            except Exception as e:
                raise BatchWriteError(table, len(rows), str(e), entity_type=entity_type) from e

        with self._tracer.span(
            "legacymigrate.batch_writer.write_batch",
            {
                ATTR_ENTITY_TYPE: entity_type.value,
                ATTR_DB_TABLE: table,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_BATCH_SIZE: len(rows),
            },
        ) as span:
            try:
                ids = await self._error_handler.execute_with_retry(
                    insert,
                    operation_name=f"{entity_type.value}.write_batch",
                    retry_config=self._retry_config,
                )
            except MigrationError as e:
                error = e.original_error if isinstance(e, BatchWriteError) else e.message
                logger.error(
                    "Batch %d of %s failed after %d attempt(s): %s",
                    batch_number,
                    entity_type.value,
                    attempts,
                    error,
                )
                result.failed = [
                    WriteFailure(mapping=m, error=error, retry_count=attempts - 1)
                    for m in mappings
                ]
            else:
                result.successful = [
                    WriteSuccess(mapping=m, target_id=target_id)
                    for m, target_id in zip(mappings, ids, strict=True)
                ]
            if span is not None:
                span.set_attribute(ATTR_RETRY_COUNT, attempts - 1)

        result.duration_ms = (time.monotonic() - start) * 1000
        return result


@dataclass(frozen=True)
class RelationshipOutcome:
    """Result of writing one association row."""

    success: bool
    relationship: RelationshipRecord
    target_id: str | None = None
    error: str | None = None
    failure: RelationshipWriteError | None = None


class RelationshipStitcher:
    """
    Creates association rows once both endpoints exist.

    Example:
        >>> stitcher = RelationshipStitcher(store)
        >>> outcome = await stitcher.create_relationship(
        ...     RelationshipRecord("doctor_offices", {"doctor_id": d, "office_id": o}),
        ... )
        >>> outcome.success
        True
    """

    def __init__(
        self,
        store: TargetStore,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._store = store

    async def create_relationship(
        self,
        relationship: RelationshipRecord,
        *,
        record_id: LegacyKey | None = None,
    ) -> RelationshipOutcome:
        """
        Insert one association row.

        Args:
            relationship: Table and column values, both endpoints resolved.
            record_id: Legacy id of the owning record, for error reporting.

        Returns:
            RelationshipOutcome; failures carry the store's error message.
        """
        with self._tracer.span(
            "legacymigrate.relationship_stitcher.create_relationship",
            {ATTR_DB_TABLE: relationship.table},
        ):
            try:
                target_id = await self._store.insert_row(
                    relationship.table, dict(relationship.values)
                )
            except Exception as e:
                failure = RelationshipWriteError(relationship.table, str(e), record_id=record_id)
                logger.warning("%s (values=%s)", failure, relationship.values)
                return RelationshipOutcome(
                    success=False, relationship=relationship, error=str(e), failure=failure
                )

            return RelationshipOutcome(success=True, relationship=relationship, target_id=target_id)


__all__ = [
    "BatchWriter",
    "RelationshipOutcome",
    "RelationshipStitcher",
]
