"""
MigrationOrchestrator - sequences one entity type's migration.

Phases (see MigrationPhase):
    VALIDATING        both stores reachable (fatal otherwise)
    BUILDING_LOOKUPS  load already-migrated ids for the entity itself and
                      every entity it references; seed reference data
    FETCHING          read every legacy row for the entity
    per batch:
        ENHANCING     attach legacy data the transformer needs
        TRANSFORMING  map records; invalid ones are counted failed
        WRITING       bulk insert, register new ids in the lookup index
        STITCHING     association rows for records that were written
    POST_VALIDATING   target legacy-id count must match the run's count
    DONE

Any unrecovered exception moves the run to FAILED and is re-raised as a
MigrationError carrying the entity, phase and migration id. Statistics
are frozen on both paths and written to the migration log.

Records already present in the target (found while loading the entity's
own lookup) are skipped, so rerunning a migrator resumes it.

Usage:
    >>> migrator = OfficesMigrator(reader, store, config=MigratorConfig(batch_size=50))
    >>> result = await migrator.run()
    >>> result.stats.created
    120
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from abc import ABC
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from legacymigrate.config import MigratorConfig
from legacymigrate.embeddings.queue import EmbeddingQueue
from legacymigrate.exceptions import (
    ErrorHandler,
    MigrationError,
    RelationshipWriteError,
    ValidationMismatchError,
)
from legacymigrate.lookup import IdLookupIndex, LookupLoader
from legacymigrate.models import (
    BatchResult,
    EntityType,
    LegacyKey,
    LegacyRecord,
    MappingResult,
    MigrationLogEntry,
    MigrationPhase,
    MigrationRunResult,
    MigrationStats,
    ReadinessReport,
    WriteSuccess,
)
from legacymigrate.observability import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_ENTITY_TYPE,
    ATTR_MIGRATION_ID,
    ATTR_RECORD_COUNT,
    Tracer,
    create_tracer,
)
from legacymigrate.progress import ProgressCallback, ProgressTracker
from legacymigrate.repositories.attempts import MigrationAttemptRepository
from legacymigrate.repositories.migration_log import MigrationLogRepository
from legacymigrate.sources.legacy import LegacyReader
from legacymigrate.targets.store import TargetStore
from legacymigrate.targets.writer import BatchWriter, RelationshipStitcher
from legacymigrate.transformers.base import EntityTransformer, TransformContext

logger = logging.getLogger(__name__)

# Keys of LegacyReader.count_records() per source entity
LEGACY_COUNT_KEYS: dict[EntityType, str] = {
    EntityType.PROFILES: "users",
    EntityType.PATIENTS: "patients",
    EntityType.OFFICES: "offices",
    EntityType.ORDER_TYPES: "courses",
    EntityType.ORDERS: "instructions",
    EntityType.PROJECTS: "projects",
    EntityType.INSTRUCTION_STATES: "states",
    EntityType.MESSAGES: "records",
}


class RateLimiter:
    """
    Simple token bucket rate limiter for controlling record throughput.

    Limits the rate of records processed per second using a token bucket
    algorithm. Tokens are refilled based on elapsed time.

    Attributes:
        _max_rate: Maximum records allowed per second.
        _tokens: Current available tokens.
        _last_update: Time of last token update.
        _lock: Async lock for thread-safe operation.
    """

    def __init__(self, max_rate: int) -> None:
        """
        Initialize rate limiter.

        Args:
            max_rate: Maximum records per second (0 disables limiting).
        """
        self._max_rate = max_rate
        self._tokens = float(max_rate)
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._max_rate > 0

    async def wait(self, count: int) -> None:
        """
        Wait for capacity to process `count` records.

        If insufficient tokens are available, sleeps until enough
        tokens have been accumulated.

        Args:
            count: Number of records to process.
        """
        if self._max_rate <= 0:
            return  # No rate limiting

        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            # Add tokens based on time elapsed
            self._tokens = min(
                self._max_rate,
                self._tokens + elapsed * self._max_rate,
            )

            # Wait if we need more tokens
            if count > self._tokens:
                wait_time = (count - self._tokens) / self._max_rate
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= count


class MigrationOrchestrator(ABC):
    """
    Base class for per-entity migrators.

    Subclasses declare:
        entity_type: Entity written by this migrator.
        source_entity: Legacy entity read (defaults to entity_type).
        transformer: EntityTransformer mapping legacy rows.
        required_lookups: Entities that must already be migrated.
        optional_lookups: Entities loaded if present, not required.
        embeddable: Queue written rows for embedding.
        validation_tolerance: Allowed relative post-validation mismatch.
        distribution_fields: Target fields whose values are counted.

    and may override the hooks ``prepare``, ``load_enhancements``,
    ``enhance`` and ``after_write``.

    Example:
        >>> class CoursesMigrator(MigrationOrchestrator):
        ...     entity_type = EntityType.ORDER_TYPES
        ...     transformer = OrderTypeTransformer()
    """

    entity_type: ClassVar[EntityType]
    source_entity: ClassVar[EntityType | None] = None
    transformer: ClassVar[EntityTransformer]
    required_lookups: ClassVar[tuple[EntityType, ...]] = ()
    optional_lookups: ClassVar[tuple[EntityType, ...]] = ()
    embeddable: ClassVar[bool] = False
    validation_tolerance: ClassVar[float] = 0.0
    distribution_fields: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        legacy: LegacyReader,
        target: TargetStore,
        *,
        config: MigratorConfig | None = None,
        lookups: IdLookupIndex | None = None,
        attempts: MigrationAttemptRepository | None = None,
        migration_log: MigrationLogRepository | None = None,
        embedding_queue: EmbeddingQueue | None = None,
        progress_callbacks: Sequence[ProgressCallback] = (),
        transform_options: dict[str, Any] | None = None,
        error_handler: ErrorHandler | None = None,
        migration_id: UUID | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the migrator.

        Args:
            legacy: Reader for the legacy database.
            target: Target store.
            config: Per-run configuration (defaults to MigratorConfig()).
            lookups: Lookup index to share with other migrators of the same run.
            attempts: Write-ahead attempt markers (used when config.record_attempts).
            migration_log: Per-run log (optional).
            embedding_queue: Queue for embeddable rows (optional).
            progress_callbacks: Receive MigrationProgress snapshots.
            transform_options: Transformer-specific switches.
            error_handler: Retry executor for batch writes.
            migration_id: Run id (generated if not given).
            tracer: Optional custom Tracer instance.
            enable_tracing: Whether to enable OpenTelemetry tracing.
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self.legacy = legacy
        self.target = target
        self.config = config or MigratorConfig()
        self.lookups = lookups if lookups is not None else IdLookupIndex()
        self.migration_id = migration_id or uuid4()
        self._loader = LookupLoader(target)
        self._attempts = attempts
        self._migration_log = migration_log
        self._embedding_queue = embedding_queue
        self._progress_callbacks = list(progress_callbacks)
        self._transform_options = dict(transform_options or {})
        self._writer = BatchWriter(
            target,
            retry_config=self.config.retry_config,
            error_handler=error_handler,
            tracer=self._tracer,
        )
        self._stitcher = RelationshipStitcher(target, tracer=self._tracer)
        self._rate_limiter = RateLimiter(self.config.max_records_per_second)
        self.stats = MigrationStats(entity_type=self.entity_type)
        self.result: MigrationRunResult | None = None
        self.relationship_failures: list[RelationshipWriteError] = []
        self._tracker = ProgressTracker(
            self.migration_id, self.entity_type, callbacks=self._progress_callbacks
        )

    @property
    def source(self) -> EntityType:
        return self.source_entity or self.entity_type

    @property
    def name(self) -> str:
        return self.entity_type.value

    @property
    def phase(self) -> MigrationPhase:
        return self._tracker.phase

    # =========================================================================
    # Hooks
    # =========================================================================

    async def prepare(self) -> None:
        """Seed reference data the entity depends on (runs after lookups load)."""

    async def load_enhancements(self, records: Sequence[LegacyRecord]) -> None:
        """Read extra legacy data needed by ``enhance`` (runs once, after FETCHING)."""

    async def enhance(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach derived fields to a batch of legacy records."""
        return records

    async def after_write(self, successes: Sequence[WriteSuccess]) -> None:
        """React to written records (e.g. register secondary lookups)."""

    async def seed_reference_data(
        self,
        entity_type: EntityType,
        rows: Sequence[dict[str, Any]],
    ) -> int:
        """
        Insert the reference rows whose key is not in the target yet.

        Expects ``entity_type``'s lookup to be loaded. Inserted rows are
        registered under their key.

        Returns:
            Number of rows inserted.
        """
        key_column = entity_type.legacy_id_column
        missing = [r for r in rows if not self.lookups.contains(entity_type, r[key_column])]
        if not missing:
            return 0
        ids = await self.target.insert_rows(entity_type.target_table, missing)
        for row, target_id in zip(missing, ids, strict=True):
            self.lookups.register(entity_type, row[key_column], target_id)
        logger.info("Seeded %d %s rows", len(missing), entity_type.target_table)
        return len(missing)

    def distribution_keys(self, mapping: MappingResult) -> dict[str, str]:
        """Distribution buckets a written record falls into."""
        return {
            field_name: str(mapping.target.get(field_name))
            for field_name in self.distribution_fields
        }

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self) -> MigrationRunResult:
        """
        Execute the migration.

        Returns:
            MigrationRunResult with final phase DONE.

        Raises:
            MigrationError: On any unrecovered failure, including a
                post-validation mismatch. ``self.result`` then holds the
                FAILED result with the frozen statistics.
        """
        logger.info(
            "Starting %s migration %s (batch_size=%d, max_retries=%d)",
            self.name,
            self.migration_id,
            self.config.batch_size,
            self.config.max_retries,
        )

        with self._tracer.span(
            "legacymigrate.orchestrator.run",
            {ATTR_ENTITY_TYPE: self.name, ATTR_MIGRATION_ID: str(self.migration_id)},
        ) as span:
            try:
                await self._run_phases()
            except Exception as e:
                error = self._as_migration_error(e)
                self._tracker.fail(error)
                snapshot = self.stats.freeze()
                self.result = MigrationRunResult(
                    migration_id=self.migration_id,
                    entity_type=self.entity_type,
                    stats=snapshot,
                    final_phase=MigrationPhase.FAILED,
                    error=str(error),
                )
                await self._record_log(self.result, error)
                if error is e:
                    raise
                raise error from e

            snapshot = self.stats.freeze()
            if span is not None:
                span.set_attribute(ATTR_RECORD_COUNT, snapshot.created)

        self.result = MigrationRunResult(
            migration_id=self.migration_id,
            entity_type=self.entity_type,
            stats=snapshot,
            final_phase=MigrationPhase.DONE,
        )
        logger.info(
            "%s migration completed: %d total, %d created, %d skipped, %d failed, "
            "%d relationships (%d failed), success rate %.2f%%, %.0fms",
            self.name,
            snapshot.total,
            snapshot.created,
            snapshot.skipped,
            snapshot.failed,
            snapshot.relationships_created,
            snapshot.relationships_failed,
            snapshot.success_rate,
            snapshot.duration_ms,
            extra={"migration_stats": snapshot.to_dict()},
        )
        await self._record_log(self.result, None)
        return self.result

    async def _run_phases(self) -> None:
        self._tracker.start_phase(MigrationPhase.VALIDATING)
        await self.legacy.check_connection()
        await self.target.check_connection()

        self._tracker.start_phase(MigrationPhase.BUILDING_LOOKUPS)
        await self._loader.ensure(
            self.lookups,
            (self.entity_type, *self.required_lookups, *self.optional_lookups),
        )
        await self.prepare()

        self._tracker.start_phase(MigrationPhase.FETCHING)
        records = list(await self.legacy.fetch_all(self.source))
        self.stats.total = len(records)

        pending = [r for r in records if not self.lookups.contains(self.entity_type, r["id"])]
        skipped = len(records) - len(pending)
        if skipped:
            self.stats.skipped += skipped
            self._tracker.record_skipped(skipped)
            logger.info("%s: skipping %d already migrated records", self.name, skipped)

        batch_size = self.config.batch_size
        total_batches = math.ceil(len(pending) / batch_size)
        self._tracker.set_total(len(records), total_batches)
        logger.info(
            "%s: %d legacy records, %d to migrate in %d batches",
            self.name,
            len(records),
            len(pending),
            total_batches,
        )

        if pending:
            await self.load_enhancements(records)

        context = TransformContext(
            lookups=self.lookups,
            migrated_at=self.stats.started_at,
            validate_data=self.config.validate_data,
            options=self._transform_options,
        )

        for index in range(total_batches):
            batch = pending[index * batch_size : (index + 1) * batch_size]
            await self._process_batch(batch, index + 1, total_batches, context)
            if index + 1 < total_batches:
                await self._rate_limiter.wait(len(batch))

        self._tracker.start_phase(MigrationPhase.POST_VALIDATING)
        await self._post_validate()
        self._tracker.complete()

    async def _process_batch(
        self,
        batch: Sequence[LegacyRecord],
        batch_number: int,
        total_batches: int,
        context: TransformContext,
    ) -> BatchResult:
        with self._tracer.span(
            "legacymigrate.orchestrator.batch",
            {
                ATTR_ENTITY_TYPE: self.name,
                ATTR_BATCH_NUMBER: batch_number,
                ATTR_BATCH_SIZE: len(batch),
            },
        ):
            self._tracker.start_phase(MigrationPhase.ENHANCING)
            enhanced = await self.enhance([dict(r) for r in batch])

            self._tracker.start_phase(MigrationPhase.TRANSFORMING)
            valid = await self._transform(enhanced, context)

            self._tracker.start_phase(MigrationPhase.WRITING)
            if valid and self._recording_attempts:
                await self._attempts.mark_pending(  # type: ignore[union-attr]
                    self.entity_type, [m.legacy_id for m in valid]
                )
            result = await self._writer.write_batch(self.entity_type, valid, batch_number)
            await self._handle_write_result(result)

            if self.config.create_relationships and any(
                s.mapping.relationships for s in result.successful
            ):
                self._tracker.start_phase(MigrationPhase.STITCHING)
                await self._stitch(result.successful)

            self._tracker.record_batch(result, total_batches)
            return result

    async def _transform(
        self,
        records: Sequence[LegacyRecord],
        context: TransformContext,
    ) -> list[MappingResult]:
        valid: list[MappingResult] = []
        rejected: list[tuple[Any, str]] = []

        for record in records:
            mapping = self.transformer.transform(record, context)
            self.stats.unresolved_foreign_keys += mapping.unresolved_foreign_keys
            self.stats.warnings += len(mapping.warnings)
            for warning in mapping.warnings:
                logger.warning("%s %s: %s", self.name, mapping.legacy_id, warning)

            if mapping.is_valid:
                valid.append(mapping)
            else:
                self.stats.failed += 1
                rejected.append((mapping.legacy_id, mapping.error_message))
                logger.warning(
                    "%s %s failed validation: %s",
                    self.name,
                    mapping.legacy_id,
                    mapping.error_message,
                )

        if rejected and self._recording_attempts:
            await self._attempts.mark_failed(self.entity_type, rejected)  # type: ignore[union-attr]
        return valid

    async def _handle_write_result(self, result: BatchResult) -> None:
        self.stats.created += len(result.successful)
        self.stats.failed += len(result.failed)

        for success in result.successful:
            self.lookups.register(self.entity_type, success.mapping.legacy_id, success.target_id)
            for name, key in self.distribution_keys(success.mapping).items():
                self.stats.count(name, key)

        if self._recording_attempts:
            if result.successful:
                await self._attempts.mark_succeeded(  # type: ignore[union-attr]
                    self.entity_type,
                    [(s.mapping.legacy_id, s.target_id) for s in result.successful],
                )
            if result.failed:
                await self._attempts.mark_failed(  # type: ignore[union-attr]
                    self.entity_type,
                    [(f.mapping.legacy_id, f.error) for f in result.failed],
                )

        if result.successful:
            await self.after_write(result.successful)
            await self._enqueue_embeddings(result.successful)

    async def _stitch(self, successes: Sequence[WriteSuccess]) -> None:
        failed_links: dict[LegacyKey, list[str]] = {}
        for success in successes:
            mapping = success.mapping
            for pending in mapping.relationships:
                outcome = await self._stitcher.create_relationship(
                    pending.bind(success.target_id), record_id=mapping.legacy_id
                )
                if outcome.success:
                    self.stats.relationships_created += 1
                    continue
                self.stats.relationships_failed += 1
                self.stats.warnings += 1
                warning = f"{outcome.relationship.table}: {outcome.error}"
                mapping.warnings.append(warning)
                failed_links.setdefault(mapping.legacy_id, []).append(warning)
                if outcome.failure is not None:
                    self.relationship_failures.append(outcome.failure)

        # the primary row stays SUCCEEDED; the marker keeps the failed link
        if failed_links and self._recording_attempts:
            await self._attempts.mark_succeeded(  # type: ignore[union-attr]
                self.entity_type,
                [
                    (s.mapping.legacy_id, s.target_id)
                    for s in successes
                    if s.mapping.legacy_id in failed_links
                ],
                notes={key: "; ".join(found) for key, found in failed_links.items()},
            )

    async def _enqueue_embeddings(self, successes: Sequence[WriteSuccess]) -> None:
        if not self.embeddable or self._embedding_queue is None:
            return
        try:
            await self._embedding_queue.enqueue_many(
                self.entity_type.target_table, [s.target_id for s in successes], "insert"
            )
        except Exception as e:
            logger.warning("%s: failed to queue %d rows for embedding: %s", self.name, len(successes), e)

    async def _post_validate(self) -> None:
        actual = await self.target.count_with_legacy_id(
            self.entity_type.target_table, self.entity_type.legacy_id_column
        )
        expected = self.stats.created + self.stats.skipped
        allowed = math.floor(expected * self.validation_tolerance)
        if abs(actual - expected) > allowed:
            raise ValidationMismatchError(self.entity_type, expected, actual)
        logger.info(
            "%s: post-validation passed (%d rows with %s)",
            self.name,
            actual,
            self.entity_type.legacy_id_column,
        )

    @property
    def _recording_attempts(self) -> bool:
        return self.config.record_attempts and self._attempts is not None

    def _as_migration_error(self, error: Exception) -> MigrationError:
        phase = self._tracker.phase
        if isinstance(error, MigrationError):
            return error.with_context(
                entity_type=self.entity_type, phase=phase, migration_id=self.migration_id
            )
        return MigrationError(
            f"{self.name} migration failed during {phase.value}: {error}",
            entity_type=self.entity_type,
            phase=phase,
            migration_id=self.migration_id,
        )

    async def _record_log(self, result: MigrationRunResult, error: MigrationError | None) -> None:
        if self._migration_log is None:
            return
        snapshot = result.stats
        entry = MigrationLogEntry(
            migration_id=self.migration_id,
            entity_type=self.entity_type,
            phase_name=(error.phase.value if error and error.phase else result.final_phase.value),
            status="completed" if error is None else "failed",
            records_processed=snapshot.total,
            records_successful=snapshot.created,
            records_failed=snapshot.failed,
            started_at=self.stats.started_at,
            completed_at=self.stats.completed_at or datetime.now(UTC),
            duration_seconds=round(snapshot.duration_ms / 1000, 3),
            error_details=str(error) if error else None,
            metadata={
                "stats": snapshot.to_dict(),
                "config": self.config.to_dict(),
                "relationship_failures": [f.to_dict() for f in self.relationship_failures],
            },
        )
        try:
            await self._migration_log.record(entry)
        except Exception as e:
            logger.warning("%s: failed to write migration log: %s", self.name, e)

    # =========================================================================
    # Readiness
    # =========================================================================

    async def validate_readiness(self) -> ReadinessReport:
        """
        Check whether this migrator can run, without writing anything.

        Returns:
            ReadinessReport listing blocking issues and recommendations.
        """
        report = ReadinessReport(entity_type=self.entity_type)

        try:
            await self.legacy.check_connection()
        except MigrationError as e:
            report.add_issue(f"Legacy database unavailable: {e.message}")
        try:
            await self.target.check_connection()
        except MigrationError as e:
            report.add_issue(f"Target database unavailable: {e.message}")
        if not report.is_ready:
            return report

        counts = await self.legacy.count_records()
        source_count = counts.get(LEGACY_COUNT_KEYS.get(self.source, ""), 0)
        if source_count == 0:
            report.add_issue(f"No {self.source.source_table} records found in legacy database")

        await self._loader.ensure(self.lookups, self.required_lookups)
        for dependency in self.required_lookups:
            if self.lookups.size(dependency) == 0:
                report.add_issue(f"No migrated {dependency.value} found in target database")
                report.recommendations.append(f"Run the {dependency.value} migration first")

        migrated = await self.target.count_with_legacy_id(
            self.entity_type.target_table, self.entity_type.legacy_id_column
        )
        if migrated:
            report.recommendations.append(
                f"{migrated} {self.name} records already migrated; they will be skipped"
            )

        logger.info(
            "%s readiness: %s (%d issues)",
            self.name,
            "ready" if report.is_ready else "not ready",
            len(report.issues),
        )
        return report


__all__ = [
    "MigrationOrchestrator",
    "RateLimiter",
    "LEGACY_COUNT_KEYS",
]
