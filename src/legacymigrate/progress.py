"""
ProgressTracker - phase and batch progress for one orchestrator run.

Purely observational: the orchestrator tells the tracker what happened
and the tracker logs it, times it and notifies callbacks. Nothing in
the tracker can change the course of a run, except that an invalid
phase transition is reported as an error (it indicates a bug in the
caller).

Usage:
    >>> tracker = ProgressTracker(migration_id, EntityType.OFFICES)
    >>> tracker.start_phase(MigrationPhase.VALIDATING)
    >>> tracker.set_total(250)
    >>> tracker.record_batch(batch_result, total_batches=3)
    >>> tracker.progress().progress_percent
    40.0
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from legacymigrate.exceptions import InvalidPhaseTransitionError
from legacymigrate.models import BatchResult, EntityType, MigrationPhase

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["MigrationProgress"], None]


@dataclass(frozen=True)
class MigrationProgress:
    """
    Progress snapshot of one orchestrator run.

    Attributes:
        migration_id: ID of the run.
        entity_type: Entity being migrated.
        phase: Current phase.
        records_processed: Records submitted to the writer so far.
        records_total: Records fetched from the legacy store (0 until known).
        batches_completed: Batches written so far.
        batches_total: Batches planned (0 until known).
        records_per_second: Processing rate since the first batch began.
        estimated_remaining_seconds: Estimated time to completion (None if unknown).
        phase_durations_ms: Accumulated time spent in each phase.
    """

    migration_id: UUID
    entity_type: EntityType
    phase: MigrationPhase
    records_processed: int
    records_total: int
    batches_completed: int
    batches_total: int
    records_per_second: float
    estimated_remaining_seconds: float | None
    phase_durations_ms: dict[str, float] = field(default_factory=dict)

    @property
    def progress_percent(self) -> float:
        """
        Calculate progress as percentage (0-100).

        Returns:
            Progress percentage, or 0.0 if total is unknown.
        """
        if self.records_total == 0:
            return 0.0
        return min(100.0, (self.records_processed / self.records_total) * 100)

    @property
    def is_complete(self) -> bool:
        return self.phase.is_terminal


class ProgressTracker:
    """
    Tracks phases and batches of a single orchestrator run.

    Callbacks receive a MigrationProgress after every phase change and
    every batch. A failing callback is logged and otherwise ignored.
    """

    def __init__(
        self,
        migration_id: UUID,
        entity_type: EntityType,
        *,
        callbacks: Sequence[ProgressCallback] = (),
    ) -> None:
        self._migration_id = migration_id
        self._entity_type = entity_type
        self._callbacks = list(callbacks)
        self._phase = MigrationPhase.IDLE
        self._phase_started = time.monotonic()
        self._phase_durations_ms: dict[str, float] = {}
        self._records_processed = 0
        self._records_total = 0
        self._batches_completed = 0
        self._batches_total = 0
        self._first_batch_started: float | None = None

    @property
    def phase(self) -> MigrationPhase:
        return self._phase

    def add_callback(self, callback: ProgressCallback) -> None:
        self._callbacks.append(callback)

    def set_total(self, records_total: int, batches_total: int = 0) -> None:
        self._records_total = records_total
        self._batches_total = batches_total

    def start_phase(self, phase: MigrationPhase) -> None:
        """
        Enter a new phase, closing the timer of the current one.

        Raises:
            InvalidPhaseTransitionError: If the transition is not allowed.
        """
        if not self._phase.can_transition_to(phase):
            raise InvalidPhaseTransitionError(
                self._phase, phase, entity_type=self._entity_type
            )

        elapsed_ms = self._close_phase()
        if self._phase != MigrationPhase.IDLE and not self._phase.is_batch_phase:
            logger.info(
                "%s: phase %s completed in %.0fms",
                self._entity_type.value,
                self._phase.value,
                elapsed_ms,
            )

        self._phase = phase
        if phase.is_batch_phase:
            if self._first_batch_started is None:
                self._first_batch_started = time.monotonic()
            logger.debug("%s: entering %s", self._entity_type.value, phase.value)
        else:
            logger.info("%s: entering phase %s", self._entity_type.value, phase.value)
        self._notify()

    def complete(self) -> None:
        """Move to DONE."""
        self.start_phase(MigrationPhase.DONE)

    def fail(self, error: BaseException) -> None:
        """Move to FAILED (no-op if the run already ended)."""
        if self._phase.is_terminal:
            return
        failed_in = self._phase
        self._close_phase()
        self._phase = MigrationPhase.FAILED
        logger.error(
            "%s: migration failed during %s: %s",
            self._entity_type.value,
            failed_in.value,
            error,
        )
        self._notify()

    def record_batch(self, batch: BatchResult, total_batches: int | None = None) -> None:
        """Account for a written batch and log a per-batch summary."""
        self._records_processed += batch.attempted
        self._batches_completed += 1
        if total_batches is not None:
            self._batches_total = total_batches
        logger.info(
            "%s: batch %d/%d complete (%d successful, %d failed, %.0fms)",
            self._entity_type.value,
            batch.batch_number,
            self._batches_total,
            len(batch.successful),
            len(batch.failed),
            batch.duration_ms,
        )
        self._notify()

    def record_skipped(self, count: int) -> None:
        """Count records that need no write (already migrated)."""
        self._records_processed += count

    def progress(self) -> MigrationProgress:
        rate = 0.0
        remaining: float | None = None
        if self._first_batch_started is not None:
            elapsed = time.monotonic() - self._first_batch_started
            if elapsed > 0:
                rate = self._records_processed / elapsed
            if rate > 0 and self._records_total:
                remaining = max(0, self._records_total - self._records_processed) / rate

        durations = dict(self._phase_durations_ms)
        if not self._phase.is_terminal:
            current = (time.monotonic() - self._phase_started) * 1000
            durations[self._phase.value] = durations.get(self._phase.value, 0.0) + current

        return MigrationProgress(
            migration_id=self._migration_id,
            entity_type=self._entity_type,
            phase=self._phase,
            records_processed=self._records_processed,
            records_total=self._records_total,
            batches_completed=self._batches_completed,
            batches_total=self._batches_total,
            records_per_second=rate,
            estimated_remaining_seconds=remaining,
            phase_durations_ms=durations,
        )

    def _close_phase(self) -> float:
        now = time.monotonic()
        elapsed_ms = (now - self._phase_started) * 1000
        key = self._phase.value
        self._phase_durations_ms[key] = self._phase_durations_ms.get(key, 0.0) + elapsed_ms
        self._phase_started = now
        return elapsed_ms

    def _notify(self) -> None:
        if not self._callbacks:
            return
        snapshot = self.progress()
        for callback in self._callbacks:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Progress callback failed")


__all__ = [
    "MigrationProgress",
    "ProgressTracker",
    "ProgressCallback",
]
