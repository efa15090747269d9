"""
Data models for the legacy-to-Supabase migration pipeline.

Models in this module:

Enums:
    - EntityType: Every entity the pipeline migrates, with its tables
    - MigrationPhase: Orchestrator lifecycle phases
    - MigrationAttemptStatus: Write-ahead marker states

Per-record (ephemeral):
    - MappingResult: Outcome of transforming one legacy record
    - PendingRelationship / RelationshipRecord: Secondary join rows

Per-batch (ephemeral):
    - WriteSuccess / WriteFailure / BatchResult

Per-run:
    - MigrationStats: Mutable counters accumulated during a run
    - MigrationStatsSnapshot: Frozen copy logged at the end of a run
    - MigrationRunResult: What an orchestrator returns to its caller
    - MigrationAttempt: Write-ahead marker row
    - MigrationLogEntry: One migration_log row per run
    - ReadinessReport: Result of a dry-run readiness check
"""

from __future__ import annotations

import time
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

LegacyKey = int | str
"""Legacy identifier: integer primary key, or a string key for reference data."""

LegacyRecord = Mapping[str, Any]
"""One row from the legacy schema, keyed by column name."""


class EntityType(Enum):
    """
    Entities the pipeline migrates.

    Each member knows the target table it writes to, the column that
    permanently preserves the legacy identifier, and the legacy table it
    is read from. Reference data (order states, message types) has no
    legacy table and is keyed by its ``key`` column instead.
    """

    PROFILES = "profiles"
    PATIENTS = "patients"
    OFFICES = "offices"
    ORDER_TYPES = "order_types"
    ORDER_STATES = "order_states"
    ORDERS = "orders"
    PROJECTS = "projects"
    INSTRUCTION_STATES = "instruction_states"
    MESSAGE_TYPES = "message_types"
    MESSAGES = "messages"

    @property
    def target_table(self) -> str:
        """Target table rows for this entity are written to."""
        return _TARGET_TABLES[self]

    @property
    def legacy_id_column(self) -> str:
        """Column on the target table holding the legacy identifier."""
        return _LEGACY_ID_COLUMNS[self]

    @property
    def source_table(self) -> str | None:
        """Legacy table this entity is read from, or None for reference data."""
        return _SOURCE_TABLES[self]

    @property
    def is_reference_data(self) -> bool:
        """True for string-keyed reference tables seeded by the pipeline."""
        return _SOURCE_TABLES[self] is None


_TARGET_TABLES: dict[EntityType, str] = {
    EntityType.PROFILES: "profiles",
    EntityType.PATIENTS: "profiles",
    EntityType.OFFICES: "offices",
    EntityType.ORDER_TYPES: "order_types",
    EntityType.ORDER_STATES: "order_states",
    EntityType.ORDERS: "orders",
    EntityType.PROJECTS: "projects",
    EntityType.INSTRUCTION_STATES: "instruction_states",
    EntityType.MESSAGE_TYPES: "message_types",
    EntityType.MESSAGES: "messages",
}

_LEGACY_ID_COLUMNS: dict[EntityType, str] = {
    EntityType.PROFILES: "legacy_user_id",
    EntityType.PATIENTS: "legacy_patient_id",
    EntityType.OFFICES: "legacy_office_id",
    EntityType.ORDER_TYPES: "legacy_course_id",
    EntityType.ORDER_STATES: "key",
    EntityType.ORDERS: "legacy_instruction_id",
    EntityType.PROJECTS: "legacy_project_id",
    EntityType.INSTRUCTION_STATES: "legacy_state_id",
    EntityType.MESSAGE_TYPES: "key",
    EntityType.MESSAGES: "legacy_record_id",
}

_SOURCE_TABLES: dict[EntityType, str | None] = {
    EntityType.PROFILES: "auth_user",
    EntityType.PATIENTS: "dispatch_patient",
    EntityType.OFFICES: "dispatch_office",
    EntityType.ORDER_TYPES: "dispatch_course",
    EntityType.ORDER_STATES: None,
    EntityType.ORDERS: "dispatch_instruction",
    EntityType.PROJECTS: "dispatch_project",
    EntityType.INSTRUCTION_STATES: "dispatch_state",
    EntityType.MESSAGE_TYPES: None,
    EntityType.MESSAGES: "dispatch_record",
}


class MigrationPhase(Enum):
    """
    Orchestrator lifecycle phases.

    State machine (linear, the batch loop repeats):
        IDLE -> VALIDATING -> BUILDING_LOOKUPS -> FETCHING
             -> {ENHANCING -> TRANSFORMING -> WRITING -> STITCHING}*
             -> POST_VALIDATING -> DONE
        Any non-terminal phase -> FAILED (unrecovered exception)

    STITCHING is skipped when a batch has nothing to stitch, so WRITING may
    be followed directly by the next ENHANCING or by POST_VALIDATING.
    """

    IDLE = "idle"
    VALIDATING = "validating"
    BUILDING_LOOKUPS = "building_lookups"
    FETCHING = "fetching"
    ENHANCING = "enhancing"
    TRANSFORMING = "transforming"
    WRITING = "writing"
    STITCHING = "stitching"
    POST_VALIDATING = "post_validating"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """
        Check if this is a terminal (final) phase.

        Returns:
            True for DONE and FAILED.
        """
        return self in (MigrationPhase.DONE, MigrationPhase.FAILED)

    @property
    def is_batch_phase(self) -> bool:
        """True for the phases repeated once per batch."""
        return self in (
            MigrationPhase.ENHANCING,
            MigrationPhase.TRANSFORMING,
            MigrationPhase.WRITING,
            MigrationPhase.STITCHING,
        )

    def can_transition_to(self, target: MigrationPhase) -> bool:
        """
        Check if transition to target phase is valid.

        Args:
            target: The target phase to transition to.

        Returns:
            True if the transition is valid.
        """
        if self.is_terminal:
            return False

        if target == MigrationPhase.FAILED:
            return True

        valid_transitions: dict[MigrationPhase, list[MigrationPhase]] = {
            MigrationPhase.IDLE: [MigrationPhase.VALIDATING],
            MigrationPhase.VALIDATING: [MigrationPhase.BUILDING_LOOKUPS],
            MigrationPhase.BUILDING_LOOKUPS: [MigrationPhase.FETCHING],
            MigrationPhase.FETCHING: [
                MigrationPhase.ENHANCING,
                MigrationPhase.POST_VALIDATING,  # Nothing to migrate
            ],
            MigrationPhase.ENHANCING: [MigrationPhase.TRANSFORMING],
            MigrationPhase.TRANSFORMING: [MigrationPhase.WRITING],
            MigrationPhase.WRITING: [
                MigrationPhase.STITCHING,
                MigrationPhase.ENHANCING,
                MigrationPhase.POST_VALIDATING,
            ],
            MigrationPhase.STITCHING: [
                MigrationPhase.ENHANCING,
                MigrationPhase.POST_VALIDATING,
            ],
            MigrationPhase.POST_VALIDATING: [MigrationPhase.DONE],
        }

        return target in valid_transitions.get(self, [])


class MigrationAttemptStatus(Enum):
    """State of the write-ahead marker for one legacy record."""

    PENDING = "pending"
    """Marker written before the batch insert; outcome unknown."""

    SUCCEEDED = "succeeded"
    """Target record written; target_id is set."""

    FAILED = "failed"
    """Transform or write failed; error is set."""


@dataclass(frozen=True)
class ContentType:
    """Row from the legacy ``django_content_type`` table."""

    id: int
    app_label: str
    model: str


@dataclass(frozen=True)
class RelationshipRecord:
    """
    A secondary association row ready to be written.

    Attributes:
        table: Target table (e.g. ``doctor_offices``).
        values: Column values, including both referenced target ids.
    """

    table: str
    values: dict[str, Any]


@dataclass(frozen=True)
class PendingRelationship:
    """
    A relationship declared by a transformer before the primary is written.

    The primary record's target id is only known after the batch write, so
    transformers declare the relationship with every other column filled in
    and name the column that will receive the primary id.

    Attributes:
        table: Target table for the association row.
        attributes: Column values known at transform time.
        primary_column: Column to receive the primary record's target id,
            or None when the row does not reference the primary record.
    """

    table: str
    attributes: dict[str, Any]
    primary_column: str | None = None

    def bind(self, primary_id: str) -> RelationshipRecord:
        """Produce the concrete row for a successfully written primary."""
        values = dict(self.attributes)
        if self.primary_column is not None:
            values[self.primary_column] = primary_id
        return RelationshipRecord(table=self.table, values=values)


@dataclass
class MappingResult:
    """
    Outcome of transforming a single legacy record.

    Errors are blocking (the record is not written); warnings are not.

    Attributes:
        legacy_id: Legacy identifier of the source record.
        legacy: The legacy record as read (plus any enhancement fields).
        target: Candidate target row.
        errors: Blocking, human-readable problems.
        warnings: Non-blocking problems; the record is written with a gap.
        relationships: Association rows to create after a successful write.
        unresolved_foreign_keys: Foreign legacy ids that were not in the index.
    """

    legacy_id: LegacyKey
    legacy: LegacyRecord
    target: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    relationships: list[PendingRelationship] = field(default_factory=list)
    unresolved_foreign_keys: int = 0

    @property
    def is_valid(self) -> bool:
        """True when the record carries no blocking errors."""
        return not self.errors

    @property
    def error_message(self) -> str:
        """All blocking errors joined for reporting."""
        return "; ".join(self.errors)


@dataclass(frozen=True)
class WriteSuccess:
    """A mapping whose target row was written, with its assigned id."""

    mapping: MappingResult
    target_id: str


@dataclass(frozen=True)
class WriteFailure:
    """A mapping that was not written."""

    mapping: MappingResult
    error: str
    retry_count: int = 0


@dataclass
class BatchResult:
    """
    Result of writing one batch.

    The writer treats a batch as atomic on failure: either every record
    is in ``successful`` or every record is in ``failed``.
    """

    batch_number: int
    successful: list[WriteSuccess] = field(default_factory=list)
    failed: list[WriteFailure] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def attempted(self) -> int:
        """Number of records submitted in this batch."""
        return len(self.successful) + len(self.failed)


@dataclass(frozen=True)
class MigrationStatsSnapshot:
    """Immutable copy of MigrationStats, taken when a run finishes."""

    entity_type: EntityType
    total: int
    created: int
    failed: int
    skipped: int
    relationships_created: int
    relationships_failed: int
    unresolved_foreign_keys: int
    warnings: int
    duration_ms: float
    distributions: dict[str, dict[str, int]]

    @property
    def success_rate(self) -> float:
        """Percentage of seen records that were created (0-100)."""
        if self.total == 0:
            return 0.0
        return round(self.created / self.total * 100, 2)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging and the migration log."""
        return {
            "entity_type": self.entity_type.value,
            "total": self.total,
            "created": self.created,
            "failed": self.failed,
            "skipped": self.skipped,
            "relationships_created": self.relationships_created,
            "relationships_failed": self.relationships_failed,
            "unresolved_foreign_keys": self.unresolved_foreign_keys,
            "warnings": self.warnings,
            "duration_ms": self.duration_ms,
            "success_rate": self.success_rate,
            "distributions": self.distributions,
        }


@dataclass
class MigrationStats:
    """
    Counters accumulated during one orchestrator run.

    Counters only ever increase. ``freeze()`` stops the clock and returns
    an immutable snapshot; further increments after freezing are a bug in
    the caller, not something this class guards against.
    """

    entity_type: EntityType
    total: int = 0
    created: int = 0
    failed: int = 0
    skipped: int = 0
    relationships_created: int = 0
    relationships_failed: int = 0
    unresolved_foreign_keys: int = 0
    warnings: int = 0
    distributions: dict[str, Counter[str]] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    _start_monotonic: float = field(default_factory=time.monotonic, repr=False)
    _duration_ms: float | None = field(default=None, repr=False)

    def count(self, distribution: str, key: str) -> None:
        """Increment one bucket of a named distribution (e.g. profile types)."""
        self.distributions.setdefault(distribution, Counter())[key] += 1

    @property
    def duration_ms(self) -> float:
        """Elapsed milliseconds, fixed once the stats are frozen."""
        if self._duration_ms is not None:
            return self._duration_ms
        return (time.monotonic() - self._start_monotonic) * 1000

    @property
    def success_rate(self) -> float:
        """Percentage of seen records that were created (0-100)."""
        if self.total == 0:
            return 0.0
        return round(self.created / self.total * 100, 2)

    @property
    def is_frozen(self) -> bool:
        return self.completed_at is not None

    def freeze(self) -> MigrationStatsSnapshot:
        """Stop the clock and return an immutable snapshot."""
        if self._duration_ms is None:
            self._duration_ms = (time.monotonic() - self._start_monotonic) * 1000
            self.completed_at = datetime.now(UTC)
        return MigrationStatsSnapshot(
            entity_type=self.entity_type,
            total=self.total,
            created=self.created,
            failed=self.failed,
            skipped=self.skipped,
            relationships_created=self.relationships_created,
            relationships_failed=self.relationships_failed,
            unresolved_foreign_keys=self.unresolved_foreign_keys,
            warnings=self.warnings,
            duration_ms=self._duration_ms,
            distributions={name: dict(counter) for name, counter in self.distributions.items()},
        )


@dataclass(frozen=True)
class MigrationRunResult:
    """
    What an orchestrator run returns.

    Attributes:
        migration_id: Identifier of this run.
        entity_type: Entity migrated.
        stats: Frozen statistics.
        final_phase: DONE on success, FAILED otherwise.
        error: Error message when the run failed.
    """

    migration_id: UUID
    entity_type: EntityType
    stats: MigrationStatsSnapshot
    final_phase: MigrationPhase
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.final_phase == MigrationPhase.DONE


@dataclass(frozen=True)
class MigrationAttempt:
    """Write-ahead marker for one legacy record of one entity type."""

    entity_type: EntityType
    legacy_id: LegacyKey
    status: MigrationAttemptStatus
    attempted_at: datetime
    target_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class MigrationLogEntry:
    """
    One row in the ``migration_log`` table, recorded per orchestrator run.
    """

    migration_id: UUID
    entity_type: EntityType
    phase_name: str
    status: str
    records_processed: int
    records_successful: int
    records_failed: int
    started_at: datetime
    completed_at: datetime | None = None
    duration_seconds: float | None = None
    error_details: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ReadinessReport:
    """Result of a dry-run readiness check for one migrator."""

    entity_type: EntityType
    is_ready: bool = True
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def add_issue(self, issue: str) -> None:
        self.issues.append(issue)
        self.is_ready = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "is_ready": self.is_ready,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
        }


__all__ = [
    "LegacyKey",
    "LegacyRecord",
    "EntityType",
    "MigrationPhase",
    "MigrationAttemptStatus",
    "ContentType",
    "RelationshipRecord",
    "PendingRelationship",
    "MappingResult",
    "WriteSuccess",
    "WriteFailure",
    "BatchResult",
    "MigrationStats",
    "MigrationStatsSnapshot",
    "MigrationRunResult",
    "MigrationAttempt",
    "MigrationLogEntry",
    "ReadinessReport",
]
