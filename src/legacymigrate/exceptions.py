"""
Exceptions and error classification for the migration pipeline.

Exception Hierarchy:
    MigrationError (base)
    +-- SourceUnavailableError
    +-- TargetUnavailableError
    +-- LookupIndexError
    |   +-- LookupConflictError
    |   +-- LookupBuildError
    +-- TransformError
    +-- BatchWriteError
    +-- RelationshipWriteError
    +-- ValidationMismatchError
    +-- InvalidPhaseTransitionError
    +-- EmbeddingError

Error Classification:
    - ErrorSeverity: CRITICAL, ERROR, WARNING, INFO levels
    - ErrorRecoverability: RECOVERABLE, TRANSIENT, FATAL categories
    - ErrorClassification: Rich metadata for each error type
    - ErrorHandler: Automatic bounded retry for transient errors

Setup errors (source or target unreachable, lookup build failure) are
FATAL and abort the orchestrator run. Batch write errors are TRANSIENT
and are retried with exponential backoff before the batch is reported
as failed. Post-validation mismatches are RECOVERABLE: the data already
written stays, and an operator reconciles.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import UUID

if TYPE_CHECKING:
    from legacymigrate.models import EntityType, LegacyKey, MigrationPhase

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Attributes:
        CRITICAL: Failure requiring immediate attention (e.g. data corruption).
        ERROR: Failure that stops a run or needs operator intervention.
        WARNING: Issue that should be monitored but may self-resolve.
        INFO: Informational condition, not a failure.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        RECOVERABLE: An operator can fix the cause and rerun the migrator.
        TRANSIENT: May resolve on retry; retried automatically with backoff.
        FATAL: The run must stop.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT

@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for automatic error retry.

    Implements exponential backoff with jitter for transient errors.

    Attributes:
        max_attempts: Maximum number of attempts (including the initial one).
        base_delay_ms: Base delay between retries in milliseconds.
        max_delay_ms: Maximum delay between retries in milliseconds.
        exponential_base: Base for exponential backoff (default 2.0).
        jitter_factor: Random jitter factor (0.0 to 1.0, default 0.1).

    Example:
        >>> config = RetryConfig(max_attempts=3, base_delay_ms=1000)
        >>> config.get_delay_ms(attempt=1)  # ~2000ms plus jitter
    """

    max_attempts: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 30000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """
        Calculate delay before retrying after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed).

        Returns:
            Delay in milliseconds, capped at max_delay_ms.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)

        if self.jitter_factor > 0:
            jitter = delay * self.jitter_factor * random.random()  # nosec B311 - retry jitter
            delay = delay + jitter

        return min(delay, self.max_delay_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "exponential_base": self.exponential_base,
            "jitter_factor": self.jitter_factor,
        }


# Default retry configurations for different error categories
BATCH_WRITE_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay_ms=1000.0,
    max_delay_ms=30000.0,
)

EMBEDDING_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay_ms=500.0,
    max_delay_ms=10000.0,
    jitter_factor=0.2,
)


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error should be handled and reported.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
        retry_config: Configuration for automatic retry (if applicable).
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    retry_config: RetryConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert classification to dictionary for serialization.

        Returns:
            Dictionary representation of the classification.
        """
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.retry_config:
            result["retry_config"] = self.retry_config.to_dict()
        return result


class MigrationError(Exception):
    """
    Base exception for all migration errors.

    Carries the context a failed run is reported with: the entity being
    migrated, the orchestrator phase, and optionally the legacy record.

    Attributes:
        message: Human-readable error description.
        entity_type: Entity being migrated, if known.
        phase: Orchestrator phase in which the error surfaced, if known.
        record_id: Legacy identifier of the offending record, if any.
        migration_id: Orchestrator run identifier, if known.
        recoverable: Whether a rerun can be expected to succeed.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review migration logs and rerun the migrator once resolved",
    )

    def __init__(
        self,
        message: str,
        *,
        entity_type: EntityType | None = None,
        phase: MigrationPhase | None = None,
        record_id: LegacyKey | None = None,
        migration_id: UUID | None = None,
        recoverable: bool = False,
    ) -> None:
        self.message = message
        self.entity_type = entity_type
        self.phase = phase
        self.record_id = record_id
        self.migration_id = migration_id
        self.recoverable = recoverable
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error string with context."""
        parts = [self.message]
        if self.entity_type is not None:
            parts.append(f"entity={self.entity_type.value}")
        if self.phase is not None:
            parts.append(f"phase={self.phase.value}")
        if self.record_id is not None:
            parts.append(f"record_id={self.record_id}")
        if self.migration_id:
            parts.append(f"migration_id={self.migration_id}")
        if self.recoverable:
            parts.append("(recoverable)")
        return " ".join(parts)

    def with_context(
        self,
        *,
        entity_type: EntityType | None = None,
        phase: MigrationPhase | None = None,
        migration_id: UUID | None = None,
    ) -> MigrationError:
        """
        Fill in context fields that are still unset.

        Lower layers (readers, writers) raise without knowing the phase;
        the orchestrator attaches it on the way out.

        Returns:
            self, for use in ``raise e.with_context(...)``.
        """
        if self.entity_type is None:
            self.entity_type = entity_type
        if self.phase is None:
            self.phase = phase
        if self.migration_id is None:
            self.migration_id = migration_id
        return self

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability_type(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def retry_config(self) -> RetryConfig | None:
        return self.classification.retry_config

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "entity_type": self.entity_type.value if self.entity_type else None,
            "phase": self.phase.value if self.phase else None,
            "record_id": self.record_id,
            "migration_id": str(self.migration_id) if self.migration_id else None,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class SourceUnavailableError(MigrationError):
    """
    Raised when the legacy database cannot be reached or queried.

    Fatal to the orchestrator run.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="SOURCE_UNAVAILABLE",
        category="connectivity",
        suggested_action="Check LEGACY_DB_* settings and legacy database availability",
    )

    def __init__(self, message: str, *, entity_type: EntityType | None = None) -> None:
        super().__init__(f"Legacy source unavailable: {message}", entity_type=entity_type)


class TargetUnavailableError(MigrationError):
    """
    Raised when the target database cannot be reached.

    Fatal to the orchestrator run.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="TARGET_UNAVAILABLE",
        category="connectivity",
        suggested_action="Check TARGET_DATABASE_URL and target database availability",
    )

    def __init__(self, message: str) -> None:
        super().__init__(f"Target store unavailable: {message}")


class LookupIndexError(MigrationError):
    """Base class for ID lookup index errors."""


class LookupConflictError(LookupIndexError):
    """
    Raised when a legacy id is registered twice with different target ids.

    Attributes:
        existing_target_id: Target id already registered.
        new_target_id: Conflicting target id.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="LOOKUP_CONFLICT",
        category="lookup",
        suggested_action=(
            "Two target rows claim the same legacy id. Check the legacy-id "
            "unique constraint on the target table"
        ),
    )

    def __init__(
        self,
        entity_type: EntityType,
        legacy_id: LegacyKey,
        existing_target_id: str,
        new_target_id: str,
    ) -> None:
        self.existing_target_id = existing_target_id
        self.new_target_id = new_target_id
        super().__init__(
            (
                f"Legacy id {legacy_id} already mapped to {existing_target_id}, "
                f"cannot remap to {new_target_id}"
            ),
            entity_type=entity_type,
            record_id=legacy_id,
        )


class LookupBuildError(LookupIndexError):
    """Raised when the lookup index cannot be built from the target store."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="LOOKUP_BUILD_FAILED",
        category="lookup",
        suggested_action="Check that the target table and its legacy-id column exist",
    )

    def __init__(self, entity_type: EntityType, error: str) -> None:
        self.original_error = error
        super().__init__(
            f"Failed to build {entity_type.value} lookup: {error}",
            entity_type=entity_type,
        )


class TransformError(MigrationError):
    """
    Raised inside a transformer when a record cannot be mapped.

    Transformers never let this escape: it is captured as a blocking
    error on the record's MappingResult.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="TRANSFORM_ERROR",
        category="transform",
        suggested_action="Fix the legacy record or the field mapping and rerun",
    )


class BatchWriteError(MigrationError):
    """
    Raised when the target store rejects a bulk insert.

    Transient: the BatchWriter retries it with backoff before reporting
    every record of the batch as failed.

    Attributes:
        table: Target table of the insert.
        batch_size: Number of rows in the rejected call.
        original_error: The store's error message.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="BATCH_WRITE_FAILED",
        category="write",
        suggested_action="Check target constraints and connectivity; failed records can be rerun",
        retry_config=BATCH_WRITE_RETRY_CONFIG,
    )

    def __init__(
        self,
        table: str,
        batch_size: int,
        error: str,
        *,
        entity_type: EntityType | None = None,
    ) -> None:
        self.table = table
        self.batch_size = batch_size
        self.original_error = error
        super().__init__(
            f"Insert of {batch_size} rows into {table} failed: {error}",
            entity_type=entity_type,
            recoverable=True,
        )


class RelationshipWriteError(MigrationError):
    """
    An association row that could not be written.

    The primary record is already stored, so the stitcher reports this on
    its outcome instead of raising it, and the run carries on.

    Attributes:
        table: Association table.
        original_error: The store's error message.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="RELATIONSHIP_WRITE_FAILED",
        category="write",
        suggested_action="The primary record exists; create the association manually or rerun",
    )

    def __init__(self, table: str, error: str, *, record_id: LegacyKey | None = None) -> None:
        self.table = table
        self.original_error = error
        super().__init__(
            f"Relationship insert into {table} failed: {error}",
            record_id=record_id,
            recoverable=True,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["table"] = self.table
        return data


class ValidationMismatchError(MigrationError):
    """
    Raised when post-validation counts do not match the run's statistics.

    Data already written is kept.

    Attributes:
        expected: Records the run believes are present.
        actual: Rows with a non-null legacy id in the target table.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="VALIDATION_MISMATCH",
        category="validation",
        suggested_action="Reconcile target rows against migration_attempts before rerunning",
    )

    def __init__(self, entity_type: EntityType, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Validation failed: expected {expected} migrated rows, found {actual}",
            entity_type=entity_type,
            recoverable=True,
        )


class InvalidPhaseTransitionError(MigrationError):
    """Raised when the orchestrator attempts an invalid phase transition."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_PHASE_TRANSITION",
        category="state",
        suggested_action="This is a bug in the orchestrator; report it with the log",
    )

    def __init__(
        self,
        current_phase: MigrationPhase,
        target_phase: MigrationPhase,
        *,
        entity_type: EntityType | None = None,
    ) -> None:
        self.current_phase = current_phase
        self.target_phase = target_phase
        super().__init__(
            f"Invalid phase transition: {current_phase.value} -> {target_phase.value}",
            entity_type=entity_type,
            phase=current_phase,
        )


class EmbeddingError(MigrationError):
    """
    Raised when an embedding or knowledge-base provider call fails.

    Attributes:
        provider: Provider name.
        source_table: Table of the row being embedded.
        source_id: Target id of the row being embedded.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="EMBEDDING_FAILED",
        category="embedding",
        suggested_action="Check provider credentials and quotas; failed queue items can be retried",
        retry_config=EMBEDDING_RETRY_CONFIG,
    )

    def __init__(
        self,
        provider: str,
        error: str,
        *,
        source_table: str | None = None,
        source_id: str | None = None,
    ) -> None:
        self.provider = provider
        self.source_table = source_table
        self.source_id = source_id
        self.original_error = error
        super().__init__(f"{provider} embedding failed: {error}", recoverable=True)


class ErrorHandler:
    """
    Bounded retry with exponential backoff for transient migration errors.

    Usage:
        >>> handler = ErrorHandler()
        >>> rows = await handler.execute_with_retry(
        ...     lambda: store.insert_rows("offices", rows),
        ...     operation_name="offices.write_batch",
        ...     retry_config=RetryConfig(max_attempts=3, base_delay_ms=1000),
        ... )
    """

    async def execute_with_retry(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        operation_name: str,
        *,
        retry_config: RetryConfig | None = None,
    ) -> T:
        """
        Execute an operation, retrying TRANSIENT MigrationErrors.

        Args:
            operation: Async callable to execute.
            operation_name: Name for logging.
            retry_config: Override retry configuration.

        Returns:
            The result of the operation.

        Raises:
            MigrationError: If all retries are exhausted or the error is not transient.
            Exception: Non-migration exceptions are re-raised immediately.
        """
        attempt = 0

        while True:
            try:
                result = await operation()
                if attempt > 0:
                    logger.info(
                        "Operation '%s' succeeded after %d retries",
                        operation_name,
                        attempt,
                    )
                return result

            except MigrationError as e:
                self._handle_error(e, operation_name)

                if not e.recoverability_type.should_retry:
                    logger.error(
                        "Non-retryable error in '%s': %s (code=%s)",
                        operation_name,
                        e.message,
                        e.error_code,
                    )
                    raise

                config = retry_config or e.retry_config or BATCH_WRITE_RETRY_CONFIG

                if attempt + 1 >= config.max_attempts:
                    logger.error(
                        "Exhausted %d attempts for '%s': %s",
                        config.max_attempts,
                        operation_name,
                        e.message,
                    )
                    raise

                delay_s = config.get_delay_ms(attempt) / 1000.0

                logger.warning(
                    "Retryable error in '%s' (attempt %d/%d): %s. Retrying in %.1fs",
                    operation_name,
                    attempt + 1,
                    config.max_attempts,
                    e.message,
                    delay_s,
                )

                await asyncio.sleep(delay_s)
                attempt += 1

    def _handle_error(self, error: MigrationError, operation_name: str) -> None:
        """Log an error at its classified level."""
        classification = error.classification

        logger.log(
            classification.severity.log_level,
            "Error in '%s': %s [code=%s, severity=%s, recoverable=%s]",
            operation_name,
            error.message,
            classification.error_code,
            classification.severity.value,
            classification.recoverability.value,
        )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    "BATCH_WRITE_RETRY_CONFIG",
    "EMBEDDING_RETRY_CONFIG",
    "MigrationError",
    "SourceUnavailableError",
    "TargetUnavailableError",
    "LookupIndexError",
    "LookupConflictError",
    "LookupBuildError",
    "TransformError",
    "BatchWriteError",
    "RelationshipWriteError",
    "ValidationMismatchError",
    "InvalidPhaseTransitionError",
    "EmbeddingError",
    "ErrorHandler",
]
