"""
Unit tests for migration exceptions and the retry handler.

Tests cover:
- Error context and string formatting
- Classification per exception type
- ErrorHandler retry behavior and logging
"""

import logging
from uuid import uuid4

import pytest

from legacymigrate.exceptions import (
    BatchWriteError,
    EmbeddingError,
    ErrorHandler,
    ErrorRecoverability,
    ErrorSeverity,
    InvalidPhaseTransitionError,
    LookupBuildError,
    LookupConflictError,
    MigrationError,
    RetryConfig,
    RelationshipWriteError,
    SourceUnavailableError,
    ValidationMismatchError,
)
from legacymigrate.models import EntityType, MigrationPhase

NO_DELAY = RetryConfig(max_attempts=3, base_delay_ms=0, jitter_factor=0)


class TestMigrationError:
    """Tests for the base error."""

    def test_str_includes_context(self):
        migration_id = uuid4()
        error = MigrationError(
            "boom",
            entity_type=EntityType.OFFICES,
            phase=MigrationPhase.WRITING,
            record_id=7,
            migration_id=migration_id,
        )
        text = str(error)
        assert "boom" in text
        assert "entity=offices" in text
        assert "phase=writing" in text
        assert "record_id=7" in text
        assert str(migration_id) in text

    def test_with_context_fills_only_unset_fields(self):
        error = MigrationError("boom", phase=MigrationPhase.FETCHING)
        returned = error.with_context(
            entity_type=EntityType.ORDERS, phase=MigrationPhase.WRITING
        )
        assert returned is error
        assert error.entity_type == EntityType.ORDERS
        assert error.phase == MigrationPhase.FETCHING

    def test_to_dict(self):
        error = ValidationMismatchError(EntityType.ORDERS, expected=10, actual=8)
        data = error.to_dict()
        assert data["error_code"] == "VALIDATION_MISMATCH"
        assert data["entity_type"] == "orders"
        assert data["classification"]["recoverability"] == "recoverable"
        assert error.expected == 10
        assert error.actual == 8


class TestClassifications:
    """Tests for per-type classification."""

    def test_setup_errors_are_fatal(self):
        assert SourceUnavailableError("down").recoverability_type == ErrorRecoverability.FATAL
        assert (
            LookupBuildError(EntityType.PROFILES, "no table").recoverability_type
            == ErrorRecoverability.FATAL
        )

    def test_batch_write_is_transient_with_retry_config(self):
        error = BatchWriteError("offices", 5, "deadlock", entity_type=EntityType.OFFICES)
        assert error.recoverability_type == ErrorRecoverability.TRANSIENT
        assert error.retry_config is not None
        assert error.original_error == "deadlock"
        assert "5 rows into offices" in error.message

    def test_embedding_error_is_transient(self):
        error = EmbeddingError("bedrock", "throttled", source_table="messages", source_id="m1")
        assert error.recoverability_type == ErrorRecoverability.TRANSIENT
        assert error.severity == ErrorSeverity.WARNING

    def test_lookup_conflict(self):
        error = LookupConflictError(EntityType.OFFICES, 7, "a", "b")
        assert error.record_id == 7
        assert error.existing_target_id == "a"
        assert error.new_target_id == "b"

    def test_invalid_phase_transition_records_phase(self):
        error = InvalidPhaseTransitionError(MigrationPhase.DONE, MigrationPhase.WRITING)
        assert error.phase == MigrationPhase.DONE
        assert "done -> writing" in error.message

    def test_relationship_write_error_is_a_recoverable_warning(self):
        error = RelationshipWriteError("doctor_offices", "fk violation", record_id=100)
        assert error.severity == ErrorSeverity.WARNING
        assert error.recoverability_type == ErrorRecoverability.RECOVERABLE
        assert error.record_id == 100
        assert error.message == "Relationship insert into doctor_offices failed: fk violation"
        assert error.to_dict()["table"] == "doctor_offices"


class TestErrorHandler:
    """Tests for ErrorHandler.execute_with_retry."""

    @pytest.mark.asyncio
    async def test_returns_result_without_retry(self):
        handler = ErrorHandler()

        async def operation():
            return 42

        assert await handler.execute_with_retry(operation, "op", retry_config=NO_DELAY) == 42

    @pytest.mark.asyncio
    async def test_retries_transient_errors_then_succeeds(self):
        handler = ErrorHandler()
        calls = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise BatchWriteError("offices", 1, "deadlock")
            return "ok"

        result = await handler.execute_with_retry(operation, "op", retry_config=NO_DELAY)

        assert result == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_stops_after_max_attempts(self):
        handler = ErrorHandler()
        calls = []

        async def operation():
            calls.append(1)
            raise BatchWriteError("offices", 1, "deadlock")

        with pytest.raises(BatchWriteError):
            await handler.execute_with_retry(operation, "op", retry_config=NO_DELAY)

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_fatal_errors_are_not_retried(self):
        handler = ErrorHandler()
        calls = []

        async def operation():
            calls.append(1)
            raise SourceUnavailableError("down")

        with pytest.raises(SourceUnavailableError):
            await handler.execute_with_retry(operation, "op", retry_config=NO_DELAY)

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_non_migration_errors_propagate(self):
        handler = ErrorHandler()

        async def operation():
            raise KeyError("x")

        with pytest.raises(KeyError):
            await handler.execute_with_retry(operation, "op", retry_config=NO_DELAY)

    @pytest.mark.asyncio
    async def test_logs_at_classified_level(self, caplog):
        handler = ErrorHandler()

        async def operation():
            raise SourceUnavailableError("down")

        with caplog.at_level(logging.WARNING, logger="legacymigrate.exceptions"):
            with pytest.raises(SourceUnavailableError):
                await handler.execute_with_retry(operation, "op")

        assert any(
            record.levelno == logging.ERROR and "SOURCE_UNAVAILABLE" in record.getMessage()
            for record in caplog.records
        )


class TestRetryConfig:
    def test_rejects_invalid_attempts(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)

    def test_delay_is_exponential_and_capped(self):
        config = RetryConfig(base_delay_ms=100, max_delay_ms=250, jitter_factor=0)
        assert config.get_delay_ms(0) == 100
        assert config.get_delay_ms(1) == 200
        assert config.get_delay_ms(2) == 250
