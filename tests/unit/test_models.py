"""
Unit tests for the migration data models.

Tests cover:
- EntityType table metadata
- MigrationPhase transitions
- PendingRelationship binding
- MappingResult validity
- MigrationStats counters and freezing
- ReadinessReport
"""

from uuid import uuid4

import pytest

from legacymigrate.models import (
    BatchResult,
    EntityType,
    MappingResult,
    MigrationPhase,
    MigrationRunResult,
    MigrationStats,
    PendingRelationship,
    ReadinessReport,
    RelationshipRecord,
    WriteFailure,
    WriteSuccess,
)


class TestEntityType:
    """Tests for EntityType table metadata."""

    def test_patients_share_profiles_table(self):
        """Patients are written as profiles."""
        assert EntityType.PATIENTS.target_table == "profiles"
        assert EntityType.PATIENTS.legacy_id_column == "legacy_patient_id"

    def test_orders_read_from_instructions(self):
        """Orders come from dispatch_instruction."""
        assert EntityType.ORDERS.source_table == "dispatch_instruction"
        assert EntityType.ORDERS.legacy_id_column == "legacy_instruction_id"

    @pytest.mark.parametrize("entity_type", [EntityType.ORDER_STATES, EntityType.MESSAGE_TYPES])
    def test_reference_data_keyed_by_key(self, entity_type):
        """Reference tables have no legacy table and use their key column."""
        assert entity_type.is_reference_data
        assert entity_type.source_table is None
        assert entity_type.legacy_id_column == "key"

    def test_legacy_entities_are_not_reference_data(self):
        assert not EntityType.OFFICES.is_reference_data


class TestMigrationPhase:
    """Tests for MigrationPhase state machine."""

    def test_terminal_phases(self):
        assert MigrationPhase.DONE.is_terminal
        assert MigrationPhase.FAILED.is_terminal
        assert not MigrationPhase.WRITING.is_terminal

    def test_linear_setup(self):
        """Setup phases run in a fixed order."""
        assert MigrationPhase.IDLE.can_transition_to(MigrationPhase.VALIDATING)
        assert MigrationPhase.VALIDATING.can_transition_to(MigrationPhase.BUILDING_LOOKUPS)
        assert MigrationPhase.BUILDING_LOOKUPS.can_transition_to(MigrationPhase.FETCHING)
        assert not MigrationPhase.IDLE.can_transition_to(MigrationPhase.FETCHING)

    def test_batch_loop(self):
        """Writing may loop back to the next batch or skip stitching."""
        assert MigrationPhase.WRITING.can_transition_to(MigrationPhase.STITCHING)
        assert MigrationPhase.WRITING.can_transition_to(MigrationPhase.ENHANCING)
        assert MigrationPhase.STITCHING.can_transition_to(MigrationPhase.ENHANCING)
        assert MigrationPhase.STITCHING.can_transition_to(MigrationPhase.POST_VALIDATING)

    def test_empty_run_skips_batches(self):
        assert MigrationPhase.FETCHING.can_transition_to(MigrationPhase.POST_VALIDATING)

    def test_any_active_phase_can_fail(self):
        for phase in MigrationPhase:
            if not phase.is_terminal:
                assert phase.can_transition_to(MigrationPhase.FAILED)

    def test_no_transition_out_of_terminal(self):
        assert not MigrationPhase.DONE.can_transition_to(MigrationPhase.FAILED)
        assert not MigrationPhase.FAILED.can_transition_to(MigrationPhase.VALIDATING)

    def test_batch_phases(self):
        assert MigrationPhase.TRANSFORMING.is_batch_phase
        assert not MigrationPhase.FETCHING.is_batch_phase


class TestPendingRelationship:
    """Tests for PendingRelationship.bind."""

    def test_bind_fills_primary_column(self):
        pending = PendingRelationship(
            table="doctor_offices",
            attributes={"doctor_id": "d1", "is_primary": True},
            primary_column="office_id",
        )

        record = pending.bind("o1")

        assert record == RelationshipRecord(
            table="doctor_offices",
            values={"doctor_id": "d1", "is_primary": True, "office_id": "o1"},
        )
        assert "office_id" not in pending.attributes

    def test_bind_without_primary_column(self):
        pending = PendingRelationship(table="order_state_history", attributes={"order_id": "x"})
        assert pending.bind("ignored").values == {"order_id": "x"}


class TestMappingResult:
    """Tests for MappingResult."""

    def test_valid_without_errors(self):
        result = MappingResult(legacy_id=1, legacy={"id": 1}, warnings=["gap"])
        assert result.is_valid

    def test_error_message_joins_errors(self):
        result = MappingResult(legacy_id=1, legacy={}, errors=["a", "b"])
        assert not result.is_valid
        assert result.error_message == "a; b"


class TestBatchResult:
    """Tests for BatchResult."""

    def test_attempted_counts_both_outcomes(self):
        mapping = MappingResult(legacy_id=1, legacy={})
        batch = BatchResult(
            batch_number=1,
            successful=[WriteSuccess(mapping=mapping, target_id="t")],
            failed=[WriteFailure(mapping=mapping, error="boom")],
        )
        assert batch.attempted == 2


class TestMigrationStats:
    """Tests for MigrationStats and its snapshot."""

    def test_success_rate_with_zero_total(self):
        assert MigrationStats(entity_type=EntityType.OFFICES).success_rate == 0.0

    def test_success_rate_rounded(self):
        stats = MigrationStats(entity_type=EntityType.OFFICES, total=3, created=2)
        assert stats.success_rate == 66.67

    def test_distributions(self):
        stats = MigrationStats(entity_type=EntityType.PROFILES)
        stats.count("profile_type", "client")
        stats.count("profile_type", "client")
        stats.count("profile_type", "patient")

        snapshot = stats.freeze()

        assert snapshot.distributions == {"profile_type": {"client": 2, "patient": 1}}

    def test_freeze_fixes_duration(self):
        stats = MigrationStats(entity_type=EntityType.OFFICES, total=2, created=1, failed=1)

        first = stats.freeze()
        second = stats.freeze()

        assert stats.is_frozen
        assert stats.completed_at is not None
        assert first.duration_ms == second.duration_ms
        assert first.to_dict()["entity_type"] == "offices"
        assert first.to_dict()["success_rate"] == 50.0


class TestMigrationRunResult:
    def test_succeeded_only_when_done(self):
        snapshot = MigrationStats(entity_type=EntityType.OFFICES).freeze()
        done = MigrationRunResult(uuid4(), EntityType.OFFICES, snapshot, MigrationPhase.DONE)
        failed = MigrationRunResult(
            uuid4(), EntityType.OFFICES, snapshot, MigrationPhase.FAILED, error="x"
        )
        assert done.succeeded
        assert not failed.succeeded


class TestReadinessReport:
    def test_add_issue_marks_not_ready(self):
        report = ReadinessReport(entity_type=EntityType.ORDERS)
        report.add_issue("No migrated profiles found in target database")

        assert not report.is_ready
        assert report.to_dict() == {
            "entity_type": "orders",
            "is_ready": False,
            "issues": ["No migrated profiles found in target database"],
            "recommendations": [],
        }
