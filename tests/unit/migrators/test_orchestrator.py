"""
Unit tests for the MigrationOrchestrator run loop, using the offices migrator.

Tests cover:
- Phase sequence and statistics of a successful run
- Relationship stitching, the create_relationships switch and failed links
- Skipping already migrated records on rerun
- Batch write failures and retries
- Post-validation mismatches
- Fatal setup failures and wrapped unexpected errors
- Attempt markers, migration log and embedding enqueue
- Rate limiting between batches
- Readiness checks
"""

from unittest.mock import AsyncMock, patch

import pytest

from legacymigrate.config import MigratorConfig
from legacymigrate.exceptions import (
    MigrationError,
    SourceUnavailableError,
    ValidationMismatchError,
)
from legacymigrate.migrators import OfficesMigrator, ProfilesMigrator, RateLimiter
from legacymigrate.models import EntityType, MigrationAttemptStatus, MigrationPhase
from legacymigrate.observability import MockTracer
from legacymigrate.sources import InMemoryLegacyReader
from tests.fixtures import legacy_content_types, legacy_tables


def seed_profiles(store):
    """Seed migrated profiles for every legacy user; returns legacy id -> profile id."""
    ids = store.seed(
        "profiles",
        [{"legacy_user_id": user_id, "profile_type": "client"} for user_id in (1, 2, 3, 4)],
    )
    return dict(zip((1, 2, 3, 4), ids, strict=True))


def offices_migrator(legacy_reader, target_store, config, **kwargs):
    kwargs.setdefault("enable_tracing", False)
    return OfficesMigrator(legacy_reader, target_store, config=config, **kwargs)


class EmbeddableOfficesMigrator(OfficesMigrator):
    embeddable = True


class CapturingOfficesMigrator(OfficesMigrator):
    """Keeps the written mappings so tests can inspect them after the run."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.written = []

    async def after_write(self, successes):
        self.written.extend(successes)


class FailingReader(InMemoryLegacyReader):
    async def fetch_all(self, entity_type):
        raise RuntimeError("cursor closed")


class TestSuccessfulRun:
    """Tests for a run over one valid and one invalid office."""

    @pytest.mark.asyncio
    async def test_stats_and_rows(self, legacy_reader, target_store, fast_config):
        profiles = seed_profiles(target_store)
        migrator = offices_migrator(legacy_reader, target_store, fast_config)

        result = await migrator.run()

        assert result.succeeded
        assert migrator.phase == MigrationPhase.DONE
        assert result.stats.total == 2
        assert result.stats.created == 1
        assert result.stats.failed == 1
        assert result.stats.skipped == 0
        assert result.stats.relationships_created == 1
        assert result.stats.success_rate == 50.0

        [office] = target_store.rows("offices")
        assert office["legacy_office_id"] == 100
        [link] = target_store.rows("doctor_offices")
        assert link["doctor_id"] == profiles[1]
        assert link["office_id"] == office["id"]
        assert link["is_primary"] is True

    @pytest.mark.asyncio
    async def test_new_ids_are_registered(self, legacy_reader, target_store, lookups, fast_config):
        seed_profiles(target_store)
        migrator = offices_migrator(legacy_reader, target_store, fast_config, lookups=lookups)

        await migrator.run()

        office_id = target_store.rows("offices")[0]["id"]
        assert lookups.resolve(EntityType.OFFICES, 100) == office_id
        assert lookups.resolve(EntityType.OFFICES, 101) is None

    @pytest.mark.asyncio
    async def test_phase_sequence(self, legacy_reader, target_store, fast_config):
        seed_profiles(target_store)
        seen = []
        migrator = offices_migrator(
            legacy_reader,
            target_store,
            fast_config,
            progress_callbacks=[lambda progress: seen.append(progress.phase)],
        )

        await migrator.run()

        assert seen[:4] == [
            MigrationPhase.VALIDATING,
            MigrationPhase.BUILDING_LOOKUPS,
            MigrationPhase.FETCHING,
            MigrationPhase.ENHANCING,
        ]
        assert MigrationPhase.STITCHING in seen
        assert seen[-2:] == [MigrationPhase.POST_VALIDATING, MigrationPhase.DONE]

    @pytest.mark.asyncio
    async def test_without_relationships(self, legacy_reader, target_store):
        seed_profiles(target_store)
        config = MigratorConfig(retry_delay_ms=0, create_relationships=False)

        result = await offices_migrator(legacy_reader, target_store, config).run()

        assert result.stats.created == 1
        assert result.stats.relationships_created == 0
        assert target_store.rows("doctor_offices") == []

    @pytest.mark.asyncio
    async def test_relationship_failure_keeps_primary(self, legacy_reader, target_store, fast_config):
        seed_profiles(target_store)
        target_store.fail_table("doctor_offices")

        result = await offices_migrator(legacy_reader, target_store, fast_config).run()

        assert result.succeeded
        assert result.stats.created == 1
        assert result.stats.relationships_failed == 1
        assert len(target_store.rows("offices")) == 1

    @pytest.mark.asyncio
    async def test_relationship_failure_is_recorded_on_mapping(
        self, legacy_reader, target_store, attempts, migration_log, fast_config
    ):
        seed_profiles(target_store)
        target_store.fail_table("doctor_offices")
        migrator = CapturingOfficesMigrator(
            legacy_reader,
            target_store,
            config=fast_config,
            attempts=attempts,
            migration_log=migration_log,
            enable_tracing=False,
        )

        result = await migrator.run()

        expected = "doctor_offices: simulated failure on doctor_offices"
        [written] = migrator.written
        assert written.mapping.warnings == [expected]
        assert result.stats.warnings == 1

        marker = await attempts.get(EntityType.OFFICES, 100)
        assert marker.status == MigrationAttemptStatus.SUCCEEDED
        assert marker.target_id == written.target_id
        assert marker.error == expected

        [failure] = migrator.relationship_failures
        assert failure.table == "doctor_offices"
        assert failure.record_id == 100
        [entry] = await migration_log.list_for_migration(migrator.migration_id)
        [logged] = entry.metadata["relationship_failures"]
        assert logged["record_id"] == 100
        assert logged["error_code"] == "RELATIONSHIP_WRITE_FAILED"

    @pytest.mark.asyncio
    async def test_missing_doctor_profile_is_warning(self, legacy_reader, target_store, fast_config):
        result = await offices_migrator(legacy_reader, target_store, fast_config).run()

        assert result.stats.created == 1
        assert result.stats.warnings == 1
        assert result.stats.unresolved_foreign_keys == 1
        assert target_store.rows("doctor_offices") == []

    @pytest.mark.asyncio
    async def test_traces_run_and_batches(self, legacy_reader, target_store, fast_config):
        tracer = MockTracer()
        migrator = OfficesMigrator(legacy_reader, target_store, config=fast_config, tracer=tracer)

        await migrator.run()

        assert tracer.span_names[0] == "legacymigrate.orchestrator.run"
        assert "legacymigrate.orchestrator.batch" in tracer.span_names
        assert "legacymigrate.batch_writer.write_batch" in tracer.span_names


class TestBatching:
    """Tests for batch splitting and rate limiting."""

    @pytest.mark.asyncio
    async def test_records_split_into_batches(self, legacy_reader, target_store):
        config = MigratorConfig(batch_size=3, retry_delay_ms=0)

        result = await ProfilesMigrator(
            legacy_reader, target_store, config=config, enable_tracing=False
        ).run()

        assert target_store.insert_calls == [("profiles", 3), ("profiles", 1)]
        assert result.stats.created == 4

    @pytest.mark.asyncio
    async def test_rate_limit_waits_between_batches(self, legacy_reader, target_store):
        config = MigratorConfig(batch_size=2, retry_delay_ms=0, max_records_per_second=1)
        migrator = ProfilesMigrator(legacy_reader, target_store, config=config, enable_tracing=False)

        with patch("legacymigrate.migrators.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await migrator.run()

        sleep.assert_awaited_once()


class TestRateLimiter:
    """Tests for the token bucket."""

    @pytest.mark.asyncio
    async def test_disabled(self):
        limiter = RateLimiter(0)
        assert not limiter.enabled
        with patch("legacymigrate.migrators.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.wait(1000)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_waits_when_tokens_run_out(self):
        limiter = RateLimiter(10)
        with patch("legacymigrate.migrators.base.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await limiter.wait(5)
            sleep.assert_not_awaited()
            await limiter.wait(20)

        delay = sleep.await_args.args[0]
        assert delay == pytest.approx(1.5, abs=0.1)


class TestRerun:
    """Tests for rerunning a migrator over a partially migrated target."""

    @pytest.mark.asyncio
    async def test_rerun_skips_migrated_records(self, legacy_reader, target_store, fast_config):
        seed_profiles(target_store)
        await offices_migrator(legacy_reader, target_store, fast_config).run()
        calls_after_first_run = len(target_store.insert_calls)

        result = await offices_migrator(legacy_reader, target_store, fast_config).run()

        assert result.succeeded
        assert result.stats.total == 2
        assert result.stats.skipped == 1
        assert result.stats.created == 0
        assert result.stats.failed == 1
        assert len(target_store.insert_calls) == calls_after_first_run
        assert len(target_store.rows("offices")) == 1
        assert len(target_store.rows("doctor_offices")) == 1


class TestWriteFailures:
    """Tests for batches the target rejects."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, legacy_reader, target_store, fast_config):
        seed_profiles(target_store)
        target_store.fail_next_inserts(2)

        result = await offices_migrator(legacy_reader, target_store, fast_config).run()

        assert result.stats.created == 1
        assert target_store.insert_calls.count(("offices", 1)) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_batch_but_run_completes(
        self, legacy_reader, target_store, attempts, fast_config
    ):
        seed_profiles(target_store)
        target_store.fail_next_inserts(3, RuntimeError("connection reset"))

        result = await offices_migrator(
            legacy_reader, target_store, fast_config, attempts=attempts
        ).run()

        assert result.succeeded
        assert result.stats.created == 0
        assert result.stats.failed == 2
        attempt = await attempts.get(EntityType.OFFICES, 100)
        assert attempt.status == MigrationAttemptStatus.FAILED
        assert attempt.error == "connection reset"


class TestFailedRuns:
    """Tests for runs that end in FAILED."""

    @pytest.mark.asyncio
    async def test_validation_mismatch(self, legacy_reader, target_store, migration_log, fast_config):
        # migrated earlier from a legacy row that no longer exists
        target_store.seed("offices", [{"name": "Closed", "legacy_office_id": 999}])
        migrator = offices_migrator(legacy_reader, target_store, fast_config, migration_log=migration_log)

        with pytest.raises(ValidationMismatchError) as exc_info:
            await migrator.run()

        error = exc_info.value
        assert error.expected == 1
        assert error.actual == 2
        assert error.phase == MigrationPhase.POST_VALIDATING
        assert error.migration_id == migrator.migration_id
        assert migrator.result.final_phase == MigrationPhase.FAILED
        assert migrator.result.stats.created == 1
        [entry] = migration_log.entries
        assert entry.status == "failed"
        assert entry.phase_name == "post_validating"

    @pytest.mark.asyncio
    async def test_source_unavailable(self, target_store, migration_log, fast_config):
        reader = InMemoryLegacyReader(legacy_tables(), available=False)
        migrator = offices_migrator(reader, target_store, fast_config, migration_log=migration_log)

        with pytest.raises(SourceUnavailableError) as exc_info:
            await migrator.run()

        assert exc_info.value.phase == MigrationPhase.VALIDATING
        assert exc_info.value.entity_type == EntityType.OFFICES
        assert migrator.phase == MigrationPhase.FAILED
        assert migrator.result.stats.total == 0
        assert target_store.insert_calls == []
        assert migration_log.entries[0].status == "failed"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped(self, target_store, fast_config):
        reader = FailingReader(legacy_tables(), content_types=legacy_content_types())
        migrator = offices_migrator(reader, target_store, fast_config)

        with pytest.raises(MigrationError) as exc_info:
            await migrator.run()

        assert exc_info.value.phase == MigrationPhase.FETCHING
        assert "cursor closed" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, RuntimeError)


class TestBookkeeping:
    """Tests for attempt markers, the migration log and embedding enqueue."""

    @pytest.mark.asyncio
    async def test_attempt_markers(self, legacy_reader, target_store, attempts, fast_config):
        seed_profiles(target_store)

        await offices_migrator(legacy_reader, target_store, fast_config, attempts=attempts).run()

        written = await attempts.get(EntityType.OFFICES, 100)
        rejected = await attempts.get(EntityType.OFFICES, 101)
        assert written.status == MigrationAttemptStatus.SUCCEEDED
        assert written.target_id == target_store.rows("offices")[0]["id"]
        assert rejected.status == MigrationAttemptStatus.FAILED
        assert rejected.error == "Office name is required"

    @pytest.mark.asyncio
    async def test_attempt_markers_can_be_disabled(self, legacy_reader, target_store, attempts):
        config = MigratorConfig(retry_delay_ms=0, record_attempts=False)

        await offices_migrator(legacy_reader, target_store, config, attempts=attempts).run()

        assert await attempts.summary(EntityType.OFFICES) == {}

    @pytest.mark.asyncio
    async def test_migration_log_entry(self, legacy_reader, target_store, migration_log, fast_config):
        migrator = offices_migrator(
            legacy_reader, target_store, fast_config, migration_log=migration_log
        )

        await migrator.run()

        [entry] = await migration_log.list_for_migration(migrator.migration_id)
        assert entry.status == "completed"
        assert entry.phase_name == "done"
        assert entry.records_processed == 2
        assert entry.records_successful == 1
        assert entry.records_failed == 1
        assert entry.metadata["config"]["batch_size"] == 100
        assert entry.metadata["stats"]["created"] == 1

    @pytest.mark.asyncio
    async def test_log_failure_does_not_fail_run(self, legacy_reader, target_store, fast_config):
        log = AsyncMock()
        log.record.side_effect = RuntimeError("log table missing")

        result = await offices_migrator(
            legacy_reader, target_store, fast_config, migration_log=log
        ).run()

        assert result.succeeded

    @pytest.mark.asyncio
    async def test_embeddable_rows_are_queued(
        self, legacy_reader, target_store, embedding_queue, fast_config
    ):
        migrator = EmbeddableOfficesMigrator(
            legacy_reader,
            target_store,
            config=fast_config,
            embedding_queue=embedding_queue,
            enable_tracing=False,
        )

        await migrator.run()

        [item] = embedding_queue.items
        assert item.source_table == "offices"
        assert item.source_id == target_store.rows("offices")[0]["id"]
        assert item.operation == "insert"

    @pytest.mark.asyncio
    async def test_non_embeddable_rows_are_not_queued(
        self, legacy_reader, target_store, embedding_queue, fast_config
    ):
        await offices_migrator(
            legacy_reader, target_store, fast_config, embedding_queue=embedding_queue
        ).run()

        assert embedding_queue.items == []

    @pytest.mark.asyncio
    async def test_enqueue_failure_does_not_fail_run(self, legacy_reader, target_store, fast_config):
        queue = AsyncMock()
        queue.enqueue_many.side_effect = RuntimeError("queue table missing")
        migrator = EmbeddableOfficesMigrator(
            legacy_reader, target_store, config=fast_config, embedding_queue=queue, enable_tracing=False
        )

        result = await migrator.run()

        assert result.succeeded
        assert result.stats.created == 1


class TestReadiness:
    """Tests for validate_readiness."""

    @pytest.mark.asyncio
    async def test_missing_dependency(self, legacy_reader, target_store, fast_config):
        report = await offices_migrator(legacy_reader, target_store, fast_config).validate_readiness()

        assert not report.is_ready
        assert report.issues == ["No migrated profiles found in target database"]
        assert report.recommendations == ["Run the profiles migration first"]
        assert target_store.insert_calls == []

    @pytest.mark.asyncio
    async def test_ready_with_already_migrated_rows(self, legacy_reader, target_store, fast_config):
        seed_profiles(target_store)
        target_store.seed("offices", [{"name": "Main", "legacy_office_id": 100}])

        report = await offices_migrator(legacy_reader, target_store, fast_config).validate_readiness()

        assert report.is_ready
        assert report.recommendations == ["1 offices records already migrated; they will be skipped"]

    @pytest.mark.asyncio
    async def test_empty_legacy_table(self, target_store, fast_config):
        seed_profiles(target_store)
        reader = InMemoryLegacyReader({})

        report = await offices_migrator(reader, target_store, fast_config).validate_readiness()

        assert report.issues == ["No dispatch_office records found in legacy database"]

    @pytest.mark.asyncio
    async def test_unreachable_stores(self, fast_config):
        from legacymigrate.targets import InMemoryTargetStore

        reader = InMemoryLegacyReader(available=False)
        store = InMemoryTargetStore(available=False)

        report = await offices_migrator(reader, store, fast_config).validate_readiness()

        assert len(report.issues) == 2
        assert report.issues[0].startswith("Legacy database unavailable:")
        assert report.issues[1].startswith("Target database unavailable:")
