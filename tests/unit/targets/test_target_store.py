"""
Unit tests for the target stores.

Tests cover:
- InMemoryTargetStore unique keys, failure injection and queries
- PostgreSQLTargetStore SQL against an in-memory SQLite database
"""

import json

import pytest
from sqlalchemy import text

from legacymigrate.exceptions import TargetUnavailableError
from legacymigrate.observability import MockTracer
from legacymigrate.targets import InMemoryTargetStore, PostgreSQLTargetStore, TargetStore


class TestInMemoryTargetStore:
    """Tests for InMemoryTargetStore."""

    def test_satisfies_protocol(self, target_store):
        assert isinstance(target_store, TargetStore)

    @pytest.mark.asyncio
    async def test_insert_assigns_ids_in_order(self, target_store):
        ids = await target_store.insert_rows(
            "offices",
            [{"name": "A", "legacy_office_id": 1}, {"name": "B", "legacy_office_id": 2}],
        )

        rows = target_store.rows("offices")
        assert [row["id"] for row in rows] == ids
        assert len(set(ids)) == 2
        assert target_store.insert_calls == [("offices", 2)]

    @pytest.mark.asyncio
    async def test_keeps_supplied_id(self, target_store):
        ids = await target_store.insert_rows("offices", [{"id": "fixed", "name": "A"}])
        assert ids == ["fixed"]

    @pytest.mark.asyncio
    async def test_empty_insert_is_noop(self, target_store):
        assert await target_store.insert_rows("offices", []) == []
        assert target_store.insert_calls == []

    @pytest.mark.asyncio
    async def test_duplicate_legacy_id_rejects_whole_call(self, target_store):
        await target_store.insert_rows("offices", [{"name": "A", "legacy_office_id": 1}])

        with pytest.raises(ValueError, match="unique constraint"):
            await target_store.insert_rows(
                "offices",
                [{"name": "B", "legacy_office_id": 2}, {"name": "C", "legacy_office_id": 1}],
            )

        assert len(target_store.rows("offices")) == 1

    @pytest.mark.asyncio
    async def test_null_legacy_ids_are_not_unique(self, target_store):
        await target_store.insert_rows(
            "profiles",
            [
                {"legacy_user_id": 1, "legacy_patient_id": None},
                {"legacy_user_id": 2, "legacy_patient_id": None},
            ],
        )
        assert await target_store.count_with_legacy_id("profiles", "legacy_patient_id") == 0
        assert await target_store.count_with_legacy_id("profiles", "legacy_user_id") == 2

    @pytest.mark.asyncio
    async def test_doctor_office_pairs_are_unique(self, target_store):
        await target_store.insert_row("doctor_offices", {"doctor_id": "d", "office_id": "o"})

        with pytest.raises(ValueError):
            await target_store.insert_row("doctor_offices", {"doctor_id": "d", "office_id": "o"})

    @pytest.mark.asyncio
    async def test_fail_next_inserts(self, target_store):
        target_store.fail_next_inserts(1, RuntimeError("deadlock"))

        with pytest.raises(RuntimeError, match="deadlock"):
            await target_store.insert_rows("offices", [{"name": "A"}])

        await target_store.insert_rows("offices", [{"name": "A"}])
        assert len(target_store.rows("offices")) == 1

    @pytest.mark.asyncio
    async def test_fail_table(self, target_store):
        target_store.fail_table("doctor_offices")

        with pytest.raises(RuntimeError):
            await target_store.insert_row("doctor_offices", {"doctor_id": "d", "office_id": "o"})

        await target_store.insert_rows("offices", [{"name": "A"}])

    @pytest.mark.asyncio
    async def test_stored_rows_are_copies(self, target_store):
        row = {"name": "A", "settings": {"timezone": "UTC"}}
        await target_store.insert_rows("offices", [row])
        row["settings"]["timezone"] = "changed"

        assert target_store.rows("offices")[0]["settings"] == {"timezone": "UTC"}

    @pytest.mark.asyncio
    async def test_fetch_legacy_id_map_and_rows(self, target_store):
        ids = target_store.seed(
            "offices",
            [{"name": "A", "legacy_office_id": 1}, {"name": "B", "legacy_office_id": None}],
        )

        assert await target_store.fetch_legacy_id_map("offices", "legacy_office_id") == {
            1: ids[0]
        }
        fetched = await target_store.fetch_rows("offices", [ids[1]])
        assert [row["name"] for row in fetched] == ["B"]

    @pytest.mark.asyncio
    async def test_check_connection(self):
        await InMemoryTargetStore().check_connection()
        with pytest.raises(TargetUnavailableError):
            await InMemoryTargetStore(available=False).check_connection()


OFFICES_DDL = """
    CREATE TABLE offices (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        settings TEXT,
        legacy_office_id INTEGER UNIQUE
    )
"""


@pytest.mark.sqlite
class TestPostgreSQLTargetStoreOnSQLite:
    """Tests for PostgreSQLTargetStore SQL using SQLite."""

    @pytest.mark.asyncio
    async def test_insert_and_query(self, sqlite_engine):
        async with sqlite_engine.begin() as conn:
            await conn.execute(text(OFFICES_DDL))
        store = PostgreSQLTargetStore(sqlite_engine, enable_tracing=False)

        ids = await store.insert_rows(
            "offices",
            [
                {"name": "Main", "legacy_office_id": 100, "settings": {"timezone": "UTC"}},
                {"name": "Manual", "legacy_office_id": None},
            ],
        )

        assert len(ids) == 2
        assert await store.count_with_legacy_id("offices", "legacy_office_id") == 1
        assert await store.fetch_legacy_id_map("offices", "legacy_office_id") == {100: ids[0]}

        rows = await store.fetch_rows("offices", [ids[0]])
        assert rows[0]["name"] == "Main"
        assert json.loads(rows[0]["settings"]) == {"timezone": "UTC"}

    @pytest.mark.asyncio
    async def test_failed_multi_row_insert_writes_nothing(self, sqlite_engine):
        async with sqlite_engine.begin() as conn:
            await conn.execute(text(OFFICES_DDL))
        store = PostgreSQLTargetStore(sqlite_engine, enable_tracing=False)
        await store.insert_rows("offices", [{"name": "Main", "legacy_office_id": 100}])

        with pytest.raises(Exception):  # noqa: B017
            await store.insert_rows(
                "offices",
                [
                    {"name": "Second", "legacy_office_id": 101},
                    {"name": "Duplicate", "legacy_office_id": 100},
                ],
            )

        assert await store.count_with_legacy_id("offices", "legacy_office_id") == 1

    @pytest.mark.asyncio
    async def test_traces_inserts(self, sqlite_engine):
        async with sqlite_engine.begin() as conn:
            await conn.execute(text(OFFICES_DDL))
        tracer = MockTracer()
        store = PostgreSQLTargetStore(sqlite_engine, tracer=tracer)

        await store.insert_rows("offices", [{"name": "Main"}])

        assert "legacymigrate.target_store.insert_rows" in tracer.span_names

    @pytest.mark.asyncio
    async def test_rejects_unsafe_identifiers(self, sqlite_engine):
        store = PostgreSQLTargetStore(sqlite_engine, enable_tracing=False)
        with pytest.raises(ValueError, match="Invalid SQL identifier"):
            await store.insert_rows("offices; DROP TABLE x", [{"name": "A"}])

    @pytest.mark.asyncio
    async def test_check_connection(self, sqlite_engine):
        await PostgreSQLTargetStore(sqlite_engine, enable_tracing=False).check_connection()

    def test_schema_must_be_identifier(self, sqlite_engine):
        with pytest.raises(ValueError):
            PostgreSQLTargetStore(sqlite_engine, schema="public;")
