"""
Unit tests for execute_with_connection.

Tests cover:
- Engines get a transaction or a bare connection
- Connections are passed through untouched
- A failing transactional block rolls back
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import text

from legacymigrate.repositories import execute_with_connection


class TestExecuteWithConnection:
    """Tests for execute_with_connection."""

    @pytest.mark.asyncio
    async def test_connection_passed_through(self):
        conn = AsyncMock()

        async with execute_with_connection(conn) as yielded:
            assert yielded is conn

        conn.begin.assert_not_called()
        conn.commit.assert_not_called()

    @pytest.mark.sqlite
    @pytest.mark.asyncio
    async def test_transactional_commits(self, sqlite_engine):
        async with execute_with_connection(sqlite_engine) as conn:
            await conn.execute(text("CREATE TABLE t (id INTEGER PRIMARY KEY)"))
            await conn.execute(text("INSERT INTO t (id) VALUES (1)"))

        async with execute_with_connection(sqlite_engine, transactional=False) as conn:
            rows = (await conn.execute(text("SELECT id FROM t"))).fetchall()

        assert [row[0] for row in rows] == [1]

    @pytest.mark.sqlite
    @pytest.mark.asyncio
    async def test_failed_block_rolls_back(self, sqlite_engine):
        async with execute_with_connection(sqlite_engine) as conn:
            await conn.execute(text("CREATE TABLE t (id INTEGER PRIMARY KEY)"))

        with pytest.raises(RuntimeError):
            async with execute_with_connection(sqlite_engine) as conn:
                await conn.execute(text("INSERT INTO t (id) VALUES (1)"))
                raise RuntimeError("abort")

        async with execute_with_connection(sqlite_engine, transactional=False) as conn:
            rows = (await conn.execute(text("SELECT id FROM t"))).fetchall()

        assert rows == []
