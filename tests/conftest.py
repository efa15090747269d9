"""
Shared pytest fixtures for the legacymigrate tests.

This module provides:
- In-memory components (legacy_reader, target_store, lookups, repositories)
  loaded with the sample data from tests.fixtures
- A zero-delay MigratorConfig so retry tests do not sleep
- SQLite fixtures (sqlite_engine) for the SQL-backed implementations
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio

from legacymigrate.config import MigratorConfig
from legacymigrate.embeddings import InMemoryEmbeddingQueue
from legacymigrate.lookup import IdLookupIndex
from legacymigrate.repositories import (
    InMemoryMigrationAttemptRepository,
    InMemoryMigrationLogRepository,
)
from legacymigrate.sources import InMemoryLegacyReader
from legacymigrate.targets import InMemoryTargetStore
from tests.fixtures import legacy_content_types, legacy_tables

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# =============================================================================
# In-Memory Component Fixtures
# =============================================================================


@pytest.fixture
def legacy_reader() -> InMemoryLegacyReader:
    """Provide a legacy reader serving the full sample dataset."""
    return InMemoryLegacyReader(legacy_tables(), content_types=legacy_content_types())


@pytest.fixture
def target_store() -> InMemoryTargetStore:
    """Provide an empty in-memory target store."""
    return InMemoryTargetStore()


@pytest.fixture
def lookups() -> IdLookupIndex:
    return IdLookupIndex()


@pytest.fixture
def attempts() -> InMemoryMigrationAttemptRepository:
    return InMemoryMigrationAttemptRepository()


@pytest.fixture
def migration_log() -> InMemoryMigrationLogRepository:
    return InMemoryMigrationLogRepository()


@pytest.fixture
def embedding_queue() -> InMemoryEmbeddingQueue:
    return InMemoryEmbeddingQueue()


@pytest.fixture
def fast_config() -> MigratorConfig:
    """
    Provide a MigratorConfig that never sleeps between retries.

    Returns:
        MigratorConfig with retry_delay_ms=0.
    """
    return MigratorConfig(batch_size=100, max_retries=3, retry_delay_ms=0)


# =============================================================================
# SQLite Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[Any, None]:
    """
    Provide an async SQLAlchemy engine on a fresh in-memory SQLite database.

    All connections share one database (StaticPool). The engine is
    disposed after the test.

    Yields:
        AsyncEngine
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    yield engine
    await engine.dispose()
