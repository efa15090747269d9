"""
Legacy (source) database access.
"""

from legacymigrate.sources.legacy import (
    LEGACY_QUERIES,
    RECORD_COUNT_TABLES,
    InMemoryLegacyReader,
    LegacyReader,
    SQLAlchemyLegacyReader,
)

__all__ = [
    "LegacyReader",
    "SQLAlchemyLegacyReader",
    "InMemoryLegacyReader",
    "LEGACY_QUERIES",
    "RECORD_COUNT_TABLES",
]
