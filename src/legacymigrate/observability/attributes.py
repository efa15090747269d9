"""
Standard span attributes for legacymigrate.

These constants keep span attribute names consistent across the reader,
writers and orchestrators. Database attributes follow OpenTelemetry
semantic conventions.

Example:
    >>> from legacymigrate.observability.attributes import (
    ...     ATTR_ENTITY_TYPE,
    ...     ATTR_BATCH_SIZE,
    ... )
    >>>
    >>> with tracer.span(
    ...     "legacymigrate.batch_writer.write_batch",
    ...     {ATTR_ENTITY_TYPE: "offices", ATTR_BATCH_SIZE: 100},
    ... ):
    ...     pass
"""

# =============================================================================
# Migration Attributes
# =============================================================================

ATTR_MIGRATION_ID = "legacymigrate.migration.id"
"""Identifier of one orchestrator run (UUID string)."""

ATTR_ENTITY_TYPE = "legacymigrate.entity.type"
"""Entity type being migrated (e.g., 'offices', 'profiles')."""

ATTR_BATCH_NUMBER = "legacymigrate.batch.number"
"""1-based batch number within a run."""

ATTR_BATCH_SIZE = "legacymigrate.batch.size"
"""Number of records submitted in one batch."""

ATTR_RECORD_COUNT = "legacymigrate.record.count"
"""Number of records read or written."""

ATTR_RETRY_COUNT = "legacymigrate.retry.count"
"""Number of retries performed."""

# =============================================================================
# Embedding Attributes
# =============================================================================

ATTR_EMBEDDING_PROVIDER = "legacymigrate.embedding.provider"
"""Embedding provider name ('bedrock' or 'dify')."""

ATTR_SOURCE_TABLE = "legacymigrate.embedding.source_table"
"""Target table whose row content is being embedded."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite')."""

ATTR_DB_TABLE = "db.sql.table"
"""Table the operation targets."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'SELECT', 'INSERT')."""

__all__ = [
    "ATTR_MIGRATION_ID",
    "ATTR_ENTITY_TYPE",
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_RECORD_COUNT",
    "ATTR_RETRY_COUNT",
    "ATTR_EMBEDDING_PROVIDER",
    "ATTR_SOURCE_TABLE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_TABLE",
    "ATTR_DB_OPERATION",
]
