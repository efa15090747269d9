"""
Observability utilities for legacymigrate.

Provides composition-based tracing and standard span attribute names.

Note:
    OpenTelemetry is an optional dependency (``pip install legacymigrate[telemetry]``).
    All utilities in this module gracefully handle the case where it is not installed.
"""

from legacymigrate.observability.attributes import (
    ATTR_BATCH_NUMBER,
    ATTR_BATCH_SIZE,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_EMBEDDING_PROVIDER,
    ATTR_ENTITY_TYPE,
    ATTR_MIGRATION_ID,
    ATTR_RECORD_COUNT,
    ATTR_RETRY_COUNT,
    ATTR_SOURCE_TABLE,
)
from legacymigrate.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    "ATTR_BATCH_NUMBER",
    "ATTR_BATCH_SIZE",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_TABLE",
    "ATTR_EMBEDDING_PROVIDER",
    "ATTR_ENTITY_TYPE",
    "ATTR_MIGRATION_ID",
    "ATTR_RECORD_COUNT",
    "ATTR_RETRY_COUNT",
    "ATTR_SOURCE_TABLE",
]
