"""
legacymigrate - Migrates the legacy Django dispatch database into Supabase.

This library provides:
- Legacy reader over the Django schema (SQLAlchemy async)
- ID lookup index mapping legacy ids to target UUIDs
- Pure per-entity transformers
- Batch writer with retry and a relationship stitcher
- Per-entity migration orchestrators and a dependency-ordered runner
- Optional embedding pipeline (Amazon Bedrock or a Dify knowledge base)
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("legacymigrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from legacymigrate.config import MigrationSettings, MigratorConfig
from legacymigrate.exceptions import (
    BatchWriteError,
    EmbeddingError,
    ErrorHandler,
    InvalidPhaseTransitionError,
    LookupBuildError,
    LookupConflictError,
    MigrationError,
    RelationshipWriteError,
    RetryConfig,
    SourceUnavailableError,
    TargetUnavailableError,
    TransformError,
    ValidationMismatchError,
)
from legacymigrate.lookup import IdLookupIndex, LookupLoader
from legacymigrate.migrators import (
    InstructionStatesMigrator,
    MessagesMigrator,
    MigrationOrchestrator,
    MigrationRunner,
    OfficesMigrator,
    OrdersMigrator,
    OrderTypesMigrator,
    ProfilesMigrator,
    ProjectsMigrator,
    RunnerResult,
)
from legacymigrate.models import (
    BatchResult,
    EntityType,
    MappingResult,
    MigrationPhase,
    MigrationRunResult,
    MigrationStats,
    MigrationStatsSnapshot,
    ReadinessReport,
)
from legacymigrate.progress import MigrationProgress, ProgressTracker
from legacymigrate.sources import InMemoryLegacyReader, LegacyReader, SQLAlchemyLegacyReader
from legacymigrate.targets import (
    BatchWriter,
    InMemoryTargetStore,
    PostgreSQLTargetStore,
    RelationshipStitcher,
    TargetStore,
)

__all__ = [
    "__version__",
    # Configuration
    "MigratorConfig",
    "MigrationSettings",
    # Exceptions
    "MigrationError",
    "SourceUnavailableError",
    "TargetUnavailableError",
    "LookupConflictError",
    "LookupBuildError",
    "TransformError",
    "BatchWriteError",
    "RelationshipWriteError",
    "ValidationMismatchError",
    "InvalidPhaseTransitionError",
    "EmbeddingError",
    "ErrorHandler",
    "RetryConfig",
    # Models
    "EntityType",
    "MigrationPhase",
    "MappingResult",
    "BatchResult",
    "MigrationStats",
    "MigrationStatsSnapshot",
    "MigrationRunResult",
    "ReadinessReport",
    # Components
    "LegacyReader",
    "SQLAlchemyLegacyReader",
    "InMemoryLegacyReader",
    "IdLookupIndex",
    "LookupLoader",
    "TargetStore",
    "PostgreSQLTargetStore",
    "InMemoryTargetStore",
    "BatchWriter",
    "RelationshipStitcher",
    "ProgressTracker",
    "MigrationProgress",
    # Migrators
    "MigrationOrchestrator",
    "ProfilesMigrator",
    "OfficesMigrator",
    "OrderTypesMigrator",
    "OrdersMigrator",
    "ProjectsMigrator",
    "InstructionStatesMigrator",
    "MessagesMigrator",
    "MigrationRunner",
    "RunnerResult",
]
