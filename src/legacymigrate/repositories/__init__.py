"""
Bookkeeping repositories: attempt markers and the migration log.

Each repository has a PostgreSQL implementation and an in-memory one
for tests.
"""

from legacymigrate.repositories._connection import execute_with_connection
from legacymigrate.repositories.attempts import (
    InMemoryMigrationAttemptRepository,
    MigrationAttemptRepository,
    PostgreSQLMigrationAttemptRepository,
)
from legacymigrate.repositories.migration_log import (
    InMemoryMigrationLogRepository,
    MigrationLogRepository,
    PostgreSQLMigrationLogRepository,
)

__all__ = [
    "execute_with_connection",
    # Attempt markers
    "MigrationAttemptRepository",
    "PostgreSQLMigrationAttemptRepository",
    "InMemoryMigrationAttemptRepository",
    # Migration log
    "MigrationLogRepository",
    "PostgreSQLMigrationLogRepository",
    "InMemoryMigrationLogRepository",
]
