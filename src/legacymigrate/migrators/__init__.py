"""
Per-entity migration orchestrators and the runner that sequences them.
"""

from legacymigrate.migrators.base import LEGACY_COUNT_KEYS, MigrationOrchestrator, RateLimiter
from legacymigrate.migrators.messages import MessagesMigrator
from legacymigrate.migrators.offices import OfficesMigrator
from legacymigrate.migrators.order_types import OrderTypesMigrator
from legacymigrate.migrators.orders import OrdersMigrator
from legacymigrate.migrators.profiles import ProfilesMigrator
from legacymigrate.migrators.projects import ProjectsMigrator
from legacymigrate.migrators.runner import (
    MIGRATION_ORDER,
    MIGRATORS,
    MigrationRunner,
    RunnerResult,
)
from legacymigrate.migrators.states import InstructionStatesMigrator

__all__ = [
    "MigrationOrchestrator",
    "RateLimiter",
    "LEGACY_COUNT_KEYS",
    "ProfilesMigrator",
    "OfficesMigrator",
    "OrderTypesMigrator",
    "OrdersMigrator",
    "ProjectsMigrator",
    "InstructionStatesMigrator",
    "MessagesMigrator",
    "MigrationRunner",
    "RunnerResult",
    "MIGRATION_ORDER",
    "MIGRATORS",
]
