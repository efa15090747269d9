"""
Target-side components: the store abstraction and the writers built on it.
"""

from legacymigrate.targets.store import (
    RELATIONSHIP_UNIQUE_KEYS,
    InMemoryTargetStore,
    PostgreSQLTargetStore,
    TargetStore,
)
from legacymigrate.targets.writer import (
    BatchWriter,
    RelationshipOutcome,
    RelationshipStitcher,
)

__all__ = [
    "TargetStore",
    "PostgreSQLTargetStore",
    "InMemoryTargetStore",
    "RELATIONSHIP_UNIQUE_KEYS",
    "BatchWriter",
    "RelationshipOutcome",
    "RelationshipStitcher",
]
