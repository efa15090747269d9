"""
ID lookup index - legacy identifier to target identifier mappings.

The index is scoped to one migration run and passed explicitly to every
component that needs it. It is never a module-level singleton, so two
runs (or two tests) can never see each other's mappings.

Invariant: an entry exists only for target rows that have been durably
written, either in an earlier run (loaded from the target store) or in
this run (registered by the orchestrator after a successful batch).
Lookups are pure dictionary reads; nothing here guesses an id.

Usage:
    >>> index = IdLookupIndex()
    >>> loader = LookupLoader(target_store)
    >>> await loader.ensure(index, [EntityType.PROFILES])
    >>> index.resolve(EntityType.PROFILES, 42)
    '0b6f...'
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from legacymigrate.exceptions import LookupBuildError, LookupConflictError
from legacymigrate.models import EntityType, LegacyKey

if TYPE_CHECKING:
    from legacymigrate.targets.store import TargetStore

logger = logging.getLogger(__name__)


class IdLookupIndex:
    """
    Per-run mapping from (entity type, legacy id) to target id.

    Example:
        >>> index = IdLookupIndex()
        >>> index.register(EntityType.OFFICES, 7, "office-uuid")
        >>> index.resolve(EntityType.OFFICES, 7)
        'office-uuid'
        >>> index.resolve(EntityType.OFFICES, 8) is None
        True
    """

    def __init__(self) -> None:
        self._maps: dict[EntityType, dict[LegacyKey, str]] = {}
        self._loaded: set[EntityType] = set()

    def register(self, entity_type: EntityType, legacy_id: LegacyKey, target_id: str) -> None:
        """
        Record that legacy_id was written as target_id.

        Registering the same pair twice is a no-op.

        Raises:
            LookupConflictError: If legacy_id is already mapped to a different target id.
        """
        mapping = self._maps.setdefault(entity_type, {})
        existing = mapping.get(legacy_id)
        if existing is None:
            mapping[legacy_id] = target_id
        elif existing != target_id:
            raise LookupConflictError(entity_type, legacy_id, existing, target_id)

    def resolve(self, entity_type: EntityType, legacy_id: LegacyKey | None) -> str | None:
        """
        Look up the target id for a legacy id.

        Returns:
            The registered target id, or None if absent (or legacy_id is None).
        """
        if legacy_id is None:
            return None
        return self._maps.get(entity_type, {}).get(legacy_id)

    def contains(self, entity_type: EntityType, legacy_id: LegacyKey) -> bool:
        return legacy_id in self._maps.get(entity_type, {})

    def size(self, entity_type: EntityType) -> int:
        return len(self._maps.get(entity_type, {}))

    def is_loaded(self, entity_type: EntityType) -> bool:
        """True once the entity's existing target rows have been loaded."""
        return entity_type in self._loaded

    def mark_loaded(self, entity_type: EntityType) -> None:
        self._loaded.add(entity_type)

    def snapshot(self) -> dict[str, int]:
        """Entry counts per entity type, for logging."""
        return {entity_type.value: len(m) for entity_type, m in self._maps.items()}


class LookupLoader:
    """
    Populates an IdLookupIndex from rows already in the target store.

    Each entity type is queried at most once per index: the first
    ``ensure`` call loads it and marks it loaded, later calls skip it.
    Because it reads whatever the target already holds, rerunning a
    migration automatically picks up prior progress.
    """

    def __init__(self, target_store: TargetStore) -> None:
        self._store = target_store

    async def ensure(self, index: IdLookupIndex, entity_types: Iterable[EntityType]) -> None:
        """
        Load every requested entity type that is not loaded yet.

        Args:
            index: Index to populate.
            entity_types: Entity types the caller is about to dereference.

        Raises:
            LookupBuildError: If the target store query fails.
            LookupConflictError: If loaded rows disagree with registered ones.
        """
        for entity_type in entity_types:
            if index.is_loaded(entity_type):
                continue

            try:
                rows = await self._store.fetch_legacy_id_map(
                    entity_type.target_table,
                    entity_type.legacy_id_column,
                )
            except LookupBuildError:
                raise
            except Exception as e:
                raise LookupBuildError(entity_type, str(e)) from e

            for legacy_id, target_id in rows.items():
                index.register(entity_type, legacy_id, target_id)
            index.mark_loaded(entity_type)

            logger.info(
                "Loaded %d existing %s mappings from %s.%s",
                len(rows),
                entity_type.value,
                entity_type.target_table,
                entity_type.legacy_id_column,
            )


__all__ = [
    "IdLookupIndex",
    "LookupLoader",
]
