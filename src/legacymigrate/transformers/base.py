"""
Base class and shared helpers for entity transformers.

A transformer maps one legacy record to one candidate target row. It is
a pure function of the record and the TransformContext: no I/O, and no
exception escapes ``transform``. Anything that goes wrong while mapping
is captured as a blocking error on the MappingResult.

Foreign keys are resolved through the context's IdLookupIndex:
    - resolve_required: unresolved id becomes a blocking error
    - resolve_optional: unresolved id becomes a warning, field left null
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any

from legacymigrate.exceptions import TransformError
from legacymigrate.lookup import IdLookupIndex
from legacymigrate.models import EntityType, LegacyKey, LegacyRecord, MappingResult

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_GENDERS = {
    "m": "Male",
    "male": "Male",
    "f": "Female",
    "female": "Female",
    "o": "Other",
    "other": "Other",
}


@dataclass(frozen=True)
class TransformContext:
    """
    Everything a transformer may read besides the record itself.

    ``migrated_at`` is fixed for the whole run so that transforming the
    same record twice yields identical output.

    Attributes:
        lookups: Per-run legacy id -> target id index.
        migrated_at: Timestamp recorded in provenance metadata.
        validate_data: Apply required-field validation.
        options: Transformer-specific switches (e.g. ``generate_order_numbers``).
    """

    lookups: IdLookupIndex
    migrated_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    validate_data: bool = True
    options: Mapping[str, Any] = field(default_factory=dict)

    def option(self, name: str, default: Any = None) -> Any:
        return self.options.get(name, default)

    @property
    def migrated_at_iso(self) -> str:
        return self.migrated_at.isoformat()


def sanitize_string(value: Any) -> str | None:
    """Strip a string; empty or non-string values become None."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def sanitize_email(value: Any) -> str | None:
    """Lower-case and validate an email address; invalid values become None."""
    if not isinstance(value, str):
        return None
    candidate = value.strip().lower()
    if not EMAIL_PATTERN.match(candidate):
        return None
    return candidate


def normalize_gender(value: Any) -> str | None:
    """Map legacy sex codes (M/F/O or spelled out) to Male/Female/Other."""
    if not isinstance(value, str):
        return None
    return _GENDERS.get(value.strip().lower())


def isoformat(value: Any) -> Any:
    """Render dates as ISO 8601 strings for metadata; other values pass through."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def resolve_required(
    result: MappingResult,
    context: TransformContext,
    entity_type: EntityType,
    legacy_id: LegacyKey | None,
    error: str,
) -> str | None:
    """
    Resolve a foreign key the target row cannot exist without.

    Appends ``error`` to the result when the id is missing or unresolved.
    """
    target_id = context.lookups.resolve(entity_type, legacy_id)
    if target_id is None:
        result.errors.append(error)
        result.unresolved_foreign_keys += 1
    return target_id


def resolve_optional(
    result: MappingResult,
    context: TransformContext,
    entity_type: EntityType,
    legacy_id: LegacyKey | None,
    warning: str,
) -> str | None:
    """
    Resolve a nullable foreign key.

    A missing legacy id is silently null. A legacy id that is not in the
    index appends ``warning`` and leaves the field null.
    """
    if legacy_id is None:
        return None
    target_id = context.lookups.resolve(entity_type, legacy_id)
    if target_id is None:
        result.warnings.append(warning)
        result.unresolved_foreign_keys += 1
    return target_id


class EntityTransformer(ABC):
    """
    Base class for per-entity transformers.

    Subclasses implement ``map_record``, filling ``result.target`` and
    appending errors, warnings and relationships. ``transform`` wraps it
    so that no exception escapes.

    Example:
        >>> class CourseTransformer(EntityTransformer):
        ...     entity_type = EntityType.ORDER_TYPES
        ...
        ...     def map_record(self, record, result, context):
        ...         result.target["name"] = sanitize_string(record.get("name"))
    """

    entity_type: EntityType

    def transform(self, record: LegacyRecord, context: TransformContext) -> MappingResult:
        """
        Map one legacy record.

        Args:
            record: Legacy row, plus any enhancement fields.
            context: Lookups and run-wide settings.

        Returns:
            MappingResult; ``is_valid`` is False when it carries errors.
        """
        legacy_id = record.get("id")
        result = MappingResult(legacy_id=legacy_id, legacy=record)  # type: ignore[arg-type]
        if legacy_id is None:
            result.errors.append("Legacy record has no id")
            return result
        try:
            self.map_record(record, result, context)
        except TransformError as e:
            result.errors.append(e.message)
        except Exception as e:
            logger.debug(
                "Unexpected error transforming %s %s", self.entity_type.value, legacy_id,
                exc_info=True,
            )
            result.errors.append(f"Transformation failed: {e}")
        return result

    @abstractmethod
    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        """Populate ``result`` from ``record``."""
        pass


__all__ = [
    "EntityTransformer",
    "TransformContext",
    "sanitize_string",
    "sanitize_email",
    "normalize_gender",
    "isoformat",
    "resolve_required",
    "resolve_optional",
    "EMAIL_PATTERN",
]
