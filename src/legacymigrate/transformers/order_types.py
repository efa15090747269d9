"""
dispatch_course -> order_types, plus the fixed order_states reference rows.
"""

from __future__ import annotations

import re
from typing import Any

from legacymigrate.models import EntityType, LegacyRecord, MappingResult
from legacymigrate.transformers.base import EntityTransformer, TransformContext, sanitize_string

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

# key, name, description, color, sequence, initial, final
_ORDER_STATES: tuple[tuple[str, str, str, str, int, bool, bool], ...] = (
    ("submitted", "Submitted", "Order has been submitted", "#3B82F6", 1, True, False),
    ("in_progress", "In Progress", "Order is being processed", "#F59E0B", 2, False, False),
    ("completed", "Completed", "Order has been completed", "#10B981", 3, False, True),
    ("cancelled", "Cancelled", "Order has been cancelled", "#EF4444", 4, False, True),
)


def order_type_key(name: str) -> str:
    """
    Derive a stable key from a course name.

    Example:
        >>> order_type_key("Clear Aligners (Full)")
        'clear_aligners_full'
    """
    return _NON_ALNUM.sub("_", name.lower()).strip("_")[:50]


def default_order_states() -> list[dict[str, Any]]:
    """Reference rows for order_states, keyed by ``key``."""
    return [
        {
            "key": key,
            "name": name,
            "description": description,
            "color": color,
            "sequence_order": sequence,
            "is_initial": initial,
            "is_final": final,
            "is_active": True,
            "metadata": {},
        }
        for key, name, description, color, sequence, initial, final in _ORDER_STATES
    ]


class OrderTypeTransformer(EntityTransformer):
    """Maps legacy courses to order types."""

    entity_type = EntityType.ORDER_TYPES

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        name = sanitize_string(record.get("name"))
        if name is None:
            result.errors.append("Course name is required")
            return

        result.target = {
            "legacy_course_id": record["id"],
            "name": name,
            "key": order_type_key(name) or f"course_{record['id']}",
            "description": sanitize_string(record.get("description")),
            "category": sanitize_string(record.get("category")),
            "schema": None,
            "is_active": bool(record.get("is_active", True)),
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
        }


__all__ = ["OrderTypeTransformer", "order_type_key", "default_order_states"]
