"""
dispatch_state -> instruction_states (+ order_state_history).
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from typing import Any

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import EntityType, LegacyRecord
from legacymigrate.transformers.states import InstructionStateTransformer


def state_transitions(records: Sequence[LegacyRecord]) -> dict[int, dict[str, Any]]:
    """
    Previous status and time since it, per state change.

    State changes are grouped by instruction and ordered by ``changed_at``
    (then id). The first change of an instruction has no previous status.

    Returns:
        Mapping of state id to ``{"previous_status", "duration_minutes"}``.
    """
    by_instruction: dict[Any, list[LegacyRecord]] = defaultdict(list)
    for record in records:
        by_instruction[record.get("instruction_id")].append(record)

    transitions: dict[int, dict[str, Any]] = {}
    for history in by_instruction.values():
        history.sort(key=lambda r: (r.get("changed_at") is None, r.get("changed_at"), r["id"]))
        previous: LegacyRecord | None = None
        for record in history:
            duration = None
            if previous is not None and previous.get("changed_at") and record.get("changed_at"):
                delta = record["changed_at"] - previous["changed_at"]
                duration = delta.total_seconds() / 60
            transitions[record["id"]] = {
                "previous_status": previous.get("status") if previous else None,
                "duration_minutes": duration,
            }
            previous = record
    return transitions


class InstructionStatesMigrator(MigrationOrchestrator):
    """Migrates state changes and records each one as order state history."""

    entity_type = EntityType.INSTRUCTION_STATES
    transformer = InstructionStateTransformer()
    required_lookups = (EntityType.ORDERS,)
    optional_lookups = (EntityType.PROFILES, EntityType.ORDER_STATES)
    distribution_fields = ("status_code",)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._transitions: dict[int, dict[str, Any]] = {}

    async def load_enhancements(self, records: Sequence[LegacyRecord]) -> None:
        self._transitions = state_transitions(records)

    async def enhance(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for record in records:
            record.update(self._transitions.get(record["id"], {}))
        return records


__all__ = ["InstructionStatesMigrator", "state_transitions"]
