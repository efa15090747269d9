"""
dispatch_state -> instruction_states (+ order_state_history).

A legacy state row records one status change of an instruction. Besides
the instruction_states row, each change is also declared as an
order_state_history transition. The enhancement step adds, per row:
    - ``previous_status``: status of the preceding change of the same
      instruction (ordered by changed_at), or None for the first one
    - ``duration_minutes``: minutes since that preceding change
"""

from __future__ import annotations

from legacymigrate.models import EntityType, LegacyRecord, MappingResult, PendingRelationship
from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    resolve_optional,
)

ORDER_STATE_HISTORY_TABLE = "order_state_history"

STATUS_TO_ORDER_STATE: dict[int, str] = {
    1: "submitted",
    2: "in_progress",
    3: "in_progress",
    4: "completed",
    5: "cancelled",
}


def order_state_key(status: int | None) -> str | None:
    if status is None:
        return None
    return STATUS_TO_ORDER_STATE.get(status)


class InstructionStateTransformer(EntityTransformer):
    """Maps legacy state changes to instruction_states and order history."""

    entity_type = EntityType.INSTRUCTION_STATES

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        instruction_id = record.get("instruction_id")
        order_id = context.lookups.resolve(EntityType.ORDERS, instruction_id)
        if order_id is None:
            result.errors.append(f"Missing order_id for instruction {instruction_id}")
            result.unresolved_foreign_keys += 1

        actor_id = record.get("actor_id")
        changed_by_id = resolve_optional(
            result,
            context,
            EntityType.PROFILES,
            actor_id,
            f"Actor ID {actor_id} not found in profiles",
        )

        result.target = {
            "legacy_state_id": record["id"],
            "order_id": order_id,
            "status_code": record.get("status"),
            "is_active": bool(record.get("on")),
            "changed_by_id": changed_by_id,
            "changed_at": record.get("changed_at"),
            "legacy_instruction_id": instruction_id,
            "legacy_actor_id": actor_id,
        }

        if not context.option("create_state_history", True) or order_id is None:
            return

        to_state_id = context.lookups.resolve(
            EntityType.ORDER_STATES, order_state_key(record.get("status"))
        )
        if to_state_id is None:
            result.warnings.append("Skipping order_state_history - missing to_state_id")
            return

        from_state_id = context.lookups.resolve(
            EntityType.ORDER_STATES, order_state_key(record.get("previous_status"))
        )
        duration = record.get("duration_minutes")
        result.relationships.append(
            PendingRelationship(
                table=ORDER_STATE_HISTORY_TABLE,
                attributes={
                    "order_id": order_id,
                    "from_state_id": from_state_id,
                    "to_state_id": to_state_id,
                    "changed_by_id": changed_by_id,
                    "duration_minutes": round(duration) if duration is not None else None,
                    "metadata": {
                        "legacy_state_id": record["id"],
                        "legacy_status": record.get("status"),
                    },
                    "created_at": record.get("changed_at"),
                },
            )
        )


__all__ = [
    "InstructionStateTransformer",
    "STATUS_TO_ORDER_STATE",
    "ORDER_STATE_HISTORY_TABLE",
    "order_state_key",
]
