"""
dispatch_instruction -> orders.

Every foreign key of an order is required except the office: an
instruction without an office_id is migrated with a null office, but
one pointing at an office that was not migrated is rejected.
"""

from __future__ import annotations

from datetime import UTC, datetime

from legacymigrate.models import EntityType, LegacyRecord, MappingResult
from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    resolve_required,
    sanitize_string,
)

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def order_number(legacy_id: int, created_at: datetime | None, *, generate: bool = True) -> str:
    """
    Build the human-facing order number.

    ``ORD-{created_at epoch ms in base 36}-{legacy id, 6 digits}``, or
    ``ORD-{legacy id}`` when generation is disabled or the creation time
    is unknown. Deterministic for a given record.
    """
    if not generate or not isinstance(created_at, datetime):
        return f"ORD-{legacy_id}"
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)
    epoch_ms = int(created_at.timestamp() * 1000)
    return f"ORD-{to_base36(epoch_ms)}-{legacy_id:06d}"


class OrderTransformer(EntityTransformer):
    """Maps legacy instructions to orders."""

    entity_type = EntityType.ORDERS

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        patient_id = record.get("patient_id")
        patient_profile_id = context.lookups.resolve(EntityType.PATIENTS, patient_id)
        if patient_profile_id is None:
            patient_profile_id = resolve_required(
                result,
                context,
                EntityType.PROFILES,
                patient_id,
                f"Patient ID {patient_id} not found in profiles",
            )

        doctor_id = record.get("doctor_id")
        doctor_profile_id = resolve_required(
            result,
            context,
            EntityType.PROFILES,
            doctor_id,
            f"Doctor ID {doctor_id} not found in profiles",
        )

        office_id = record.get("office_id")
        office_target_id = None
        if office_id is not None:
            office_target_id = resolve_required(
                result,
                context,
                EntityType.OFFICES,
                office_id,
                f"Office ID {office_id} not found in offices",
            )

        course_id = record.get("course_id")
        order_type_id = resolve_required(
            result,
            context,
            EntityType.ORDER_TYPES,
            course_id,
            f"Course ID {course_id} not found in order types",
        )

        result.target = {
            "legacy_instruction_id": record["id"],
            "order_number": order_number(
                record["id"],
                record.get("created_at"),
                generate=context.option("generate_order_numbers", True),
            ),
            "patient_id": patient_profile_id,
            "doctor_id": doctor_profile_id,
            "office_id": office_target_id,
            "order_type_id": order_type_id,
            "current_state_id": context.lookups.resolve(EntityType.ORDER_STATES, "submitted"),
            "title": sanitize_string(record.get("title")),
            "description": sanitize_string(record.get("description")),
            "priority": record.get("priority") or "normal",
            "subtotal": record.get("subtotal") or 0,
            "tax_amount": record.get("tax_amount") or 0,
            "total_amount": record.get("total_amount") or 0,
            "currency": record.get("currency") or "USD",
            "data": record.get("data") or {},
            "notes": sanitize_string(record.get("notes")),
            "metadata": {
                "migrated_from": "dispatch_instruction",
                "migration_date": context.migrated_at_iso,
                "legacy_id": record["id"],
            },
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
            "completed_at": record.get("completed_at"),
            "cancelled_at": record.get("cancelled_at"),
        }


__all__ = ["OrderTransformer", "order_number", "to_base36"]
