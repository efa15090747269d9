"""
dispatch_office -> offices.

The legacy office has no doctor column, website or license number. The
website and license columns stay null and ``apt`` is folded into the
address. ``emails`` may hold addresses (the first valid one becomes
``email``) or a flag; either way it drives ``emails_enabled``.

The orchestrator's enhancement step adds ``doctor_id``: the doctor of the
first instruction placed through the office. When that doctor's profile has
been migrated, a primary ``doctor_offices`` link is declared for the stitcher.
"""

from __future__ import annotations

import re
from typing import Any

from legacymigrate.models import EntityType, LegacyRecord, MappingResult, PendingRelationship
from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    isoformat,
    resolve_optional,
    sanitize_email,
    sanitize_string,
)

DOCTOR_OFFICES_TABLE = "doctor_offices"


class OfficeTransformer(EntityTransformer):
    """Maps legacy offices and declares their primary doctor link."""

    entity_type = EntityType.OFFICES

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        name = sanitize_string(record.get("name"))
        if context.validate_data and name is None:
            result.errors.append("Office name is required")

        emails = record.get("emails")
        email = None
        if isinstance(emails, str):
            # emails holds a comma or semicolon separated list; the first valid one wins
            for candidate in re.split(r"[,;]", emails):
                email = sanitize_email(candidate)
                if email is not None:
                    break

        settings = self._settings(record)
        result.target = {
            "legacy_office_id": record["id"],
            "name": name,
            "address": self._address(record),
            "city": sanitize_string(record.get("city")),
            "state": sanitize_string(record.get("state")),
            "zip_code": sanitize_string(record.get("zip")),
            "country": "US",
            "phone": sanitize_string(record.get("phone")),
            "email": email,
            "website": None,
            "license_number": None,
            "is_active": True,
            "square_customer_id": settings["square_customer_id"],
            "emails_enabled": settings["emails_enabled"],
            "settings": settings,
            "metadata": {
                "migrated_from": "dispatch_office",
                "migration_timestamp": context.migrated_at_iso,
                "legacy_created_at": isoformat(record.get("created_at")),
                "legacy_updated_at": isoformat(record.get("updated_at")),
            },
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
        }

        doctor_id = record.get("doctor_id")
        doctor_profile_id = resolve_optional(
            result,
            context,
            EntityType.PROFILES,
            doctor_id,
            f"Doctor ID {doctor_id} could not be resolved to profile",
        )
        if doctor_profile_id is not None:
            result.relationships.append(
                PendingRelationship(
                    table=DOCTOR_OFFICES_TABLE,
                    attributes={
                        "doctor_id": doctor_profile_id,
                        "is_primary": True,
                        "role": "doctor",
                        "is_active": True,
                    },
                    primary_column="office_id",
                )
            )

    @staticmethod
    def _address(record: LegacyRecord) -> str | None:
        parts = [sanitize_string(record.get("address")), sanitize_string(record.get("apt"))]
        return ", ".join(p for p in parts if p) or None

    @staticmethod
    def _settings(record: LegacyRecord) -> dict[str, Any]:
        emails = record.get("emails")
        return {
            "tax_rate": 0,
            "square_customer_id": sanitize_string(record.get("sq_customer_id")),
            "emails_enabled": bool(emails) if emails is not None else True,
        }


__all__ = ["OfficeTransformer", "DOCTOR_OFFICES_TABLE"]
