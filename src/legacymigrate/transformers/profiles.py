"""
auth_user (+ dispatch_patient) -> profiles.

One profile per legacy user. When a dispatch_patient row references the
user, the orchestrator attaches it as ``record["patient"]`` and the
profile carries the patient's id, birthdate and sex.
"""

from __future__ import annotations

from typing import Any

from legacymigrate.models import EntityType, LegacyRecord, MappingResult
from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    isoformat,
    normalize_gender,
    sanitize_email,
    sanitize_string,
)


def detect_profile_type(user: LegacyRecord, patient: LegacyRecord | None) -> str:
    """
    Classify a legacy user.

    Superusers are masters, staff without a patient record are
    technicians, users with a patient record are patients, and everyone
    else is a client.
    """
    if user.get("is_superuser"):
        return "master"
    if user.get("is_staff") and patient is None:
        return "technician"
    if patient is not None:
        return "patient"
    return "client"


class ProfileTransformer(EntityTransformer):
    """Maps legacy users, merged with their patient record, to profiles."""

    entity_type = EntityType.PROFILES

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        patient: dict[str, Any] | None = record.get("patient")
        username = sanitize_string(record.get("username"))
        raw_email = sanitize_string(record.get("email"))
        email = sanitize_email(raw_email)

        if context.validate_data and username is None and raw_email is None:
            result.errors.append("Username or email is required")
        if raw_email is not None and email is None:
            result.warnings.append(f"Invalid email format: {raw_email}")

        profile_type = detect_profile_type(record, patient)

        result.target = {
            "legacy_user_id": record["id"],
            "legacy_patient_id": patient["id"] if patient else None,
            "profile_type": profile_type,
            "first_name": sanitize_string(record.get("first_name")) or "",
            "last_name": sanitize_string(record.get("last_name")) or "",
            "email": email,
            "date_of_birth": patient.get("birthdate") if patient else None,
            "gender": normalize_gender(patient.get("sex")) if patient else None,
            "country": "US",
            "is_active": bool(record.get("is_active", True)),
            "metadata": {
                "migrated_from": "auth_user",
                "legacy_username": record.get("username"),
                "legacy_last_login": isoformat(record.get("last_login")),
                "migration_timestamp": context.migrated_at_iso,
                "has_patient_record": patient is not None,
            },
            "created_at": record.get("date_joined"),
            "updated_at": (patient.get("updated_at") if patient else None)
            or record.get("date_joined"),
        }


__all__ = ["ProfileTransformer", "detect_profile_type"]
