"""
auth_user (+ dispatch_patient) -> profiles.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import EntityType, LegacyRecord, WriteSuccess
from legacymigrate.transformers.profiles import ProfileTransformer


class ProfilesMigrator(MigrationOrchestrator):
    """
    Migrates users, merging each user's patient record into the profile.

    Written profiles that carry a patient are also registered under
    PATIENTS, so orders can resolve their legacy patient id.
    """

    entity_type = EntityType.PROFILES
    transformer = ProfileTransformer()
    optional_lookups = (EntityType.PATIENTS,)
    distribution_fields = ("profile_type",)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._patients_by_user: dict[int, dict[str, Any]] = {}

    async def load_enhancements(self, records: Sequence[LegacyRecord]) -> None:
        self._patients_by_user = {}
        for patient in await self.legacy.fetch_all(EntityType.PATIENTS):
            # first patient row per user wins (rows arrive ordered by id)
            self._patients_by_user.setdefault(patient["user_id"], dict(patient))

    async def enhance(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for record in records:
            record["patient"] = self._patients_by_user.get(record["id"])
        return records

    async def after_write(self, successes: Sequence[WriteSuccess]) -> None:
        for success in successes:
            patient_id = success.mapping.target.get("legacy_patient_id")
            if patient_id is not None:
                self.lookups.register(EntityType.PATIENTS, patient_id, success.target_id)


__all__ = ["ProfilesMigrator"]
