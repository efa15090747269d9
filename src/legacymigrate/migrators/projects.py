"""
dispatch_project -> projects.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import EntityType, LegacyRecord
from legacymigrate.transformers.projects import ProjectTransformer


def display_name(user: LegacyRecord) -> str | None:
    full = " ".join(
        part.strip() for part in (user.get("first_name"), user.get("last_name")) if part and part.strip()
    )
    return full or user.get("username")


class ProjectsMigrator(MigrationOrchestrator):
    """
    Migrates projects.

    A project's office is the first office its creator is paired with
    as a doctor; the creator's display name is kept in the metadata.
    Written projects are queued for embedding.
    """

    entity_type = EntityType.PROJECTS
    transformer = ProjectTransformer()
    required_lookups = (EntityType.PROFILES, EntityType.OFFICES)
    optional_lookups = (EntityType.ORDERS,)
    embeddable = True
    distribution_fields = ("project_type", "status")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._office_by_doctor: dict[int, int] = {}
        self._creator_names: dict[int, str | None] = {}

    async def load_enhancements(self, records: Sequence[LegacyRecord]) -> None:
        self._office_by_doctor = {}
        for doctor_id, office_id in await self.legacy.get_doctor_office_relationships():
            self._office_by_doctor.setdefault(doctor_id, office_id)

        creators = {r.get("creator_id") for r in records}
        self._creator_names = {
            user["id"]: display_name(user)
            for user in await self.legacy.fetch_all(EntityType.PROFILES)
            if user["id"] in creators
        }

    async def enhance(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for record in records:
            creator_id = record.get("creator_id")
            record["office_id"] = self._office_by_doctor.get(creator_id)
            record["creator_name"] = self._creator_names.get(creator_id)
        return records


__all__ = ["ProjectsMigrator", "display_name"]
