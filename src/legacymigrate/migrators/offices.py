"""
dispatch_office -> offices (+ doctor_offices).
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import EntityType, LegacyRecord
from legacymigrate.transformers.offices import OfficeTransformer


class OfficesMigrator(MigrationOrchestrator):
    """
    Migrates offices and links each one to its doctor.

    The legacy office table has no doctor column; the doctor is taken
    from the first instruction that pairs a doctor with the office.
    """

    entity_type = EntityType.OFFICES
    transformer = OfficeTransformer()
    required_lookups = (EntityType.PROFILES,)

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._doctor_by_office: dict[int, int] = {}

    async def load_enhancements(self, records: Sequence[LegacyRecord]) -> None:
        self._doctor_by_office = {}
        for doctor_id, office_id in await self.legacy.get_doctor_office_relationships():
            self._doctor_by_office.setdefault(office_id, doctor_id)

    async def enhance(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for record in records:
            record["doctor_id"] = self._doctor_by_office.get(record["id"])
        return records


__all__ = ["OfficesMigrator"]
