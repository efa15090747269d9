"""
dispatch_record -> messages, seeding message_types first.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import ContentType, EntityType, LegacyRecord, MappingResult
from legacymigrate.transformers.messages import MessageTransformer, default_message_types


class MessagesMigrator(MigrationOrchestrator):
    """
    Migrates records to messages.

    Each record's generic foreign key is resolved through the legacy
    content types. Written messages are queued for embedding.
    """

    entity_type = EntityType.MESSAGES
    transformer = MessageTransformer()
    required_lookups = (EntityType.PROFILES,)
    optional_lookups = (EntityType.ORDERS, EntityType.PROJECTS, EntityType.MESSAGE_TYPES)
    embeddable = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._content_types: dict[int, ContentType] = {}

    async def prepare(self) -> None:
        await self.seed_reference_data(EntityType.MESSAGE_TYPES, default_message_types())

    async def load_enhancements(self, records: Sequence[LegacyRecord]) -> None:
        self._content_types = await self.legacy.get_content_types()

    async def enhance(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        for record in records:
            record["content_type"] = self._content_types.get(record.get("content_type_id"))
        return records

    def distribution_keys(self, mapping: MappingResult) -> dict[str, str]:
        return {"message_type": mapping.target["metadata"]["message_classification"]}


__all__ = ["MessagesMigrator"]
