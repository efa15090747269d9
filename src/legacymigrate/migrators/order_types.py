"""
dispatch_course -> order_types, seeding order_states first.
"""

from __future__ import annotations

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import EntityType
from legacymigrate.transformers.order_types import OrderTypeTransformer, default_order_states


class OrderTypesMigrator(MigrationOrchestrator):
    """Migrates courses to order types and makes sure the order states exist."""

    entity_type = EntityType.ORDER_TYPES
    transformer = OrderTypeTransformer()
    optional_lookups = (EntityType.ORDER_STATES,)
    distribution_fields = ("category",)

    async def prepare(self) -> None:
        await self.seed_reference_data(EntityType.ORDER_STATES, default_order_states())


__all__ = ["OrderTypesMigrator"]
