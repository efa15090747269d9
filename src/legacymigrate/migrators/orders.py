"""
dispatch_instruction -> orders.
"""

from __future__ import annotations

from legacymigrate.migrators.base import MigrationOrchestrator
from legacymigrate.models import EntityType
from legacymigrate.transformers.orders import OrderTransformer


class OrdersMigrator(MigrationOrchestrator):
    """
    Migrates instructions to orders.

    Post-validation allows a 5% gap between written and counted orders.
    """

    entity_type = EntityType.ORDERS
    transformer = OrderTransformer()
    required_lookups = (EntityType.PROFILES, EntityType.OFFICES, EntityType.ORDER_TYPES)
    optional_lookups = (EntityType.PATIENTS, EntityType.ORDER_STATES)
    validation_tolerance = 0.05
    distribution_fields = ("priority",)


__all__ = ["OrdersMigrator"]
