"""
Serialization utilities for legacymigrate.
"""

from legacymigrate.serialization.json import (
    MigrationJSONEncoder,
    json_dumps,
    json_loads,
)

__all__ = [
    "MigrationJSONEncoder",
    "json_dumps",
    "json_loads",
]
