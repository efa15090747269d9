"""
JSON serialization utilities for migrated records.

Target rows carry free-form ``settings``/``metadata``/``data`` columns
whose values include legacy timestamps, dates, UUIDs and numeric
amounts. The encoder here turns those into JSON-safe values before
they are written to a JSON/JSONB column.

Example:
    >>> from legacymigrate.serialization import json_dumps
    >>> from datetime import datetime, UTC
    >>>
    >>> json_dumps({"migration_timestamp": datetime.now(UTC)})
"""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


class MigrationJSONEncoder(json.JSONEncoder):
    """
    JSON encoder that handles UUID, datetime, date and Decimal objects.

    - UUID objects: Converted to string representation
    - datetime/date objects: Converted to ISO 8601 format string
    - Decimal objects: Converted to float
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return float(obj)
        return super().default(obj)


def json_dumps(obj: Any) -> str:
    """
    Serialize object to JSON string using MigrationJSONEncoder.

    Args:
        obj: Object to serialize

    Returns:
        JSON string representation
    """
    return json.dumps(obj, cls=MigrationJSONEncoder)


def json_loads(s: str | bytes | None) -> Any:
    """
    Deserialize a JSON column value.

    Drivers differ: asyncpg returns JSONB as ``str``, sqlite returns
    ``str``, and some configurations hand back already-decoded objects.
    Non-string values are returned unchanged and ``None`` stays ``None``.

    Args:
        s: JSON string (or already-decoded value) to deserialize

    Returns:
        Python object representation
    """
    if s is None or not isinstance(s, (str, bytes)):
        return s
    return json.loads(s)


__all__ = [
    "MigrationJSONEncoder",
    "json_dumps",
    "json_loads",
]
