"""
Shared test fixtures for legacymigrate.

Usage:
    from tests.fixtures import legacy_tables, legacy_content_types
"""

from tests.fixtures.legacy_data import (
    JOINED,
    legacy_content_types,
    legacy_courses,
    legacy_instructions,
    legacy_offices,
    legacy_patients,
    legacy_projects,
    legacy_records,
    legacy_states,
    legacy_tables,
    legacy_users,
)

__all__ = [
    "JOINED",
    "legacy_users",
    "legacy_patients",
    "legacy_offices",
    "legacy_courses",
    "legacy_instructions",
    "legacy_projects",
    "legacy_states",
    "legacy_records",
    "legacy_content_types",
    "legacy_tables",
]
