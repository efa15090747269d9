"""
dispatch_project -> projects.

Legacy projects only know their creator. The enhancement step adds:
    - ``office_id``: office of the creator's first instruction as doctor
    - ``instruction_id``: the instruction the project belongs to, if known
    - ``creator_name``: display name of the creating user
"""

from __future__ import annotations

from datetime import datetime

from legacymigrate.models import EntityType, LegacyRecord, MappingResult
from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    resolve_required,
    sanitize_string,
)

PROJECT_TYPES: dict[int, str] = {
    1: "scan",
    2: "model",
    3: "impression",
    4: "xray",
    5: "photo",
    6: "treatment_plan",
    7: "aligner_design",
    8: "simulation",
    9: "document",
}

PROJECT_STATUSES: dict[int, str] = {
    0: "draft",
    1: "in_progress",
    2: "review",
    3: "approved",
    4: "archived",
    5: "deleted",
}

_MIME_TYPES: dict[str, str] = {
    "scan": "application/octet-stream",
    "model": "application/octet-stream",
    "xray": "image/jpeg",
    "photo": "image/jpeg",
    "document": "application/pdf",
}


def project_type(legacy_type: int | None) -> str:
    return PROJECT_TYPES.get(legacy_type, "other") if legacy_type is not None else "other"


def project_status(legacy_status: int | None) -> str:
    return PROJECT_STATUSES.get(legacy_status, "draft") if legacy_status is not None else "draft"


def project_number(legacy_id: int, created_at: datetime | None, *, generate: bool = True) -> str:
    if not generate or not isinstance(created_at, datetime):
        return f"PROJ-{legacy_id}"
    return f"PRJ-{created_at.year:04d}{created_at.month:02d}-{legacy_id:06d}"


class ProjectTransformer(EntityTransformer):
    """Maps legacy projects to projects."""

    entity_type = EntityType.PROJECTS

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        creator_id = record.get("creator_id")
        creator_profile_id = resolve_required(
            result,
            context,
            EntityType.PROFILES,
            creator_id,
            f"Creator ID {creator_id} not found in profiles",
        )

        office_target_id = context.lookups.resolve(EntityType.OFFICES, record.get("office_id"))
        if office_target_id is None:
            result.errors.append(f"Office could not be resolved for creator {creator_id}")
            result.unresolved_foreign_keys += 1

        order_id = context.lookups.resolve(EntityType.ORDERS, record.get("instruction_id"))
        if order_id is None:
            result.warnings.append("No associated order found")

        kind = project_type(record.get("type"))
        status = project_status(record.get("status"))

        result.target = {
            "legacy_project_id": record["id"],
            "legacy_uid": record.get("uid"),
            "order_id": order_id,
            "office_id": office_target_id,
            "creator_id": creator_profile_id,
            "project_number": project_number(
                record["id"],
                record.get("created_at"),
                generate=context.option("generate_project_numbers", True),
            ),
            "name": sanitize_string(record.get("name")) or f"Project {record['id']}",
            "description": None,
            "project_type": kind,
            "status": status,
            "file_size": record.get("size") or 0,
            "storage_path": None,
            "storage_bucket": "projects",
            "mime_type": _MIME_TYPES.get(kind),
            "version": 1,
            "parent_project_id": None,
            "is_public": bool(record.get("public") or False),
            "metadata": {
                "legacy_type": record.get("type"),
                "legacy_status": record.get("status"),
                "migrated_at": context.migrated_at_iso,
                "creator_name": record.get("creator_name"),
            },
            "created_at": record.get("created_at"),
            "updated_at": record.get("created_at"),
        }


__all__ = [
    "ProjectTransformer",
    "PROJECT_TYPES",
    "PROJECT_STATUSES",
    "project_type",
    "project_status",
    "project_number",
]
