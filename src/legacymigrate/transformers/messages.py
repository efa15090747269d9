"""
dispatch_record -> messages, plus the message_types reference rows.

Legacy records point at their subject through a Django generic relation
(content_type_id + object_id). The enhancement step attaches the
ContentType as ``record["content_type"]``; the transformer resolves the
object to an order or project where the model is known.

Each message is classified by keywords in its subject and body, and by
context (what it refers to, whether it requires a response). The first
matching classification wins; ``general`` is the fallback.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from legacymigrate.models import ContentType, EntityType, LegacyRecord, MappingResult
from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    resolve_optional,
    resolve_required,
    sanitize_string,
)


@dataclass(frozen=True)
class MessageClassification:
    key: str
    name: str
    keywords: tuple[str, ...] = ()
    context_rules: tuple[str, ...] = ()


MESSAGE_CLASSIFICATIONS: tuple[MessageClassification, ...] = (
    MessageClassification(
        "status_update",
        "Status Update",
        ("status", "update", "progress", "completed", "finished", "ready"),
        ("order_status", "project_status"),
    ),
    MessageClassification(
        "question",
        "Question",
        ("question", "?", "clarification", "confirm", "verify"),
        ("requires_response",),
    ),
    MessageClassification(
        "instruction",
        "Instruction",
        ("please", "need", "required", "must", "should"),
    ),
    MessageClassification(
        "notification",
        "Notification",
        ("notification", "alert", "reminder", "due", "overdue"),
    ),
    MessageClassification(
        "response",
        "Response",
        ("response", "reply", "answer", "regarding", "re:"),
    ),
    MessageClassification("general", "General Message"),
)


def default_message_types() -> list[dict[str, Any]]:
    """Reference rows for message_types, keyed by ``key``."""
    return [
        {
            "key": c.key,
            "name": c.name,
            "category": "general",
            "description": f"Auto-generated message type for {c.name.lower()}",
            "triggers_state_change": False,
            "target_state_id": None,
            "template": None,
            "is_active": True,
        }
        for c in MESSAGE_CLASSIFICATIONS
    ]


def classify_message(
    subject: str | None,
    body: str | None,
    *,
    entity_kind: str | None = None,
    requires_response: bool = False,
) -> str:
    """
    Pick the message type key for a message.

    Example:
        >>> classify_message("Case ready", "Your aligners are ready")
        'status_update'
        >>> classify_message(None, "Thanks")
        'general'
    """
    content = f"{subject or ''} {body or ''}".lower()
    context = {
        "order_status": entity_kind == "order",
        "project_status": entity_kind == "project",
        "requires_response": bool(requires_response),
    }
    for classification in MESSAGE_CLASSIFICATIONS:
        if classification.key == "general":
            continue
        if any(keyword in content for keyword in classification.keywords):
            return classification.key
        if any(context.get(rule, False) for rule in classification.context_rules):
            return classification.key
    return "general"


class MessageTransformer(EntityTransformer):
    """Maps legacy records to messages."""

    entity_type = EntityType.MESSAGES

    def map_record(
        self,
        record: LegacyRecord,
        result: MappingResult,
        context: TransformContext,
    ) -> None:
        content_type: ContentType | None = record.get("content_type")
        entity_kind, entity_id = self._resolve_entity(record, content_type, result, context)

        sender_id = record.get("sender_id")
        sender_profile_id = resolve_required(
            result, context, EntityType.PROFILES, sender_id, f"Sender ID not found: {sender_id}"
        )
        recipient_id = record.get("recipient_id")
        recipient_profile_id = resolve_optional(
            result,
            context,
            EntityType.PROFILES,
            recipient_id,
            f"Recipient ID not found: {recipient_id}",
        )

        if context.option("classify_message_types", True):
            classification = classify_message(
                record.get("subject"),
                record.get("body"),
                entity_kind=entity_kind,
                requires_response=bool(record.get("requires_response")),
            )
        else:
            classification = "general"

        result.target = {
            "legacy_record_id": record["id"],
            "message_type_id": context.lookups.resolve(EntityType.MESSAGE_TYPES, classification),
            "order_id": entity_id if entity_kind == "order" else None,
            "project_id": entity_id if entity_kind == "project" else None,
            "sender_id": sender_profile_id,
            "recipient_id": recipient_profile_id,
            "subject": sanitize_string(record.get("subject")),
            "body": sanitize_string(record.get("body")) or "",
            "is_read": bool(record.get("is_read")),
            "read_at": record.get("read_at"),
            "requires_response": bool(record.get("requires_response")),
            "response_due_date": record.get("response_due_date"),
            "attachments": record.get("attachments") or [],
            "metadata": {
                "legacy_content_type_id": record.get("content_type_id"),
                "legacy_object_id": record.get("object_id"),
                "legacy_model_name": content_type.model if content_type else None,
                "legacy_app_label": content_type.app_label if content_type else None,
                "message_classification": classification,
            },
            "created_at": record.get("created_at"),
            "updated_at": record.get("updated_at"),
        }

    @staticmethod
    def _resolve_entity(
        record: LegacyRecord,
        content_type: ContentType | None,
        result: MappingResult,
        context: TransformContext,
    ) -> tuple[str | None, str | None]:
        if content_type is None:
            result.warnings.append(
                f"ContentType not found for ID: {record.get('content_type_id')}"
            )
            return None, None

        object_id = record.get("object_id")
        model = content_type.model.lower()
        if model == "instruction":
            order_id = resolve_optional(
                result,
                context,
                EntityType.ORDERS,
                object_id,
                f"Order not found for instruction ID: {object_id}",
            )
            return "order", order_id
        if model == "project":
            project_id = resolve_optional(
                result,
                context,
                EntityType.PROJECTS,
                object_id,
                f"Project not found for ID: {object_id}",
            )
            return "project", project_id
        if model in ("patient", "user"):
            return None, None

        result.warnings.append(f"Unknown model type: {model}")
        return None, None


__all__ = [
    "MessageTransformer",
    "MessageClassification",
    "MESSAGE_CLASSIFICATIONS",
    "classify_message",
    "default_message_types",
]
