"""
Entity transformers: pure legacy record -> target row mappings.
"""

from legacymigrate.transformers.base import (
    EntityTransformer,
    TransformContext,
    isoformat,
    normalize_gender,
    resolve_optional,
    resolve_required,
    sanitize_email,
    sanitize_string,
)
from legacymigrate.transformers.messages import (
    MESSAGE_CLASSIFICATIONS,
    MessageTransformer,
    classify_message,
    default_message_types,
)
from legacymigrate.transformers.offices import DOCTOR_OFFICES_TABLE, OfficeTransformer
from legacymigrate.transformers.order_types import (
    OrderTypeTransformer,
    default_order_states,
    order_type_key,
)
from legacymigrate.transformers.orders import OrderTransformer, order_number
from legacymigrate.transformers.profiles import ProfileTransformer, detect_profile_type
from legacymigrate.transformers.projects import (
    ProjectTransformer,
    project_number,
    project_status,
    project_type,
)
from legacymigrate.transformers.states import (
    ORDER_STATE_HISTORY_TABLE,
    InstructionStateTransformer,
    order_state_key,
)

__all__ = [
    # Base
    "EntityTransformer",
    "TransformContext",
    "isoformat",
    "normalize_gender",
    "resolve_optional",
    "resolve_required",
    "sanitize_email",
    "sanitize_string",
    # Entities
    "OfficeTransformer",
    "DOCTOR_OFFICES_TABLE",
    "ProfileTransformer",
    "detect_profile_type",
    "OrderTypeTransformer",
    "default_order_states",
    "order_type_key",
    "OrderTransformer",
    "order_number",
    "ProjectTransformer",
    "project_number",
    "project_status",
    "project_type",
    "InstructionStateTransformer",
    "ORDER_STATE_HISTORY_TABLE",
    "order_state_key",
    "MessageTransformer",
    "MESSAGE_CLASSIFICATIONS",
    "classify_message",
    "default_message_types",
]
