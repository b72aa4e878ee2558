"""Inbound message domain - processing state machine and classification types"""

from .processing_status import (
    ProcessingStatus,
    StateTransitionError,
    ALLOWED_TRANSITIONS,
    SETTLED_STATES,
    IN_FLIGHT_STATES,
    can_transition,
    validate_transition,
    get_allowed_transitions,
)
from .classification import (
    ClassificationType,
    EventFamily,
    FAMILY_BY_TYPE,
    parse_classification_type,
    family_for,
    is_noise,
)

__all__ = [
    "ProcessingStatus",
    "StateTransitionError",
    "ALLOWED_TRANSITIONS",
    "SETTLED_STATES",
    "IN_FLIGHT_STATES",
    "can_transition",
    "validate_transition",
    "get_allowed_transitions",
    "ClassificationType",
    "EventFamily",
    "FAMILY_BY_TYPE",
    "parse_classification_type",
    "family_for",
    "is_noise",
]
