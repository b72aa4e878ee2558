"""Email classification types and their event families.

Each classification type belongs to exactly one event family, and each
family (except noise) has one type parser.
"""

from enum import Enum
from typing import Optional

from domain.orders.enums import canonical_enum_key


class ClassificationType(str, Enum):
    """Closed set of event types an inbound message can be classified as."""
    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_MODIFICATION = "ORDER_MODIFICATION"
    ORDER_CANCELLATION = "ORDER_CANCELLATION"
    PAYMENT_CONFIRMATION = "PAYMENT_CONFIRMATION"
    SHIPMENT_CONFIRMATION = "SHIPMENT_CONFIRMATION"
    SHIPMENT_UPDATE = "SHIPMENT_UPDATE"
    DELIVERY_CONFIRMATION = "DELIVERY_CONFIRMATION"
    DELIVERY_ISSUE = "DELIVERY_ISSUE"
    RETURN_INITIATION = "RETURN_INITIATION"
    RETURN_LABEL = "RETURN_LABEL"
    RETURN_RECEIVED = "RETURN_RECEIVED"
    RETURN_REJECTION = "RETURN_REJECTION"
    REFUND_CONFIRMATION = "REFUND_CONFIRMATION"
    PROMOTIONAL = "PROMOTIONAL"


class EventFamily(str, Enum):
    """Parser family a classification type is routed to."""
    ORDER = "ORDER"
    CANCELLATION = "CANCELLATION"
    PAYMENT = "PAYMENT"
    SHIPMENT = "SHIPMENT"
    DELIVERY = "DELIVERY"
    RETURN = "RETURN"
    REFUND = "REFUND"
    NOISE = "NOISE"


FAMILY_BY_TYPE = {
    ClassificationType.ORDER_CONFIRMATION: EventFamily.ORDER,
    ClassificationType.ORDER_MODIFICATION: EventFamily.ORDER,
    ClassificationType.ORDER_CANCELLATION: EventFamily.CANCELLATION,
    ClassificationType.PAYMENT_CONFIRMATION: EventFamily.PAYMENT,
    ClassificationType.SHIPMENT_CONFIRMATION: EventFamily.SHIPMENT,
    ClassificationType.SHIPMENT_UPDATE: EventFamily.SHIPMENT,
    ClassificationType.DELIVERY_CONFIRMATION: EventFamily.DELIVERY,
    ClassificationType.DELIVERY_ISSUE: EventFamily.DELIVERY,
    ClassificationType.RETURN_INITIATION: EventFamily.RETURN,
    ClassificationType.RETURN_LABEL: EventFamily.RETURN,
    ClassificationType.RETURN_RECEIVED: EventFamily.RETURN,
    ClassificationType.RETURN_REJECTION: EventFamily.RETURN,
    ClassificationType.REFUND_CONFIRMATION: EventFamily.REFUND,
    ClassificationType.PROMOTIONAL: EventFamily.NOISE,
}

# Short spellings seen in model output
_ALIASES = {
    "ORDER": ClassificationType.ORDER_CONFIRMATION,
    "ORDER_CONFIRMED": ClassificationType.ORDER_CONFIRMATION,
    "ORDER_UPDATE": ClassificationType.ORDER_MODIFICATION,
    "ORDER_CHANGE": ClassificationType.ORDER_MODIFICATION,
    "CANCELLATION": ClassificationType.ORDER_CANCELLATION,
    "ORDER_CANCELED": ClassificationType.ORDER_CANCELLATION,
    "ORDER_CANCELLED": ClassificationType.ORDER_CANCELLATION,
    "PAYMENT": ClassificationType.PAYMENT_CONFIRMATION,
    "SHIPMENT": ClassificationType.SHIPMENT_CONFIRMATION,
    "SHIPPING_CONFIRMATION": ClassificationType.SHIPMENT_CONFIRMATION,
    "SHIPPED": ClassificationType.SHIPMENT_CONFIRMATION,
    "TRACKING_UPDATE": ClassificationType.SHIPMENT_UPDATE,
    "DELIVERY": ClassificationType.DELIVERY_CONFIRMATION,
    "DELIVERED": ClassificationType.DELIVERY_CONFIRMATION,
    "DELIVERY_EXCEPTION": ClassificationType.DELIVERY_ISSUE,
    "RETURN": ClassificationType.RETURN_INITIATION,
    "RETURN_INITIATED": ClassificationType.RETURN_INITIATION,
    "RETURN_REJECTED": ClassificationType.RETURN_REJECTION,
    "REFUND": ClassificationType.REFUND_CONFIRMATION,
    "REFUND_ISSUED": ClassificationType.REFUND_CONFIRMATION,
    "MARKETING": ClassificationType.PROMOTIONAL,
    "PROMOTION": ClassificationType.PROMOTIONAL,
    "NEWSLETTER": ClassificationType.PROMOTIONAL,
    "SPAM": ClassificationType.PROMOTIONAL,
}


def parse_classification_type(value) -> Optional[ClassificationType]:
    """Map a raw classifier label onto ClassificationType.

    Unknown labels return None; the caller treats that as an unusable
    classification rather than guessing a type.

    Example:
        >>> parse_classification_type("ShipmentConfirmation")
        <ClassificationType.SHIPMENT_CONFIRMATION: 'SHIPMENT_CONFIRMATION'>
        >>> parse_classification_type("refund") is ClassificationType.REFUND_CONFIRMATION
        True
        >>> parse_classification_type("weather report") is None
        True
    """
    if isinstance(value, ClassificationType):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    key = canonical_enum_key(value)
    try:
        return ClassificationType(key)
    except ValueError:
        return _ALIASES.get(key)


def family_for(classification_type: ClassificationType) -> EventFamily:
    return FAMILY_BY_TYPE[classification_type]


def is_noise(classification_type: Optional[ClassificationType]) -> bool:
    return classification_type is not None and FAMILY_BY_TYPE[classification_type] == EventFamily.NOISE
