"""Status enums for orders and their child entities.

Values are stored as upper-case strings. parse_enum() accepts the loose
spellings that show up in extracted data ("In Transit", "in-transit",
"InTransit") and maps them onto the canonical member.
"""

import re
from enum import Enum
from typing import Optional, Type, TypeVar

E = TypeVar("E", bound=Enum)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[\s\-/]+")


class OrderStatus(str, Enum):
    """Overall order status, always derived from the order's children."""
    PLACED = "PLACED"
    INFERRED = "INFERRED"
    PARTIALLY_SHIPPED = "PARTIALLY_SHIPPED"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    PARTIALLY_DELIVERED = "PARTIALLY_DELIVERED"
    DELIVERED = "DELIVERED"
    DELIVERY_EXCEPTION = "DELIVERY_EXCEPTION"
    RETURN_IN_PROGRESS = "RETURN_IN_PROGRESS"
    RETURN_RECEIVED = "RETURN_RECEIVED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"
    PARTIALLY_CANCELLED = "PARTIALLY_CANCELLED"
    CLOSED = "CLOSED"


class OrderLineStatus(str, Enum):
    ORDERED = "ORDERED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    RETURN_INITIATED = "RETURN_INITIATED"
    RETURNED = "RETURNED"
    REFUNDED = "REFUNDED"


class ShipmentStatus(str, Enum):
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    EXCEPTION = "EXCEPTION"
    RETURNED = "RETURNED"


class DeliveryStatus(str, Enum):
    DELIVERED = "DELIVERED"
    ATTEMPTED_DELIVERY = "ATTEMPTED_DELIVERY"
    DELIVERY_EXCEPTION = "DELIVERY_EXCEPTION"
    LOST = "LOST"


class DeliveryIssueType(str, Enum):
    MISSING = "MISSING"
    DAMAGED = "DAMAGED"
    WRONG_ITEM = "WRONG_ITEM"
    NOT_RECEIVED = "NOT_RECEIVED"
    STOLEN = "STOLEN"
    OTHER = "OTHER"


class ReturnStatus(str, Enum):
    """Return lifecycle.

    INITIATED → LABEL_ISSUED → SHIPPED → RECEIVED → REFUND_PENDING → REFUNDED → CLOSED
    REJECTED may happen at any point after the retailer inspects the return.
    """
    INITIATED = "INITIATED"
    LABEL_ISSUED = "LABEL_ISSUED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"
    REJECTED = "REJECTED"
    REFUND_PENDING = "REFUND_PENDING"
    REFUNDED = "REFUNDED"
    CLOSED = "CLOSED"


class ReturnMethod(str, Enum):
    MAIL = "MAIL"
    DROP_OFF = "DROP_OFF"
    PICKUP = "PICKUP"


# Forward progress ranks; updates never move an entity to a lower rank
SHIPMENT_PROGRESS = {
    ShipmentStatus.SHIPPED: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.DELIVERED: 4,
}

RETURN_PROGRESS = {
    ReturnStatus.INITIATED: 1,
    ReturnStatus.LABEL_ISSUED: 2,
    ReturnStatus.SHIPPED: 3,
    ReturnStatus.RECEIVED: 4,
    ReturnStatus.REFUND_PENDING: 5,
    ReturnStatus.REFUNDED: 6,
    ReturnStatus.CLOSED: 7,
}

OPEN_RETURN_STATUSES = frozenset({
    ReturnStatus.INITIATED,
    ReturnStatus.LABEL_ISSUED,
    ReturnStatus.SHIPPED,
})

RECEIVED_RETURN_STATUSES = frozenset({
    ReturnStatus.RECEIVED,
    ReturnStatus.REFUND_PENDING,
})


def canonical_enum_key(value: str) -> str:
    """Normalize a loose enum spelling to UPPER_SNAKE form.

    Example:
        >>> canonical_enum_key("OutForDelivery")
        'OUT_FOR_DELIVERY'
        >>> canonical_enum_key(" in-transit ")
        'IN_TRANSIT'
    """
    value = _CAMEL_BOUNDARY.sub("_", value.strip())
    return _SEPARATORS.sub("_", value).upper()


def parse_enum(enum_cls: Type[E], value, default: Optional[E] = None) -> Optional[E]:
    """Coerce a raw value into enum_cls, returning default when it does not fit.

    Args:
        enum_cls: Target enum class
        value: Enum member, canonical value or loose spelling
        default: Returned for None, blank or unknown values

    Returns:
        Matching enum member or default
    """
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    if not isinstance(value, str) or not value.strip():
        return default
    try:
        return enum_cls(canonical_enum_key(value))
    except ValueError:
        return default
