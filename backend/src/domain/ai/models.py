"""AI domain models and enums"""

from enum import Enum


class AICallType(str, Enum):
    """
    AI call types for tracking and metrics labels.

    One value per classifier/parser role of the email intelligence port.
    """
    RELEVANCE_FILTER = "RELEVANCE_FILTER"
    CLASSIFY = "CLASSIFY"
    PARSE_ORDER = "PARSE_ORDER"
    PARSE_SHIPMENT = "PARSE_SHIPMENT"
    PARSE_DELIVERY = "PARSE_DELIVERY"
    PARSE_RETURN = "PARSE_RETURN"
    PARSE_REFUND = "PARSE_REFUND"
    PARSE_CANCELLATION = "PARSE_CANCELLATION"
    PARSE_PAYMENT = "PARSE_PAYMENT"
