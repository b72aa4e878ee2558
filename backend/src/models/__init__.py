"""SQLAlchemy Models for OrderPulse"""

from .base import Base
from .tenant import Tenant
from .retailer import Retailer
from .inbound_message import InboundMessage
from .order import Order, OrderLine
from .shipment import Shipment, ShipmentLine, Delivery
from .order_return import OrderReturn, ReturnLine
from .refund import Refund
from .order_event import OrderEvent
from .audit_log import AuditLog

__all__ = [
    "Base",
    "Tenant",
    "Retailer",
    "InboundMessage",
    "Order",
    "OrderLine",
    "Shipment",
    "ShipmentLine",
    "Delivery",
    "OrderReturn",
    "ReturnLine",
    "Refund",
    "OrderEvent",
    "AuditLog",
]
