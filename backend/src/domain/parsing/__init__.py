"""Parser output models per event family"""

from .results import (
    ItemReference,
    OrderLineData,
    OrderData,
    OrderEmailData,
    ShipmentData,
    DeliveryData,
    ReturnData,
    RefundData,
    CancellationData,
    PaymentData,
)

__all__ = [
    "ItemReference",
    "OrderLineData",
    "OrderData",
    "OrderEmailData",
    "ShipmentData",
    "DeliveryData",
    "ReturnData",
    "RefundData",
    "CancellationData",
    "PaymentData",
]
