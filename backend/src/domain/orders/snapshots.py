"""Immutable views of an order graph used by the status aggregator.

Snapshots reference each other by id only. The repository layer builds
them from persisted rows; tests build them directly.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from .enums import (
    OrderLineStatus,
    ShipmentStatus,
    DeliveryStatus,
    DeliveryIssueType,
    ReturnStatus,
)


@dataclass(frozen=True)
class OrderSnapshot:
    """Order-level flags that feed status derivation.

    Attributes:
        is_inferred: Order is a stub synthesized before its confirmation arrived
        is_closed: Operator closed the order
        is_cancelled: A full cancellation was received (used when no lines are known)
    """
    order_id: Optional[UUID] = None
    is_inferred: bool = False
    is_closed: bool = False
    is_cancelled: bool = False


@dataclass(frozen=True)
class LineSnapshot:
    line_id: UUID
    quantity: int
    status: OrderLineStatus = OrderLineStatus.ORDERED


@dataclass(frozen=True)
class ItemQuantity:
    """Quantity of one order line carried by a shipment or return."""
    line_id: UUID
    quantity: int


@dataclass(frozen=True)
class ShipmentSnapshot:
    shipment_id: UUID
    status: ShipmentStatus
    lines: Tuple[ItemQuantity, ...] = ()


@dataclass(frozen=True)
class DeliverySnapshot:
    shipment_id: UUID
    status: DeliveryStatus
    issue_type: Optional[DeliveryIssueType] = None
    issue_resolved: bool = False

    @property
    def has_open_issue(self) -> bool:
        if self.issue_resolved:
            return False
        return self.issue_type is not None or self.status != DeliveryStatus.DELIVERED


@dataclass(frozen=True)
class ReturnSnapshot:
    return_id: UUID
    status: ReturnStatus
    lines: Tuple[ItemQuantity, ...] = ()


@dataclass(frozen=True)
class RefundSnapshot:
    refund_id: UUID
    amount: Optional[Decimal] = None
    return_id: Optional[UUID] = None


@dataclass(frozen=True)
class OrderGraph:
    """Everything the aggregator needs for one order."""
    order: OrderSnapshot
    lines: Tuple[LineSnapshot, ...] = ()
    shipments: Tuple[ShipmentSnapshot, ...] = ()
    deliveries: Tuple[DeliverySnapshot, ...] = ()
    returns: Tuple[ReturnSnapshot, ...] = ()
    refunds: Tuple[RefundSnapshot, ...] = ()
