"""Order graph repository for database operations.

Entities reference each other by id only; this repository is the single
place that resolves those ids into rows and builds the immutable
OrderGraph snapshot used for status aggregation.
"""

import logging
import re
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select, and_, or_, func, literal
from sqlalchemy.orm import Session

from domain.orders.enums import (
    OrderLineStatus,
    ShipmentStatus,
    DeliveryStatus,
    DeliveryIssueType,
    ReturnStatus,
    parse_enum,
)
from domain.orders.snapshots import (
    OrderGraph,
    OrderSnapshot,
    LineSnapshot,
    ItemQuantity,
    ShipmentSnapshot,
    DeliverySnapshot,
    ReturnSnapshot,
    RefundSnapshot,
)
from models.order import Order, OrderLine
from models.order_event import OrderEvent
from models.order_return import OrderReturn, ReturnLine
from models.refund import Refund
from models.shipment import Shipment, ShipmentLine, Delivery

logger = logging.getLogger(__name__)


def normalize_order_reference(reference: Optional[str]) -> str:
    """Normalize an order number for natural-key lookups.

    Strips whitespace and leading '#' characters and upper-cases.

    Example:
        >>> normalize_order_reference("  # ord-1 ")
        'ORD-1'
    """
    if not reference:
        return ""
    text = reference.strip().lstrip("#").strip()
    return re.sub(r"\s+", "", text).upper()


class OrderRepository:
    """Repository for the order graph of one tenant.

    Handles natural-key lookups (order number, tracking number, RMA,
    transaction id) and per-line quantity totals.
    """

    def __init__(self, db: Session, tenant_id: UUID):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
            tenant_id: Tenant ID (multi-tenant isolation)
        """
        self.db = db
        self.tenant_id = tenant_id

    # Orders

    def get_order(self, order_id: UUID) -> Optional[Order]:
        return self.db.execute(
            select(Order).where(
                and_(Order.id == order_id, Order.tenant_id == self.tenant_id)
            )
        ).scalar_one_or_none()

    def get_by_normalized_number(self, normalized: str) -> Optional[Order]:
        return self.db.execute(
            select(Order).where(
                and_(
                    Order.tenant_id == self.tenant_id,
                    Order.normalized_order_number == normalized
                )
            )
        ).scalar_one_or_none()

    def find_by_reference(
        self,
        reference: Optional[str],
        min_partial_length: int = 5,
        allow_partial: bool = True,
    ) -> Optional[Order]:
        """Locate an order by an order reference as written in a message.

        Lookup order:
        1. Exact external order number
        2. Normalized order number
        3. Containment in either direction, only for references of at
           least min_partial_length characters and only when exactly one
           order matches; skipped when allow_partial is False

        Args:
            reference: Order reference from parsed data
            min_partial_length: Shortest reference used for containment lookup
            allow_partial: Fall back to containment lookup

        Returns:
            Order or None
        """
        if not reference or not reference.strip():
            return None

        exact = self.db.execute(
            select(Order).where(
                and_(
                    Order.tenant_id == self.tenant_id,
                    Order.external_order_number == reference.strip()
                )
            )
        ).scalars().first()
        if exact:
            return exact

        normalized = normalize_order_reference(reference)
        if not normalized:
            return None

        order = self.get_by_normalized_number(normalized)
        if order:
            return order

        if not allow_partial or len(normalized) < min_partial_length:
            return None

        candidates = self.db.execute(
            select(Order).where(
                and_(
                    Order.tenant_id == self.tenant_id,
                    func.length(Order.normalized_order_number) >= min_partial_length,
                    or_(
                        Order.normalized_order_number.contains(normalized, autoescape=True),
                        literal(normalized).contains(Order.normalized_order_number),
                    )
                )
            ).limit(2)
        ).scalars().all()

        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.info(
                "Ambiguous partial order reference",
                extra={"order_reference": normalized}
            )
        return None

    # Lines

    def lines(self, order_id: UUID) -> list[OrderLine]:
        return list(self.db.execute(
            select(OrderLine)
            .where(and_(OrderLine.order_id == order_id, OrderLine.tenant_id == self.tenant_id))
            .order_by(OrderLine.position.asc(), OrderLine.created_at.asc())
        ).scalars().all())

    def shipped_quantities(self, order_id: UUID) -> Dict[UUID, int]:
        """Total shipped quantity per order line."""
        rows = self.db.execute(
            select(ShipmentLine.order_line_id, func.sum(ShipmentLine.quantity))
            .join(Shipment, Shipment.id == ShipmentLine.shipment_id)
            .where(and_(Shipment.order_id == order_id, Shipment.tenant_id == self.tenant_id))
            .group_by(ShipmentLine.order_line_id)
        ).all()
        return {line_id: int(total or 0) for line_id, total in rows}

    def returned_quantities(self, order_id: UUID) -> Dict[UUID, int]:
        """Total returned quantity per order line, rejected returns excluded."""
        rows = self.db.execute(
            select(ReturnLine.order_line_id, func.sum(ReturnLine.quantity))
            .join(OrderReturn, OrderReturn.id == ReturnLine.return_id)
            .where(
                and_(
                    OrderReturn.order_id == order_id,
                    OrderReturn.tenant_id == self.tenant_id,
                    OrderReturn.status != ReturnStatus.REJECTED.value
                )
            )
            .group_by(ReturnLine.order_line_id)
        ).all()
        return {line_id: int(total or 0) for line_id, total in rows}

    # Shipments and deliveries

    def shipments(self, order_id: UUID) -> list[Shipment]:
        return list(self.db.execute(
            select(Shipment)
            .where(and_(Shipment.order_id == order_id, Shipment.tenant_id == self.tenant_id))
            .order_by(Shipment.created_at.asc(), Shipment.id.asc())
        ).scalars().all())

    def find_shipment_by_tracking(self, tracking_number: Optional[str]) -> Optional[Shipment]:
        if not tracking_number:
            return None
        return self.db.execute(
            select(Shipment).where(
                and_(
                    Shipment.tenant_id == self.tenant_id,
                    Shipment.tracking_number == tracking_number
                )
            )
        ).scalar_one_or_none()

    def find_shipment_by_source(self, order_id: UUID, message_id: UUID) -> Optional[Shipment]:
        return self.db.execute(
            select(Shipment).where(
                and_(
                    Shipment.order_id == order_id,
                    Shipment.source_message_id == message_id
                )
            ).order_by(Shipment.created_at.asc())
        ).scalars().first()

    def shipment_lines(self, shipment_id: UUID) -> list[ShipmentLine]:
        return list(self.db.execute(
            select(ShipmentLine).where(ShipmentLine.shipment_id == shipment_id)
        ).scalars().all())

    def get_shipment_line(self, shipment_id: UUID, order_line_id: UUID) -> Optional[ShipmentLine]:
        return self.db.execute(
            select(ShipmentLine).where(
                and_(
                    ShipmentLine.shipment_id == shipment_id,
                    ShipmentLine.order_line_id == order_line_id
                )
            )
        ).scalar_one_or_none()

    def delivery_for_shipment(self, shipment_id: UUID) -> Optional[Delivery]:
        return self.db.execute(
            select(Delivery).where(Delivery.shipment_id == shipment_id)
        ).scalar_one_or_none()

    def find_delivery_by_source(self, message_id: UUID) -> Optional[Delivery]:
        return self.db.execute(
            select(Delivery).where(
                and_(
                    Delivery.tenant_id == self.tenant_id,
                    Delivery.source_message_id == message_id
                )
            )
        ).scalars().first()

    def deliveries(self, order_id: UUID) -> list[Delivery]:
        return list(self.db.execute(
            select(Delivery)
            .join(Shipment, Shipment.id == Delivery.shipment_id)
            .where(and_(Shipment.order_id == order_id, Shipment.tenant_id == self.tenant_id))
        ).scalars().all())

    # Returns and refunds

    def returns(self, order_id: UUID) -> list[OrderReturn]:
        return list(self.db.execute(
            select(OrderReturn)
            .where(and_(OrderReturn.order_id == order_id, OrderReturn.tenant_id == self.tenant_id))
            .order_by(OrderReturn.created_at.asc(), OrderReturn.id.asc())
        ).scalars().all())

    def find_return_by_rma(self, rma_number: Optional[str], order_id: Optional[UUID] = None) -> Optional[OrderReturn]:
        """Find a return by RMA, within one order or across the tenant."""
        if not rma_number:
            return None
        conditions = [
            OrderReturn.tenant_id == self.tenant_id,
            OrderReturn.rma_number == rma_number,
        ]
        if order_id is not None:
            conditions.append(OrderReturn.order_id == order_id)
        return self.db.execute(
            select(OrderReturn).where(and_(*conditions)).order_by(OrderReturn.created_at.asc())
        ).scalars().first()

    def find_return_by_reason(self, order_id: UUID, reason_key: str) -> Optional[OrderReturn]:
        """Find a return without RMA by (order, normalized reason)."""
        return self.db.execute(
            select(OrderReturn).where(
                and_(
                    OrderReturn.order_id == order_id,
                    OrderReturn.reason_key == reason_key,
                    OrderReturn.rma_number.is_(None)
                )
            ).order_by(OrderReturn.created_at.asc())
        ).scalars().first()

    def return_lines(self, return_id: UUID) -> list[ReturnLine]:
        return list(self.db.execute(
            select(ReturnLine).where(ReturnLine.return_id == return_id)
        ).scalars().all())

    def get_return_line(self, return_id: UUID, order_line_id: UUID) -> Optional[ReturnLine]:
        return self.db.execute(
            select(ReturnLine).where(
                and_(
                    ReturnLine.return_id == return_id,
                    ReturnLine.order_line_id == order_line_id
                )
            )
        ).scalar_one_or_none()

    def refunds(self, order_id: UUID) -> list[Refund]:
        return list(self.db.execute(
            select(Refund)
            .where(and_(Refund.order_id == order_id, Refund.tenant_id == self.tenant_id))
            .order_by(Refund.created_at.asc())
        ).scalars().all())

    def find_refund_by_transaction(self, transaction_id: Optional[str]) -> Optional[Refund]:
        if not transaction_id:
            return None
        return self.db.execute(
            select(Refund).where(
                and_(
                    Refund.tenant_id == self.tenant_id,
                    Refund.transaction_id == transaction_id
                )
            )
        ).scalar_one_or_none()

    def find_refund_by_source(
        self,
        order_id: UUID,
        message_id: UUID,
        amount: Optional[Decimal],
    ) -> Optional[Refund]:
        amount_filter = Refund.amount.is_(None) if amount is None else Refund.amount == amount
        return self.db.execute(
            select(Refund).where(
                and_(
                    Refund.order_id == order_id,
                    Refund.source_message_id == message_id,
                    amount_filter
                )
            )
        ).scalars().first()

    # Timeline

    def event_exists(
        self,
        order_id: UUID,
        message_id: Optional[UUID],
        event_type: str,
        entity_id: Optional[UUID],
    ) -> bool:
        message_filter = (
            OrderEvent.inbound_message_id.is_(None) if message_id is None
            else OrderEvent.inbound_message_id == message_id
        )
        entity_filter = (
            OrderEvent.entity_id.is_(None) if entity_id is None
            else OrderEvent.entity_id == entity_id
        )
        return self.db.execute(
            select(OrderEvent.id).where(
                and_(
                    OrderEvent.order_id == order_id,
                    OrderEvent.event_type == event_type,
                    message_filter,
                    entity_filter
                )
            ).limit(1)
        ).first() is not None

    def events(self, order_id: UUID) -> list[OrderEvent]:
        return list(self.db.execute(
            select(OrderEvent)
            .where(and_(OrderEvent.order_id == order_id, OrderEvent.tenant_id == self.tenant_id))
            .order_by(OrderEvent.created_at.asc())
        ).scalars().all())

    # Aggregation input

    def load_graph(self, order: Order) -> OrderGraph:
        """Build the immutable snapshot of an order and its children.

        Line snapshots carry only the sticky CANCELLED status; every other
        line status is re-derived from shipment and return quantities.
        """
        lines = tuple(
            LineSnapshot(
                line_id=line.id,
                quantity=line.quantity,
                status=(
                    OrderLineStatus.CANCELLED
                    if line.status == OrderLineStatus.CANCELLED.value
                    else OrderLineStatus.ORDERED
                ),
            )
            for line in self.lines(order.id)
        )

        shipment_snapshots = []
        for shipment in self.shipments(order.id):
            shipment_snapshots.append(ShipmentSnapshot(
                shipment_id=shipment.id,
                status=ShipmentStatus(shipment.status),
                lines=tuple(
                    ItemQuantity(line_id=sl.order_line_id, quantity=sl.quantity)
                    for sl in self.shipment_lines(shipment.id)
                ),
            ))

        delivery_snapshots = tuple(
            DeliverySnapshot(
                shipment_id=delivery.shipment_id,
                status=DeliveryStatus(delivery.status),
                issue_type=parse_enum(DeliveryIssueType, delivery.issue_type),
                issue_resolved=bool(delivery.issue_resolved),
            )
            for delivery in self.deliveries(order.id)
        )

        return_snapshots = []
        for ret in self.returns(order.id):
            return_snapshots.append(ReturnSnapshot(
                return_id=ret.id,
                status=ReturnStatus(ret.status),
                lines=tuple(
                    ItemQuantity(line_id=rl.order_line_id, quantity=rl.quantity)
                    for rl in self.return_lines(ret.id)
                ),
            ))

        refund_snapshots = tuple(
            RefundSnapshot(refund_id=refund.id, amount=refund.amount, return_id=refund.return_id)
            for refund in self.refunds(order.id)
        )

        return OrderGraph(
            order=OrderSnapshot(
                order_id=order.id,
                is_inferred=bool(order.is_inferred),
                is_closed=bool(order.is_closed),
                is_cancelled=bool(order.is_cancelled),
            ),
            lines=lines,
            shipments=tuple(shipment_snapshots),
            deliveries=delivery_snapshots,
            returns=tuple(return_snapshots),
            refunds=refund_snapshots,
        )
