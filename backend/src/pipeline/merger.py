"""Order graph merger.

Merges parsed facts from one inbound message into the tenant's order
graph. Every merge is idempotent with respect to the causing message:
natural keys (order number, tracking number, RMA, transaction id) and the
source message id are checked before anything is inserted.

Orders that are referenced before their confirmation arrives are created
as inferred stubs. Item references that cannot be placed on a known order
line are kept on the shipment or return as pending items and placed by
orphan reconciliation once the order's lines are known.

After each merge the touched order is finalized:
1. pending items are reconciled against the order lines
2. line statuses are re-derived from quantities
3. the order status is recomputed by the status aggregator
4. the order row is touched, which bumps its version counter
5. one OrderEvent is appended (deduplicated per message and entity)

The merger never commits; the orchestrator owns the transaction.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from domain.orders.enums import (
    OrderStatus,
    OrderLineStatus,
    ShipmentStatus,
    DeliveryStatus,
    ReturnStatus,
    SHIPMENT_PROGRESS,
    RETURN_PROGRESS,
)
from domain.orders.status_aggregator import derive_line_statuses, recompute_from_graph
from domain.parsing.results import (
    ItemReference,
    OrderData,
    ShipmentData,
    DeliveryData,
    ReturnData,
    RefundData,
    CancellationData,
    PaymentData,
)
from domain.reconciliation.line_matching import (
    CandidateLine,
    ContainmentMatcher,
    LineMatcher,
    normalize_product_name,
    normalize_sku,
)
from infrastructure.repositories.order_repository import OrderRepository, normalize_order_reference
from models.base import utcnow
from models.inbound_message import InboundMessage
from models.order import Order, OrderLine
from models.order_event import OrderEvent
from models.order_return import OrderReturn, ReturnLine
from models.refund import Refund
from models.shipment import Shipment, ShipmentLine, Delivery
from .errors import StructuralMergeError
from .policy import ProcessingPolicy

logger = logging.getLogger(__name__)

# Scalar order fields copied from OrderData when present
_ORDER_FIELDS = (
    "order_date",
    "subtotal",
    "tax_amount",
    "shipping_cost",
    "discount_amount",
    "total_amount",
    "estimated_delivery_start",
    "estimated_delivery_end",
    "shipping_address",
    "payment_method_summary",
    "external_order_url",
)

_LINE_FIELDS = ("sku", "unit_price", "line_total", "product_url", "image_url")


class EventType:
    """OrderEvent types, one per merge kind"""
    ORDER_CONFIRMED = "ORDER_CONFIRMED"
    ORDER_MODIFIED = "ORDER_MODIFIED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    SHIPMENT_RECORDED = "SHIPMENT_RECORDED"
    DELIVERY_RECORDED = "DELIVERY_RECORDED"
    RETURN_RECORDED = "RETURN_RECORDED"
    REFUND_RECORDED = "REFUND_RECORDED"
    ORDER_CLOSED = "ORDER_CLOSED"


@dataclass
class MergeOutcome:
    """Entities touched while merging one message.

    Attributes:
        order_ids: Orders finalized, in merge order
        entities: Entity type → ids created or updated
        created: Entity type → ids created by this merge
        orphaned_items: Item references left pending after reconciliation
        reconciled_items: Pending items placed on order lines
        status_changes: Order id → (old status, new status)
    """
    order_ids: List[UUID] = field(default_factory=list)
    entities: Dict[str, List[str]] = field(default_factory=dict)
    created: Dict[str, List[str]] = field(default_factory=dict)
    orphaned_items: int = 0
    reconciled_items: int = 0
    status_changes: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    def record(self, entity_type: str, entity_id: UUID, created: bool = False) -> None:
        ids = self.entities.setdefault(entity_type, [])
        if str(entity_id) not in ids:
            ids.append(str(entity_id))
        if created:
            new_ids = self.created.setdefault(entity_type, [])
            if str(entity_id) not in new_ids:
                new_ids.append(str(entity_id))

    def to_dict(self) -> dict:
        return {
            "order_ids": [str(o) for o in self.order_ids],
            "entities": self.entities,
            "created": self.created,
            "orphaned_items": self.orphaned_items,
            "reconciled_items": self.reconciled_items,
            "status_changes": {k: list(v) for k, v in self.status_changes.items()},
        }


def _reason_key(reason: Optional[str]) -> str:
    return normalize_product_name(reason)


def _item_key(item: dict) -> Tuple[str, str]:
    return (normalize_sku(item.get("sku")), normalize_product_name(item.get("product_name")))


def _item_dict(item: ItemReference) -> dict:
    return item.model_dump(mode="json", exclude_none=True)


def _advance_shipment_status(current: Optional[str], new: ShipmentStatus) -> ShipmentStatus:
    """Shipment status never moves backwards; off-track states are set directly."""
    if current is None:
        return new
    current_status = ShipmentStatus(current)
    if current_status == ShipmentStatus.DELIVERED and new != ShipmentStatus.RETURNED:
        return current_status
    if new not in SHIPMENT_PROGRESS:
        return new
    if current_status not in SHIPMENT_PROGRESS:
        return new
    if SHIPMENT_PROGRESS[new] > SHIPMENT_PROGRESS[current_status]:
        return new
    return current_status


def _advance_return_status(current: Optional[str], new: ReturnStatus) -> ReturnStatus:
    """Return status advances by rank; REJECTED is set directly and is final."""
    if current is None:
        return new
    current_status = ReturnStatus(current)
    if new == ReturnStatus.REJECTED:
        return new
    if current_status == ReturnStatus.REJECTED:
        return current_status
    if RETURN_PROGRESS.get(new, 0) > RETURN_PROGRESS.get(current_status, 0):
        return new
    return current_status


class OrderGraphMerger:
    """Merges one message's parsed data into the order graph.

    Args:
        db: Session of the orchestrator's unit of work
        tenant_id: Tenant the message belongs to
        message: Inbound message causing the merge (None for operator actions)
        retailer_id: Matched retailer, linked to orders created here
        line_matcher: Strategy used to place items on order lines
        policy: Processing policy (order reference lookup)
    """

    def __init__(
        self,
        db: Session,
        tenant_id: UUID,
        message: Optional[InboundMessage],
        retailer_id: Optional[UUID] = None,
        line_matcher: Optional[LineMatcher] = None,
        policy: Optional[ProcessingPolicy] = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.message = message
        self.message_id = message.id if message is not None else None
        self.retailer_id = retailer_id
        self.line_matcher = line_matcher or ContainmentMatcher()
        self.policy = policy or ProcessingPolicy()
        self.repo = OrderRepository(db, tenant_id)
        self.outcome = MergeOutcome()

    # Order resolution

    def _resolve_order(
        self, reference: Optional[str], inferred: bool = True, allow_partial: bool = True,
    ) -> Tuple[Order, bool]:
        """Find the referenced order, or create it (an inferred stub by default).

        Messages without any order reference get a stub keyed on the
        message id, so reprocessing finds the same stub again. Order
        confirmations pass allow_partial=False: their number is the natural
        key and must not be folded into an order with an overlapping number.
        """
        order = self.repo.find_by_reference(
            reference, self.policy.min_partial_reference_length, allow_partial=allow_partial,
        )
        if order is not None:
            return order, False

        number = (reference or "").strip() or f"UNKNOWN-{self.message_id}"
        normalized = normalize_order_reference(number)
        order = self.repo.get_by_normalized_number(normalized)
        if order is not None:
            return order, False

        if self.message_id is None and not reference:
            raise StructuralMergeError("Cannot create an order without reference outside message processing")

        order = Order(
            tenant_id=self.tenant_id,
            retailer_id=self.retailer_id,
            external_order_number=number,
            normalized_order_number=normalized,
            status=OrderStatus.INFERRED if inferred else OrderStatus.PLACED,
            is_inferred=inferred,
            source_message_id=self.message_id,
            last_message_id=self.message_id,
        )
        self._insert(order)
        self.outcome.record("order", order.id, created=True)
        logger.info(
            f"Created {'inferred ' if inferred else ''}order {number}",
            extra={"order_id": str(order.id), "inbound_message_id": str(self.message_id)}
        )
        return order, True

    def _check_same_order(self, owner: Order, reference: Optional[str], what: str) -> None:
        """A natural key found on one order must not be claimed by another existing order."""
        referenced = self.repo.find_by_reference(reference, self.policy.min_partial_reference_length)
        if referenced is not None and referenced.id != owner.id:
            raise StructuralMergeError(
                f"{what} belongs to order {owner.external_order_number} "
                f"but message references order {referenced.external_order_number}"
            )

    def _insert(self, entity) -> None:
        self.db.add(entity)
        self.db.flush()

    # Orders and lines

    def merge_order(self, data: OrderData, is_modification: bool = False) -> Order:
        """Create or enrich an order from a confirmation or modification.

        Enriching an inferred stub fills in its lines and totals and clears
        the inferred flag; orphaned shipment and return items are then
        reconciled against the new lines.

        Args:
            data: Parsed order
            is_modification: Message modifies an existing order

        Returns:
            The merged Order
        """
        order, created = self._resolve_order(data.external_order_number, inferred=False, allow_partial=False)
        was_inferred = bool(order.is_inferred) and not created

        for name in _ORDER_FIELDS:
            value = getattr(data, name)
            if value is not None:
                setattr(order, name, value)
        if data.currency:
            order.currency = data.currency
        if order.retailer_id is None and self.retailer_id is not None:
            order.retailer_id = self.retailer_id
        order.is_inferred = False

        added, updated = self._merge_lines(order, data)
        self.outcome.record("order", order.id)

        event_type = EventType.ORDER_MODIFIED if is_modification else EventType.ORDER_CONFIRMED
        summary = (
            f"Order {order.external_order_number} "
            f"{'modified' if is_modification else 'confirmed'}"
        )
        if was_inferred:
            summary += " (inferred order reconciled)"
        self._finalize(order, event_type, "order", order.id, summary, {
            "lines_added": added,
            "lines_updated": updated,
            "reconciled_stub": was_inferred,
        })
        return order

    def _merge_lines(self, order: Order, data: OrderData) -> Tuple[int, int]:
        # Group repeated rows of the same line within one message
        grouped: Dict[tuple, dict] = {}
        for line_data in data.lines:
            name = normalize_product_name(line_data.product_name)
            if line_data.line_number is not None:
                key = ("number", line_data.line_number)
            elif name:
                key = ("name", name)
            elif normalize_sku(line_data.sku):
                key = ("sku", normalize_sku(line_data.sku))
            else:
                logger.warning(
                    "Skipping order line without number, name or SKU",
                    extra={"order_id": str(order.id)}
                )
                continue
            if key in grouped:
                grouped[key]["quantity"] += line_data.quantity
            else:
                grouped[key] = {"data": line_data, "quantity": line_data.quantity, "name": name}

        existing = self.repo.lines(order.id)
        shipped = self.repo.shipped_quantities(order.id)
        next_position = max((line.position for line in existing), default=-1) + 1
        added = updated = 0

        for (kind, value), group in grouped.items():
            line_data = group["data"]
            line = self._find_line(existing, kind, value, group["name"])
            if line is None:
                line = OrderLine(
                    tenant_id=self.tenant_id,
                    order_id=order.id,
                    position=next_position,
                    line_number=line_data.line_number,
                    product_name=line_data.product_name,
                    normalized_name=group["name"] or None,
                    quantity=group["quantity"],
                    status=OrderLineStatus.CANCELLED if order.is_cancelled else OrderLineStatus.ORDERED,
                )
                for name in _LINE_FIELDS:
                    setattr(line, name, getattr(line_data, name))
                self._insert(line)
                existing.append(line)
                next_position += 1
                added += 1
                self.outcome.record("order_line", line.id, created=True)
                continue

            if line_data.product_name:
                line.product_name = line_data.product_name
                line.normalized_name = group["name"] or line.normalized_name
            if line.line_number is None and line_data.line_number is not None:
                line.line_number = line_data.line_number
            for name in _LINE_FIELDS:
                new_value = getattr(line_data, name)
                if new_value is not None:
                    setattr(line, name, new_value)
            # Quantity never drops below what already shipped
            line.quantity = max(group["quantity"], shipped.get(line.id, 0))
            updated += 1
            self.outcome.record("order_line", line.id)

        self.db.flush()
        return added, updated

    @staticmethod
    def _find_line(lines: Sequence[OrderLine], kind: str, value, name: str) -> Optional[OrderLine]:
        if kind == "number":
            for line in lines:
                if line.line_number == value:
                    return line
            if name:
                for line in lines:
                    if line.line_number is None and line.normalized_name == name:
                        return line
            return None
        if kind == "name":
            for line in lines:
                if line.line_number is None and line.normalized_name == value:
                    return line
            return None
        for line in lines:
            if normalize_sku(line.sku) == value:
                return line
        return None

    # Shipments and deliveries

    def merge_shipment(self, data: ShipmentData) -> Shipment:
        """Create or update a shipment, deduplicated by tracking number.

        Raises:
            StructuralMergeError: Tracking number already belongs to a
                different order than the one the message references
        """
        shipment = self.repo.find_shipment_by_tracking(data.tracking_number)
        if shipment is not None:
            order = self.repo.get_order(shipment.order_id)
            self._check_same_order(order, data.order_reference, f"Tracking number {data.tracking_number}")
        else:
            order, _ = self._resolve_order(data.order_reference)
            if not data.tracking_number:
                shipment = self.repo.find_shipment_by_source(order.id, self.message_id)

        created = shipment is None
        if created:
            shipment = Shipment(
                tenant_id=self.tenant_id,
                order_id=order.id,
                tracking_number=data.tracking_number,
                status=data.status,
                source_message_id=self.message_id,
            )
            self._insert(shipment)
        else:
            shipment.status = _advance_shipment_status(shipment.status, data.status)

        for name in ("carrier", "tracking_url", "ship_date", "estimated_delivery", "status_detail"):
            value = getattr(data, name)
            if value is not None:
                setattr(shipment, name, value)

        self._attach_items(order, shipment, [_item_dict(i) for i in data.items], kind="shipment")
        self.outcome.record("shipment", shipment.id, created=created)

        self._finalize(
            order,
            EventType.SHIPMENT_RECORDED,
            "shipment",
            shipment.id,
            f"Shipment {shipment.tracking_number or shipment.id} {shipment.status}",
            {"created": created, "carrier": shipment.carrier, "status": shipment.status},
        )
        return shipment

    def merge_delivery(self, data: DeliveryData) -> Delivery:
        """Record a delivery or delivery issue on the matching shipment.

        The shipment is located by tracking number, then by a delivery
        this message already recorded, then as the latest undelivered
        shipment of the referenced order. Without any shipment a stub
        shipment is created.
        """
        shipment = self.repo.find_shipment_by_tracking(data.tracking_number)
        if shipment is not None:
            order = self.repo.get_order(shipment.order_id)
            self._check_same_order(order, data.order_reference, f"Tracking number {data.tracking_number}")
        else:
            previous = self.repo.find_delivery_by_source(self.message_id)
            if previous is not None:
                shipment = self.db.get(Shipment, previous.shipment_id)
                order = self.repo.get_order(shipment.order_id)
            else:
                order, _ = self._resolve_order(data.order_reference)
                if not data.tracking_number:
                    undelivered = [
                        s for s in self.repo.shipments(order.id)
                        if s.status != ShipmentStatus.DELIVERED.value
                    ]
                    shipment = undelivered[-1] if undelivered else None

        if shipment is None:
            shipment = Shipment(
                tenant_id=self.tenant_id,
                order_id=order.id,
                carrier=data.carrier,
                tracking_number=data.tracking_number,
                status=ShipmentStatus.SHIPPED,
                source_message_id=self.message_id,
            )
            self._insert(shipment)
            self.outcome.record("shipment", shipment.id, created=True)

        is_issue = data.issue_type is not None or data.status != DeliveryStatus.DELIVERED

        delivery = self.repo.delivery_for_shipment(shipment.id)
        created = delivery is None
        if created:
            delivery = Delivery(
                tenant_id=self.tenant_id,
                shipment_id=shipment.id,
                status=data.status,
                issue_type=data.issue_type,
                source_message_id=self.message_id,
            )
            self._insert(delivery)
        elif is_issue:
            delivery.status = data.status
            delivery.issue_type = data.issue_type
            delivery.issue_resolved = False
        else:
            had_issue = delivery.issue_type is not None or delivery.status != DeliveryStatus.DELIVERED.value
            delivery.status = DeliveryStatus.DELIVERED
            if had_issue:
                delivery.issue_resolved = True

        for name in ("delivery_date", "delivery_location", "issue_description", "signed_by", "photo_url"):
            value = getattr(data, name)
            if value is not None:
                setattr(delivery, name, value)
        if data.carrier and not shipment.carrier:
            shipment.carrier = data.carrier

        if is_issue:
            shipment.status = ShipmentStatus.EXCEPTION
        else:
            shipment.status = ShipmentStatus.DELIVERED

        self.outcome.record("delivery", delivery.id, created=created)
        self.outcome.record("shipment", shipment.id)

        summary = (
            f"Delivery issue {data.issue_type.value if data.issue_type else data.status.value}"
            if is_issue else "Delivered"
        )
        self._finalize(
            order,
            EventType.DELIVERY_RECORDED,
            "delivery",
            delivery.id,
            f"{summary} (shipment {shipment.tracking_number or shipment.id})",
            {"created": created, "status": delivery.status, "issue_type": delivery.issue_type},
        )
        return delivery

    # Returns and refunds

    def merge_return(self, data: ReturnData) -> OrderReturn:
        """Create or update a return, deduplicated by RMA or (order, reason)."""
        ret = self.repo.find_return_by_rma(data.rma_number)
        if ret is not None:
            order = self.repo.get_order(ret.order_id)
            self._check_same_order(order, data.order_reference, f"RMA {data.rma_number}")
        else:
            order, _ = self._resolve_order(data.order_reference)
            ret = self.repo.find_return_by_reason(order.id, _reason_key(data.return_reason))

        created = ret is None
        if created:
            ret = OrderReturn(
                tenant_id=self.tenant_id,
                order_id=order.id,
                rma_number=data.rma_number,
                reason_key=_reason_key(data.return_reason),
                status=data.status,
                source_message_id=self.message_id,
            )
            self._insert(ret)
        else:
            ret.status = _advance_return_status(ret.status, data.status)
            if ret.rma_number is None and data.rma_number:
                ret.rma_number = data.rma_number

        for name in (
            "return_reason",
            "return_method",
            "return_carrier",
            "return_tracking_number",
            "return_by_date",
            "received_by_retailer_date",
            "rejection_reason",
            "estimated_refund_amount",
        ):
            value = getattr(data, name)
            if value is not None:
                setattr(ret, name, value)

        self._attach_items(order, ret, [_item_dict(i) for i in data.items], kind="return")
        self.outcome.record("return", ret.id, created=created)

        self._finalize(
            order,
            EventType.RETURN_RECORDED,
            "return",
            ret.id,
            f"Return {ret.rma_number or ret.id} {ret.status}",
            {"created": created, "status": ret.status, "rma_number": ret.rma_number},
        )
        return ret

    def merge_refund(self, data: RefundData) -> Refund:
        """Record a refund, linking it to a return by RMA when given.

        A linked return is moved to REFUNDED.
        """
        linked = self.repo.find_return_by_rma(data.return_rma)
        if linked is not None:
            order = self.repo.get_order(linked.order_id)
            self._check_same_order(order, data.order_reference, f"RMA {data.return_rma}")
        else:
            order, _ = self._resolve_order(data.order_reference)

        refund = self.repo.find_refund_by_transaction(data.transaction_id)
        if refund is not None and refund.order_id != order.id:
            raise StructuralMergeError(
                f"Refund transaction {data.transaction_id} already recorded on another order"
            )
        if refund is None:
            refund = self.repo.find_refund_by_source(order.id, self.message_id, data.refund_amount)

        created = refund is None
        if created:
            refund = Refund(
                tenant_id=self.tenant_id,
                order_id=order.id,
                amount=data.refund_amount,
                transaction_id=data.transaction_id,
                source_message_id=self.message_id,
            )
            self._insert(refund)

        refund.currency = data.currency or refund.currency
        refund.is_partial = data.is_partial
        for name in ("refund_method", "refund_date"):
            value = getattr(data, name)
            if value is not None:
                setattr(refund, name, value)
        if linked is not None:
            refund.return_id = linked.id
            linked.status = _advance_return_status(linked.status, ReturnStatus.REFUNDED)
            self.outcome.record("return", linked.id)

        self.outcome.record("refund", refund.id, created=created)
        self._finalize(
            order,
            EventType.REFUND_RECORDED,
            "refund",
            refund.id,
            f"Refund {refund.amount if refund.amount is not None else ''} {refund.currency}".strip(),
            {"created": created, "return_id": str(refund.return_id) if refund.return_id else None},
        )
        return refund

    # Cancellation and payment

    def merge_cancellation(self, data: CancellationData) -> Order:
        """Cancel named lines, or the whole order.

        A full cancellation, or one that names no items, cancels every
        line and flags the order so lines learned later arrive cancelled.
        Named items cancel their whole matched line. An inline refund
        amount is recorded as a Refund.
        """
        order, _ = self._resolve_order(data.order_reference)
        lines = self.repo.lines(order.id)
        cancelled = []

        if data.is_full_cancellation or not data.cancelled_items:
            order.is_cancelled = True
            for line in lines:
                if line.status != OrderLineStatus.CANCELLED.value:
                    line.status = OrderLineStatus.CANCELLED
                    cancelled.append(line)
        else:
            candidates = self._candidates(lines, include_cancelled=True)
            by_id = {line.id: line for line in lines}
            for item in data.cancelled_items:
                match = self.line_matcher.match(item.product_name, item.sku, candidates)
                if match is None:
                    self.outcome.orphaned_items += 1
                    logger.warning(
                        "Cancelled item matches no order line",
                        extra={"order_id": str(order.id), "product_name": item.product_name}
                    )
                    continue
                line = by_id[match.line_id]
                if line.status != OrderLineStatus.CANCELLED.value:
                    line.status = OrderLineStatus.CANCELLED
                    cancelled.append(line)

        for line in cancelled:
            self.outcome.record("order_line", line.id)

        if data.refund_amount is not None:
            refund = self.repo.find_refund_by_source(order.id, self.message_id, data.refund_amount)
            refund_created = refund is None
            if refund_created:
                refund = Refund(
                    tenant_id=self.tenant_id,
                    order_id=order.id,
                    amount=data.refund_amount,
                    currency=order.currency or "USD",
                    refund_method=data.refund_method,
                    source_message_id=self.message_id,
                )
                self._insert(refund)
            self.outcome.record("refund", refund.id, created=refund_created)

        self.db.flush()
        self._finalize(
            order,
            EventType.ORDER_CANCELLED,
            "order",
            order.id,
            (
                f"Order {order.external_order_number} cancelled"
                if order.is_cancelled else
                f"{len(cancelled)} line(s) of order {order.external_order_number} cancelled"
            ),
            {
                "full": bool(order.is_cancelled),
                "cancelled_line_ids": [str(line.id) for line in cancelled],
                "reason": data.cancellation_reason,
                "initiated_by": data.initiated_by,
            },
        )
        return order

    def merge_payment(self, data: PaymentData) -> Order:
        """Record the payment method and amount on the order."""
        order, _ = self._resolve_order(data.order_reference)
        if data.payment_method:
            order.payment_method_summary = data.payment_method
        if order.total_amount is None and data.amount is not None:
            order.total_amount = data.amount
        self.outcome.record("order", order.id)
        self._finalize(
            order,
            EventType.PAYMENT_CONFIRMED,
            "order",
            order.id,
            f"Payment confirmed for order {order.external_order_number}",
            {
                "amount": str(data.amount) if data.amount is not None else None,
                "currency": data.currency,
                "transaction_id": data.transaction_id,
            },
        )
        return order

    def close_order(self, order: Order) -> OrderStatus:
        """Operator close. The order shows CLOSED once all its lines are delivered."""
        order.is_closed = True
        self._finalize(
            order,
            EventType.ORDER_CLOSED,
            "order",
            order.id,
            f"Order {order.external_order_number} closed by operator",
            {"closed": True},
        )
        return OrderStatus(order.status)

    # Item placement and reconciliation

    @staticmethod
    def _candidates(lines: Sequence[OrderLine], include_cancelled: bool = False) -> List[CandidateLine]:
        return [
            CandidateLine(
                line_id=line.id,
                product_name=line.product_name,
                sku=line.sku,
                line_number=line.line_number,
            )
            for line in lines
            if include_cancelled or line.status != OrderLineStatus.CANCELLED.value
        ]

    def _attach_items(self, order: Order, entity, items: List[dict], kind: str) -> None:
        """Place new item references on order lines, keeping the rest pending."""
        if not items:
            return
        lines = self.repo.lines(order.id)
        pending = list(entity.pending_items_json or [])
        known = {_item_key(item) for item in pending}

        unplaced = self._place_items(order, entity, items, lines, kind) if lines else items
        for item in unplaced:
            if _item_key(item) not in known:
                pending.append(item)
                known.add(_item_key(item))
        entity.pending_items_json = pending or None

    def _place_items(
        self,
        order: Order,
        entity,
        items: List[dict],
        lines: Sequence[OrderLine],
        kind: str,
    ) -> List[dict]:
        """Turn item references into ShipmentLine / ReturnLine rows.

        Quantities are clamped so that shipped never exceeds ordered and
        returned never exceeds shipped. Items already placed on the same
        entity are skipped.

        Returns:
            Items that matched no order line
        """
        candidates = self._candidates(lines)
        by_id = {line.id: line for line in lines}
        unplaced = []

        for item in items:
            match = self.line_matcher.match(item.get("product_name"), item.get("sku"), candidates)
            if match is None:
                unplaced.append(item)
                continue
            line = by_id[match.line_id]
            wanted = max(int(item.get("quantity") or 1), 1)

            if kind == "shipment":
                if self.repo.get_shipment_line(entity.id, line.id) is not None:
                    continue
                available = line.quantity - self.repo.shipped_quantities(order.id).get(line.id, 0)
            else:
                if self.repo.get_return_line(entity.id, line.id) is not None:
                    continue
                available = (
                    self.repo.shipped_quantities(order.id).get(line.id, 0)
                    - self.repo.returned_quantities(order.id).get(line.id, 0)
                )

            if available <= 0:
                if kind == "return" and self.repo.shipped_quantities(order.id).get(line.id, 0) == 0:
                    # Not shipped yet as far as we know; retry once shipments are placed
                    unplaced.append(item)
                else:
                    logger.warning(
                        f"Dropping {kind} item exceeding remaining quantity",
                        extra={"order_id": str(order.id), "order_line_id": str(line.id)}
                    )
                continue

            quantity = min(wanted, available)
            if kind == "shipment":
                join = ShipmentLine(
                    tenant_id=self.tenant_id,
                    shipment_id=entity.id,
                    order_line_id=line.id,
                    quantity=quantity,
                )
            else:
                join = ReturnLine(
                    tenant_id=self.tenant_id,
                    return_id=entity.id,
                    order_line_id=line.id,
                    quantity=quantity,
                    reason=item.get("return_reason") or entity.return_reason,
                )
            self._insert(join)
        return unplaced

    def _reconcile_orphans(self, order: Order) -> None:
        """Place pending shipment and return items now that lines may be known.

        A lone shipment carrying no items at all is taken to cover every
        unshipped line.
        """
        lines = self.repo.lines(order.id)
        if not lines:
            for shipment in self.repo.shipments(order.id):
                self.outcome.orphaned_items += len(shipment.pending_items_json or [])
            for ret in self.repo.returns(order.id):
                self.outcome.orphaned_items += len(ret.pending_items_json or [])
            return

        shipments = self.repo.shipments(order.id)
        for shipment in shipments:
            pending = list(shipment.pending_items_json or [])
            if not pending:
                continue
            remaining = self._place_items(order, shipment, pending, lines, "shipment")
            placed = len(pending) - len(remaining)
            if placed:
                self.outcome.reconciled_items += placed
                logger.info(
                    f"Reconciled {placed} orphaned shipment item(s)",
                    extra={"order_id": str(order.id), "shipment_id": str(shipment.id)}
                )
            shipment.pending_items_json = remaining or None
            self.outcome.orphaned_items += len(remaining)

        if len(shipments) == 1:
            lone = shipments[0]
            if not lone.pending_items_json and not self.repo.shipment_lines(lone.id):
                shipped = self.repo.shipped_quantities(order.id)
                for line in lines:
                    if line.status == OrderLineStatus.CANCELLED.value:
                        continue
                    available = line.quantity - shipped.get(line.id, 0)
                    if available > 0:
                        self._insert(ShipmentLine(
                            tenant_id=self.tenant_id,
                            shipment_id=lone.id,
                            order_line_id=line.id,
                            quantity=available,
                        ))
                        self.outcome.reconciled_items += 1

        for ret in self.repo.returns(order.id):
            pending = list(ret.pending_items_json or [])
            if not pending:
                continue
            remaining = self._place_items(order, ret, pending, lines, "return")
            placed = len(pending) - len(remaining)
            if placed:
                self.outcome.reconciled_items += placed
                logger.info(
                    f"Reconciled {placed} orphaned return item(s)",
                    extra={"order_id": str(order.id), "return_id": str(ret.id)}
                )
            ret.pending_items_json = remaining or None
            self.outcome.orphaned_items += len(remaining)

        self.db.flush()

    # Finalization

    def _finalize(
        self,
        order: Order,
        event_type: str,
        entity_type: str,
        entity_id: UUID,
        summary: str,
        details: Optional[dict] = None,
    ) -> None:
        """Reconcile, recompute statuses, touch the order and append its event."""
        self.db.flush()
        self._reconcile_orphans(order)
        self.refresh_status(order)

        if not self.repo.event_exists(order.id, self.message_id, event_type, entity_id):
            event_details = dict(details or {})
            event_details["status"] = order.status
            self.db.add(OrderEvent(
                tenant_id=self.tenant_id,
                order_id=order.id,
                inbound_message_id=self.message_id,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                summary=summary,
                details_json=event_details,
            ))

        if order.id not in self.outcome.order_ids:
            self.outcome.order_ids.append(order.id)
        self.db.flush()

    def refresh_status(self, order: Order) -> OrderStatus:
        """Re-derive line statuses and the order status from the current graph.

        Always touches the order row so that its version is bumped.
        """
        self.db.flush()
        graph = self.repo.load_graph(order)
        line_statuses = derive_line_statuses(graph)
        for line in self.repo.lines(order.id):
            new_status = line_statuses.get(line.id)
            if new_status is not None and line.status != new_status.value:
                line.status = new_status

        old_status = order.status
        new_status = recompute_from_graph(graph)
        order.status = new_status
        if self.message_id is not None:
            order.last_message_id = self.message_id
        order.updated_at = utcnow()
        if old_status != new_status.value:
            previous = self.outcome.status_changes.get(str(order.id), (old_status, None))[0]
            self.outcome.status_changes[str(order.id)] = (previous, new_status.value)
            logger.info(
                f"Order {order.external_order_number} status {old_status} -> {new_status.value}",
                extra={"order_id": str(order.id), "inbound_message_id": str(self.message_id)}
            )
        return new_status
