"""Order status aggregation.

recompute_order_status() derives an order's overall status from the
current state of its lines, shipments, deliveries, returns and refunds.
It keeps no state between calls, so the status can be rebuilt from
scratch at any time. Rules are evaluated top to bottom and the first
match wins:

1. All lines cancelled → CANCELLED; some → PARTIALLY_CANCELLED
2. Any delivery with an unresolved issue → DELIVERY_EXCEPTION
3. All active lines delivered → CLOSED if the operator closed the order,
   REFUNDED if every line was returned and refunded, DELIVERED unless a
   return is still open (then rule 4 applies)
4. Open return → RETURN_RECEIVED or RETURN_IN_PROGRESS by return status;
   a stub with any refund and no open return → REFUNDED
5. Some active lines delivered → PARTIALLY_DELIVERED
6. Most advanced shipment → OUT_FOR_DELIVERY / IN_TRANSIT / SHIPPED,
   with SHIPPED downgraded to PARTIALLY_SHIPPED while lines are unshipped
7. INFERRED for stub orders, otherwise PLACED

Orders without known lines (stubs) are evaluated on shipment coverage
instead of line coverage, and any refund on a stub counts as fully
refunded.
"""

from typing import Dict, Iterable, Sequence, Set
from uuid import UUID

from .enums import (
    OrderStatus,
    OrderLineStatus,
    ShipmentStatus,
    DeliveryStatus,
    ReturnStatus,
    OPEN_RETURN_STATUSES,
    RECEIVED_RETURN_STATUSES,
    RETURN_PROGRESS,
)
from .snapshots import (
    OrderGraph,
    OrderSnapshot,
    LineSnapshot,
    ShipmentSnapshot,
    DeliverySnapshot,
    ReturnSnapshot,
    RefundSnapshot,
)

# Line statuses that imply the line reached the customer
_DELIVERED_LINE_STATUSES = frozenset({
    OrderLineStatus.DELIVERED,
    OrderLineStatus.RETURN_INITIATED,
    OrderLineStatus.RETURNED,
    OrderLineStatus.REFUNDED,
})

_SHIPMENT_RANK = {
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.IN_TRANSIT: 2,
}


class _Quantities:
    """Per-line quantity totals across shipments and returns."""

    def __init__(
        self,
        shipments: Sequence[ShipmentSnapshot],
        deliveries: Sequence[DeliverySnapshot],
        returns: Sequence[ReturnSnapshot],
        refunds: Sequence[RefundSnapshot],
    ):
        delivered_ids = delivered_shipment_ids(shipments, deliveries)
        refunded_ids = refunded_return_ids(returns, refunds)

        self.shipped: Dict[UUID, int] = {}
        self.delivered: Dict[UUID, int] = {}
        self.returned: Dict[UUID, int] = {}
        self.received: Dict[UUID, int] = {}
        self.refunded: Dict[UUID, int] = {}

        for shipment in shipments:
            for item in shipment.lines:
                _add(self.shipped, item.line_id, item.quantity)
                if shipment.shipment_id in delivered_ids:
                    _add(self.delivered, item.line_id, item.quantity)

        for ret in returns:
            if ret.status == ReturnStatus.REJECTED:
                continue
            refunded = ret.return_id in refunded_ids
            received = refunded or RETURN_PROGRESS.get(ret.status, 0) >= RETURN_PROGRESS[ReturnStatus.RECEIVED]
            for item in ret.lines:
                _add(self.returned, item.line_id, item.quantity)
                if received:
                    _add(self.received, item.line_id, item.quantity)
                if refunded:
                    _add(self.refunded, item.line_id, item.quantity)


def _add(totals: Dict[UUID, int], line_id: UUID, quantity: int) -> None:
    totals[line_id] = totals.get(line_id, 0) + quantity


def delivered_shipment_ids(
    shipments: Iterable[ShipmentSnapshot],
    deliveries: Iterable[DeliverySnapshot],
) -> Set[UUID]:
    """Ids of shipments known to have been delivered."""
    ids = {s.shipment_id for s in shipments if s.status == ShipmentStatus.DELIVERED}
    ids.update(d.shipment_id for d in deliveries if d.status == DeliveryStatus.DELIVERED)
    return ids


def refunded_return_ids(
    returns: Iterable[ReturnSnapshot],
    refunds: Iterable[RefundSnapshot],
) -> Set[UUID]:
    """Ids of returns that were refunded, by status or by a linked refund."""
    ids = {
        r.return_id for r in returns
        if r.status in (ReturnStatus.REFUNDED, ReturnStatus.CLOSED)
    }
    ids.update(r.return_id for r in refunds if r.return_id is not None)
    return ids


def _open_returns(
    returns: Sequence[ReturnSnapshot],
    refunds: Sequence[RefundSnapshot],
) -> list:
    refunded_ids = refunded_return_ids(returns, refunds)
    return [
        r for r in returns
        if r.return_id not in refunded_ids
        and (r.status in OPEN_RETURN_STATUSES or r.status in RECEIVED_RETURN_STATUSES)
    ]


def derive_line_status(
    line: LineSnapshot,
    shipments: Sequence[ShipmentSnapshot] = (),
    deliveries: Sequence[DeliverySnapshot] = (),
    returns: Sequence[ReturnSnapshot] = (),
    refunds: Sequence[RefundSnapshot] = (),
) -> OrderLineStatus:
    """Derive a single line's status from the quantities recorded against it.

    CANCELLED is sticky: it is set by cancellation messages and never
    derived away.

    Args:
        line: Line to evaluate
        shipments: All shipments of the order
        deliveries: All deliveries of the order
        returns: All returns of the order
        refunds: All refunds of the order

    Returns:
        OrderLineStatus for the line
    """
    if line.status == OrderLineStatus.CANCELLED:
        return OrderLineStatus.CANCELLED

    totals = _Quantities(shipments, deliveries, returns, refunds)
    return _line_status_from_totals(line, totals)


def _line_status_from_totals(line: LineSnapshot, totals: _Quantities) -> OrderLineStatus:
    quantity = line.quantity
    line_id = line.line_id

    if quantity > 0 and totals.refunded.get(line_id, 0) >= quantity:
        return OrderLineStatus.REFUNDED
    if quantity > 0 and totals.received.get(line_id, 0) >= quantity:
        return OrderLineStatus.RETURNED
    if totals.returned.get(line_id, 0) > 0:
        return OrderLineStatus.RETURN_INITIATED
    if quantity > 0 and totals.delivered.get(line_id, 0) >= quantity:
        return OrderLineStatus.DELIVERED
    if totals.shipped.get(line_id, 0) > 0:
        return OrderLineStatus.SHIPPED
    return OrderLineStatus.ORDERED


def derive_line_statuses(graph: OrderGraph) -> Dict[UUID, OrderLineStatus]:
    """Derive every line's status for an order graph in one pass."""
    totals = _Quantities(graph.shipments, graph.deliveries, graph.returns, graph.refunds)
    statuses = {}
    for line in graph.lines:
        if line.status == OrderLineStatus.CANCELLED:
            statuses[line.line_id] = OrderLineStatus.CANCELLED
        else:
            statuses[line.line_id] = _line_status_from_totals(line, totals)
    return statuses


def recompute_order_status(
    order: OrderSnapshot,
    lines: Sequence[LineSnapshot] = (),
    shipments: Sequence[ShipmentSnapshot] = (),
    deliveries: Sequence[DeliverySnapshot] = (),
    returns: Sequence[ReturnSnapshot] = (),
    refunds: Sequence[RefundSnapshot] = (),
) -> OrderStatus:
    """Recompute an order's overall status from its children.

    Pure function: the same inputs always produce the same status.

    Args:
        order: Order-level flags (inferred, closed, cancelled)
        lines: Order lines
        shipments: Shipments with their per-line quantities
        deliveries: Delivery records (at most one per shipment)
        returns: Returns with their per-line quantities
        refunds: Refunds, optionally linked to a return

    Returns:
        OrderStatus derived by the ordered rule list in the module docstring
    """
    lines = tuple(lines)
    shipments = tuple(shipments)
    deliveries = tuple(deliveries)
    returns = tuple(returns)
    refunds = tuple(refunds)

    # 1. Cancellation
    active = [line for line in lines if line.status != OrderLineStatus.CANCELLED]
    if lines:
        if not active:
            return OrderStatus.CANCELLED
        if len(active) < len(lines):
            return OrderStatus.PARTIALLY_CANCELLED
    elif order.is_cancelled:
        return OrderStatus.CANCELLED

    # 2. Delivery issues
    if any(d.has_open_issue for d in deliveries):
        return OrderStatus.DELIVERY_EXCEPTION

    totals = _Quantities(shipments, deliveries, returns, refunds)
    open_returns = _open_returns(returns, refunds)

    if lines:
        delivered = [_line_delivered(line, totals) for line in active]
        all_delivered = all(delivered)
        some_delivered = any(delivered)
    else:
        delivered_ids = delivered_shipment_ids(shipments, deliveries)
        all_delivered = bool(shipments) and all(s.shipment_id in delivered_ids for s in shipments)
        some_delivered = any(s.shipment_id in delivered_ids for s in shipments)

    # 3. Fully delivered
    if all_delivered:
        if order.is_closed:
            return OrderStatus.CLOSED
        if (all(_line_refunded(line, totals) for line in active) if lines else refunds and not open_returns):
            return OrderStatus.REFUNDED
        if not open_returns:
            return OrderStatus.DELIVERED

    # 4. Returns in flight
    if open_returns:
        if any(r.status in RECEIVED_RETURN_STATUSES for r in open_returns):
            return OrderStatus.RETURN_RECEIVED
        return OrderStatus.RETURN_IN_PROGRESS

    # Stubs carry no line quantities, so any refund settles them
    if not lines and refunds:
        return OrderStatus.REFUNDED

    # 5. Partial delivery
    if some_delivered:
        return OrderStatus.PARTIALLY_DELIVERED

    # 6. Shipment progress
    if shipments:
        rank = max(_SHIPMENT_RANK.get(s.status, 1) for s in shipments)
        if rank == 3:
            return OrderStatus.OUT_FOR_DELIVERY
        if rank == 2:
            return OrderStatus.IN_TRANSIT
        if any(totals.shipped.get(line.line_id, 0) < line.quantity for line in active):
            return OrderStatus.PARTIALLY_SHIPPED
        return OrderStatus.SHIPPED

    # 7. Default
    if order.is_inferred:
        return OrderStatus.INFERRED
    return OrderStatus.PLACED


def recompute_from_graph(graph: OrderGraph) -> OrderStatus:
    """Convenience wrapper taking a whole OrderGraph."""
    return recompute_order_status(
        graph.order,
        graph.lines,
        graph.shipments,
        graph.deliveries,
        graph.returns,
        graph.refunds,
    )


def _line_delivered(line: LineSnapshot, totals: _Quantities) -> bool:
    if line.status in _DELIVERED_LINE_STATUSES:
        return True
    return line.quantity > 0 and totals.delivered.get(line.line_id, 0) >= line.quantity


def _line_refunded(line: LineSnapshot, totals: _Quantities) -> bool:
    if line.status == OrderLineStatus.REFUNDED:
        return True
    return line.quantity > 0 and totals.refunded.get(line.line_id, 0) >= line.quantity
