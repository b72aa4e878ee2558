"""Unit tests for the order status aggregator

Rules are evaluated top to bottom; each test pins one rule or one
precedence decision between two rules.
"""

from decimal import Decimal
from uuid import uuid4

from domain.orders.enums import (
    DeliveryIssueType,
    DeliveryStatus,
    OrderLineStatus,
    OrderStatus,
    ReturnStatus,
    ShipmentStatus,
)
from domain.orders.snapshots import (
    DeliverySnapshot,
    ItemQuantity,
    LineSnapshot,
    OrderGraph,
    OrderSnapshot,
    RefundSnapshot,
    ReturnSnapshot,
    ShipmentSnapshot,
)
from domain.orders.status_aggregator import (
    derive_line_status,
    derive_line_statuses,
    recompute_from_graph,
    recompute_order_status,
)


def _line(quantity=1, status=OrderLineStatus.ORDERED):
    return LineSnapshot(line_id=uuid4(), quantity=quantity, status=status)


def _shipment(status, *items):
    return ShipmentSnapshot(
        shipment_id=uuid4(),
        status=status,
        lines=tuple(ItemQuantity(line.line_id, qty) for line, qty in items),
    )


def _delivered(shipment):
    return DeliverySnapshot(shipment_id=shipment.shipment_id, status=DeliveryStatus.DELIVERED)


class TestCancellation:
    """Rule 1: cancellation"""

    def test_all_lines_cancelled(self):
        """Every line cancelled → CANCELLED"""
        lines = [_line(status=OrderLineStatus.CANCELLED), _line(status=OrderLineStatus.CANCELLED)]
        assert recompute_order_status(OrderSnapshot(), lines) == OrderStatus.CANCELLED

    def test_some_lines_cancelled(self):
        """Some lines cancelled → PARTIALLY_CANCELLED"""
        lines = [_line(status=OrderLineStatus.CANCELLED), _line()]
        assert recompute_order_status(OrderSnapshot(), lines) == OrderStatus.PARTIALLY_CANCELLED

    def test_partial_cancellation_beats_partial_delivery(self):
        """2 of 3 lines cancelled and the third delivered → PARTIALLY_CANCELLED"""
        delivered_line = _line()
        lines = [
            _line(status=OrderLineStatus.CANCELLED),
            _line(status=OrderLineStatus.CANCELLED),
            delivered_line,
        ]
        shipment = _shipment(ShipmentStatus.DELIVERED, (delivered_line, 1))

        status = recompute_order_status(
            OrderSnapshot(), lines, [shipment], [_delivered(shipment)]
        )

        assert status == OrderStatus.PARTIALLY_CANCELLED

    def test_stub_order_cancelled_without_lines(self):
        """Full cancellation of an order with no known lines → CANCELLED"""
        order = OrderSnapshot(is_inferred=True, is_cancelled=True)
        assert recompute_order_status(order) == OrderStatus.CANCELLED

    def test_cancellation_beats_delivery_exception(self):
        """Cancellation is evaluated before delivery issues"""
        line = _line()
        lines = [line, _line(status=OrderLineStatus.CANCELLED)]
        shipment = _shipment(ShipmentStatus.EXCEPTION, (line, 1))
        issue = DeliverySnapshot(
            shipment_id=shipment.shipment_id,
            status=DeliveryStatus.DELIVERY_EXCEPTION,
            issue_type=DeliveryIssueType.DAMAGED,
        )
        status = recompute_order_status(OrderSnapshot(), lines, [shipment], [issue])
        assert status == OrderStatus.PARTIALLY_CANCELLED


class TestDeliveryException:
    """Rule 2: unresolved delivery issues"""

    def test_open_issue(self):
        """Delivery with an unresolved issue → DELIVERY_EXCEPTION"""
        line = _line()
        shipment = _shipment(ShipmentStatus.EXCEPTION, (line, 1))
        issue = DeliverySnapshot(
            shipment_id=shipment.shipment_id,
            status=DeliveryStatus.DELIVERED,
            issue_type=DeliveryIssueType.MISSING,
        )
        assert recompute_order_status(OrderSnapshot(), [line], [shipment], [issue]) == OrderStatus.DELIVERY_EXCEPTION

    def test_failed_attempt_is_an_issue(self):
        """Attempted delivery without issue type still counts as an issue"""
        line = _line()
        shipment = _shipment(ShipmentStatus.EXCEPTION, (line, 1))
        attempt = DeliverySnapshot(shipment_id=shipment.shipment_id, status=DeliveryStatus.ATTEMPTED_DELIVERY)
        assert recompute_order_status(OrderSnapshot(), [line], [shipment], [attempt]) == OrderStatus.DELIVERY_EXCEPTION

    def test_resolved_issue_is_ignored(self):
        """A resolved issue no longer drives the status"""
        line = _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        resolved = DeliverySnapshot(
            shipment_id=shipment.shipment_id,
            status=DeliveryStatus.DELIVERED,
            issue_type=DeliveryIssueType.DAMAGED,
            issue_resolved=True,
        )
        assert recompute_order_status(OrderSnapshot(), [line], [shipment], [resolved]) == OrderStatus.DELIVERED


class TestDelivered:
    """Rule 3: all lines delivered"""

    def test_all_delivered(self):
        """All lines delivered → DELIVERED"""
        a, b = _line(), _line(quantity=2)
        shipment = _shipment(ShipmentStatus.DELIVERED, (a, 1), (b, 2))
        assert recompute_order_status(OrderSnapshot(), [a, b], [shipment], [_delivered(shipment)]) == OrderStatus.DELIVERED

    def test_delivery_record_counts_without_shipment_status(self):
        """A DELIVERED delivery record marks its shipment delivered"""
        line = _line()
        shipment = _shipment(ShipmentStatus.IN_TRANSIT, (line, 1))
        assert recompute_order_status(OrderSnapshot(), [line], [shipment], [_delivered(shipment)]) == OrderStatus.DELIVERED

    def test_closed_by_operator(self):
        """Operator-closed delivered order → CLOSED"""
        line = _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        order = OrderSnapshot(is_closed=True)
        assert recompute_order_status(order, [line], [shipment], [_delivered(shipment)]) == OrderStatus.CLOSED

    def test_closed_flag_ignored_until_delivered(self):
        """Closing does not hide an order that is still in transit"""
        line = _line()
        shipment = _shipment(ShipmentStatus.IN_TRANSIT, (line, 1))
        assert recompute_order_status(OrderSnapshot(is_closed=True), [line], [shipment]) == OrderStatus.IN_TRANSIT

    def test_all_returned_and_refunded(self):
        """Every line returned and refunded → REFUNDED"""
        line = _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        ret = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.RECEIVED, lines=(ItemQuantity(line.line_id, 1),))
        refund = RefundSnapshot(refund_id=uuid4(), amount=Decimal("19.99"), return_id=ret.return_id)

        status = recompute_order_status(
            OrderSnapshot(), [line], [shipment], [_delivered(shipment)], [ret], [refund]
        )

        assert status == OrderStatus.REFUNDED

    def test_open_return_on_delivered_order(self):
        """A delivered order with an open return falls through to the return rule"""
        line = _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        ret = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.LABEL_ISSUED, lines=(ItemQuantity(line.line_id, 1),))

        status = recompute_order_status(OrderSnapshot(), [line], [shipment], [_delivered(shipment)], [ret])

        assert status == OrderStatus.RETURN_IN_PROGRESS


class TestReturns:
    """Rule 4: returns in flight"""

    def test_return_received(self):
        """Received but not refunded → RETURN_RECEIVED"""
        a, b = _line(), _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (a, 1), (b, 1))
        ret = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.RECEIVED, lines=(ItemQuantity(a.line_id, 1),))

        status = recompute_order_status(OrderSnapshot(), [a, b], [shipment], [_delivered(shipment)], [ret])

        assert status == OrderStatus.RETURN_RECEIVED

    def test_rejected_return_is_not_open(self):
        """A rejected return does not keep the order in return status"""
        line = _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        ret = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.REJECTED, lines=(ItemQuantity(line.line_id, 1),))

        status = recompute_order_status(OrderSnapshot(), [line], [shipment], [_delivered(shipment)], [ret])

        assert status == OrderStatus.DELIVERED

    def test_return_beats_partial_delivery(self):
        """Open return is evaluated before partial delivery"""
        a, b = _line(), _line()
        delivered = _shipment(ShipmentStatus.DELIVERED, (a, 1))
        ret = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.INITIATED, lines=(ItemQuantity(a.line_id, 1),))

        status = recompute_order_status(OrderSnapshot(), [a, b], [delivered], [_delivered(delivered)], [ret])

        assert status == OrderStatus.RETURN_IN_PROGRESS


class TestShipmentProgress:
    """Rules 5 and 6: partial delivery and shipment progress"""

    def test_partially_delivered(self):
        """Some lines delivered → PARTIALLY_DELIVERED"""
        a, b = _line(), _line()
        first = _shipment(ShipmentStatus.DELIVERED, (a, 1))
        second = _shipment(ShipmentStatus.OUT_FOR_DELIVERY, (b, 1))

        status = recompute_order_status(OrderSnapshot(), [a, b], [first, second], [_delivered(first)])

        assert status == OrderStatus.PARTIALLY_DELIVERED

    def test_most_advanced_shipment_wins(self):
        """Out for delivery beats in transit across shipments"""
        a, b = _line(), _line()
        shipments = [
            _shipment(ShipmentStatus.IN_TRANSIT, (a, 1)),
            _shipment(ShipmentStatus.OUT_FOR_DELIVERY, (b, 1)),
        ]
        assert recompute_order_status(OrderSnapshot(), [a, b], shipments) == OrderStatus.OUT_FOR_DELIVERY

    def test_in_transit(self):
        line = _line()
        shipment = _shipment(ShipmentStatus.IN_TRANSIT, (line, 1))
        assert recompute_order_status(OrderSnapshot(), [line], [shipment]) == OrderStatus.IN_TRANSIT

    def test_shipped_all_lines(self):
        """Every line fully covered by shipments → SHIPPED"""
        line = _line(quantity=2)
        shipment = _shipment(ShipmentStatus.SHIPPED, (line, 2))
        assert recompute_order_status(OrderSnapshot(), [line], [shipment]) == OrderStatus.SHIPPED

    def test_partial_quantity_downgrades_to_partially_shipped(self):
        """One of two units shipped → PARTIALLY_SHIPPED"""
        line = _line(quantity=2)
        shipment = _shipment(ShipmentStatus.SHIPPED, (line, 1))
        assert recompute_order_status(OrderSnapshot(), [line], [shipment]) == OrderStatus.PARTIALLY_SHIPPED

    def test_unshipped_line_downgrades_to_partially_shipped(self):
        a, b = _line(), _line()
        shipment = _shipment(ShipmentStatus.SHIPPED, (a, 1))
        assert recompute_order_status(OrderSnapshot(), [a, b], [shipment]) == OrderStatus.PARTIALLY_SHIPPED

    def test_stub_with_unplaced_shipment(self):
        """Stub without lines but with a shipment → SHIPPED"""
        order = OrderSnapshot(is_inferred=True)
        shipment = _shipment(ShipmentStatus.SHIPPED)
        assert recompute_order_status(order, [], [shipment]) == OrderStatus.SHIPPED


class TestDefault:
    """Rule 7: placed or inferred"""

    def test_placed(self):
        assert recompute_order_status(OrderSnapshot(), [_line()]) == OrderStatus.PLACED

    def test_inferred_stub(self):
        assert recompute_order_status(OrderSnapshot(is_inferred=True)) == OrderStatus.INFERRED


class TestRefundedStub:
    """Stubs have no lines to count, so any refund settles them"""

    def test_refund_only_stub(self):
        refund = RefundSnapshot(refund_id=uuid4(), amount=Decimal("5.00"))
        status = recompute_order_status(OrderSnapshot(is_inferred=True), refunds=[refund])
        assert status == OrderStatus.REFUNDED

    def test_delivered_stub_with_refund(self):
        shipment = ShipmentSnapshot(shipment_id=uuid4(), status=ShipmentStatus.DELIVERED)
        refund = RefundSnapshot(refund_id=uuid4())

        status = recompute_order_status(
            OrderSnapshot(is_inferred=True), [], [shipment], [_delivered(shipment)], refunds=[refund]
        )

        assert status == OrderStatus.REFUNDED

    def test_open_return_beats_refund_on_stub(self):
        ret = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.INITIATED)
        refund = RefundSnapshot(refund_id=uuid4())

        status = recompute_order_status(OrderSnapshot(is_inferred=True), returns=[ret], refunds=[refund])

        assert status == OrderStatus.RETURN_IN_PROGRESS


class TestDeterminism:
    """Recompute keeps no state between calls"""

    def test_repeated_evaluation_is_stable(self):
        a, b = _line(), _line(quantity=3)
        first = _shipment(ShipmentStatus.DELIVERED, (a, 1))
        second = _shipment(ShipmentStatus.IN_TRANSIT, (b, 2))
        graph = OrderGraph(
            order=OrderSnapshot(),
            lines=(a, b),
            shipments=(first, second),
            deliveries=(_delivered(first),),
        )

        results = {recompute_from_graph(graph) for _ in range(5)}

        assert results == {OrderStatus.PARTIALLY_DELIVERED}


class TestLineStatus:
    """Line statuses derived from recorded quantities"""

    def test_ordered_shipped_delivered(self):
        line = _line(quantity=2)
        partial = _shipment(ShipmentStatus.SHIPPED, (line, 1))
        full = _shipment(ShipmentStatus.DELIVERED, (line, 2))

        assert derive_line_status(line) == OrderLineStatus.ORDERED
        assert derive_line_status(line, [partial]) == OrderLineStatus.SHIPPED
        assert derive_line_status(line, [full], [_delivered(full)]) == OrderLineStatus.DELIVERED

    def test_cancelled_is_sticky(self):
        line = _line(status=OrderLineStatus.CANCELLED)
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        assert derive_line_status(line, [shipment]) == OrderLineStatus.CANCELLED

    def test_return_progression(self):
        line = _line()
        shipment = _shipment(ShipmentStatus.DELIVERED, (line, 1))
        started = ReturnSnapshot(return_id=uuid4(), status=ReturnStatus.SHIPPED, lines=(ItemQuantity(line.line_id, 1),))
        received = ReturnSnapshot(return_id=started.return_id, status=ReturnStatus.RECEIVED, lines=started.lines)
        refund = RefundSnapshot(refund_id=uuid4(), return_id=started.return_id)

        assert derive_line_status(line, [shipment], returns=[started]) == OrderLineStatus.RETURN_INITIATED
        assert derive_line_status(line, [shipment], returns=[received]) == OrderLineStatus.RETURNED
        assert derive_line_status(line, [shipment], returns=[received], refunds=[refund]) == OrderLineStatus.REFUNDED

    def test_derive_line_statuses_for_graph(self):
        a, b = _line(), _line(status=OrderLineStatus.CANCELLED)
        shipment = _shipment(ShipmentStatus.SHIPPED, (a, 1))
        graph = OrderGraph(order=OrderSnapshot(), lines=(a, b), shipments=(shipment,))

        statuses = derive_line_statuses(graph)

        assert statuses == {a.line_id: OrderLineStatus.SHIPPED, b.line_id: OrderLineStatus.CANCELLED}
