"""Integration tests for operator review actions"""

from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from domain.ai.email_intelligence import ParseResult
from domain.messages.processing_status import ProcessingStatus, StateTransitionError
from domain.orders.enums import OrderStatus
from domain.parsing.results import (
    DeliveryData,
    OrderData,
    OrderEmailData,
    OrderLineData,
    RefundData,
    ShipmentData,
)
from models.audit_log import AuditLog
from models.order import Order
from models.refund import Refund
from pipeline.errors import MessageNotFoundError
from pipeline.merger import OrderGraphMerger
from review.service import OrderNotFoundError, ReviewService


REVIEW_PATH = (ProcessingStatus.CLASSIFYING, ProcessingStatus.MANUAL_REVIEW)


@pytest.fixture
def review_service(db_session, tenant, orchestrator):
    return ReviewService(db_session, tenant.id, orchestrator)


@pytest.fixture
def review_message(store_message):
    """A shipment message parked in manual review for low confidence."""
    return store_message(
        subject="Your order ORD-1 has shipped",
        body="Tracking number: T123",
        path=REVIEW_PATH,
        classification_type="SHIPMENT_CONFIRMATION",
        classification_confidence=0.6,
        review_reason="Classification confidence 0.60 below threshold 0.70",
    )


def _shipment(confidence=0.5):
    return ParseResult.from_data(ShipmentData(order_reference="ORD-1", tracking_number="T123"), confidence)


class TestQueue:

    def test_lists_only_manual_review(self, review_service, review_message, store_message):
        store_message()

        items, total = review_service.list_queue()

        assert total == 1
        assert [m.id for m in items] == [review_message.id]

    def test_get_unknown_message(self, review_service):
        with pytest.raises(MessageNotFoundError):
            review_service.get_message(uuid4())


class TestApprove:
    """Test approval re-runs parse and merge without the confidence gate"""

    def test_approve_low_confidence_parse(self, db_session, review_service, review_message, intelligence):
        intelligence.script(parse={"parse_shipment": _shipment(confidence=0.5)})

        outcome = review_service.approve(review_message.id)

        assert outcome.outcome == "parsed"
        db_session.refresh(review_message)
        assert review_message.status == ProcessingStatus.PARSED.value
        assert review_message.review_reason is None
        order = db_session.query(Order).one()
        assert order.is_inferred is True
        assert intelligence.called("classify") == []

    def test_approve_with_corrected_type(self, db_session, review_service, review_message, intelligence):
        intelligence.script(parse={"parse_refund": ParseResult.from_data(
            RefundData(order_reference="ORD-1", transaction_id="TX-1"), 0.8,
        )})

        outcome = review_service.approve(review_message.id, "refund confirmation")

        assert outcome.classification_type == "REFUND_CONFIRMATION"
        assert intelligence.called("parse_shipment") == []
        assert db_session.query(Refund).one().transaction_id == "TX-1"

    def test_approve_without_extractable_data_stays_in_review(self, db_session, review_service, review_message):
        outcome = review_service.approve(review_message.id)

        assert outcome.outcome == "manual_review"
        db_session.refresh(review_message)
        assert review_message.status == ProcessingStatus.MANUAL_REVIEW.value
        assert "no data" in review_message.review_reason

    def test_unknown_type_rejected(self, review_service, review_message):
        with pytest.raises(ValueError):
            review_service.approve(review_message.id, "weather report")

    def test_promotional_type_rejected(self, review_service, review_message):
        with pytest.raises(ValueError):
            review_service.approve(review_message.id, "PROMOTIONAL")

    def test_message_not_in_review(self, review_service, store_message):
        message = store_message()
        with pytest.raises(StateTransitionError):
            review_service.approve(message.id)


class TestDismissAndReprocess:

    def test_dismiss(self, db_session, review_service, review_message):
        message = review_service.dismiss(review_message.id, "newsletter")

        assert message.status == ProcessingStatus.DISMISSED.value
        entry = db_session.query(AuditLog).filter(
            AuditLog.inbound_message_id == review_message.id,
            AuditLog.step == "REVIEW",
        ).one()
        assert "newsletter" in entry.message

    def test_dismiss_requires_manual_review(self, review_service, store_message):
        message = store_message()
        with pytest.raises(StateTransitionError):
            review_service.dismiss(message.id)

    def test_reprocess_runs_pipeline_again(self, db_session, review_service, review_message, intelligence):
        intelligence.script(
            classification=("SHIPMENT_CONFIRMATION", 0.92),
            parse={"parse_shipment": _shipment(confidence=0.9)},
        )

        outcome = review_service.reprocess(review_message.id)

        assert outcome.outcome == "parsed"
        assert len(intelligence.called("classify")) == 1
        db_session.refresh(review_message)
        assert review_message.status == ProcessingStatus.PARSED.value


class TestCloseOrder:
    """Test operator close"""

    def _deliver_order(self, orchestrator, intelligence, store_message):
        steps = [
            (("ORDER_CONFIRMATION", 0.95), {"parse_order": ParseResult.from_data(OrderEmailData(orders=[
                OrderData(external_order_number="ORD-1", lines=[OrderLineData(product_name="Mouse")]),
            ]), 0.9)}),
            (("SHIPMENT_CONFIRMATION", 0.95), {"parse_shipment": _shipment(confidence=0.9)}),
            (("DELIVERY_CONFIRMATION", 0.95), {"parse_delivery": ParseResult.from_data(
                DeliveryData(tracking_number="T123"), 0.9,
            )}),
        ]
        for classification, parse in steps:
            intelligence.script(classification=classification, parse=parse)
            orchestrator.process(store_message().id)

    def test_close_delivered_order(self, db_session, review_service, orchestrator, intelligence, store_message):
        self._deliver_order(orchestrator, intelligence, store_message)
        order = db_session.query(Order).one()
        assert order.status == OrderStatus.DELIVERED.value

        closed = review_service.close_order(order.id)

        assert closed.is_closed is True
        assert closed.status == OrderStatus.CLOSED.value

    def test_close_undelivered_order_keeps_status(self, db_session, review_service, review_message, intelligence):
        intelligence.script(parse={"parse_shipment": _shipment(confidence=0.9)})
        review_service.approve(review_message.id)
        order = db_session.query(Order).one()

        closed = review_service.close_order(order.id)

        assert closed.is_closed is True
        assert closed.status == OrderStatus.SHIPPED.value

    def test_close_unknown_order(self, review_service):
        with pytest.raises(OrderNotFoundError):
            review_service.close_order(uuid4())

    def test_close_retries_after_concurrent_update(self, db_session, review_service, orchestrator, intelligence, store_message, monkeypatch):
        self._deliver_order(orchestrator, intelligence, store_message)
        order_id = db_session.query(Order).one().id
        real_close = OrderGraphMerger.close_order
        calls = []

        def stale_then_close(merger, order):
            calls.append(order.id)
            if len(calls) == 1:
                order.is_closed = True
                raise StaleDataError("order row version changed")
            return real_close(merger, order)

        monkeypatch.setattr(OrderGraphMerger, "close_order", stale_then_close)

        closed = review_service.close_order(order_id)

        assert calls == [order_id, order_id]
        assert closed.status == OrderStatus.CLOSED.value
        entries = db_session.query(AuditLog).filter(AuditLog.step == "REVIEW").all()
        assert len(entries) == 1

    def test_close_gives_up_after_repeated_conflicts(self, db_session, review_service, orchestrator, intelligence, store_message, monkeypatch):
        self._deliver_order(orchestrator, intelligence, store_message)
        order_id = db_session.query(Order).one().id

        def always_stale(merger, order):
            order.is_closed = True
            raise StaleDataError("order row version changed")

        monkeypatch.setattr(OrderGraphMerger, "close_order", always_stale)

        with pytest.raises(StaleDataError):
            review_service.close_order(order_id)

        order = db_session.get(Order, order_id)
        assert order.is_closed is False
        assert order.status == OrderStatus.DELIVERED.value
