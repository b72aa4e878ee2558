"""Integration tests for the message processing orchestrator

Runs the whole pipeline against the database with a scripted
classifier/parser: merge, reconciliation, status recomputation,
idempotency, failure handling and the audit trail.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from audit.service import AuditStep
from domain.ai.email_intelligence import ParseResult
from domain.ai.ports import LLMTimeoutError
from domain.cancellation import CancellationToken, ProcessingCancelled
from domain.messages.processing_status import ProcessingStatus
from domain.orders.enums import DeliveryIssueType, OrderLineStatus, OrderStatus
from domain.parsing.results import (
    CancellationData,
    DeliveryData,
    ItemReference,
    OrderData,
    OrderEmailData,
    OrderLineData,
    RefundData,
    ReturnData,
    ShipmentData,
)
from models.audit_log import AuditLog
from models.order import Order, OrderLine
from models.order_event import OrderEvent
from models.order_return import OrderReturn, ReturnLine
from models.refund import Refund
from models.shipment import Shipment, ShipmentLine
from pipeline.errors import (
    MergeConflictError,
    MessageNotFoundError,
    StructuralMergeError,
    TransientPipelineError,
)
from pipeline.merger import EventType


def order_result(*orders, confidence=0.9):
    """ParseResult for order confirmations; each order is (number, [(name, qty), ...])."""
    data = OrderEmailData(orders=[
        OrderData(
            external_order_number=number,
            lines=[OrderLineData(product_name=name, quantity=qty) for name, qty in lines],
        )
        for number, lines in orders
    ])
    return ParseResult.from_data(data, confidence)


def run(orchestrator, intelligence, store_message, classification, parse=None, **message_fields):
    """Store one message, script the model service and process it."""
    intelligence.script(classification=classification, parse=parse)
    message = store_message(**message_fields)
    return message, orchestrator.process(message.id)


def orders_of(db_session, tenant):
    return db_session.query(Order).filter(Order.tenant_id == tenant.id).all()


def confirm(orchestrator, intelligence, store_message, *lines, number="ORD-1"):
    return run(
        orchestrator, intelligence, store_message,
        ("ORDER_CONFIRMATION", 0.95),
        {"parse_order": order_result((number, list(lines or [("Wireless Mouse", 1)])))},
    )


def ship(orchestrator, intelligence, store_message, tracking="T123", items=(), reference="ORD-1"):
    data = ShipmentData(
        order_reference=reference,
        tracking_number=tracking,
        items=[ItemReference(product_name=name, quantity=qty) for name, qty in items],
    )
    return run(
        orchestrator, intelligence, store_message,
        ("SHIPMENT_CONFIRMATION", 0.9),
        {"parse_shipment": ParseResult.from_data(data, 0.9)},
        subject=f"Your order {reference} has shipped",
        body=f"Tracking number: {tracking}",
    )


class TestOrderConfirmation:
    """Test the happy path from message to order"""

    def test_confirmation_creates_order(self, db_session, tenant, retailer, orchestrator, intelligence, store_message):
        message, outcome = confirm(orchestrator, intelligence, store_message, ("Wireless Mouse", 2))

        assert outcome.outcome == "parsed"
        assert outcome.status == ProcessingStatus.PARSED.value
        assert outcome.retailer_id == retailer.id

        db_session.refresh(message)
        assert message.status == ProcessingStatus.PARSED.value
        assert message.classification_type == "ORDER_CONFIRMATION"
        assert message.retailer_id == retailer.id
        assert message.processed_at is not None

        [order] = orders_of(db_session, tenant)
        assert order.external_order_number == "ORD-1"
        assert order.status == OrderStatus.PLACED.value
        assert order.is_inferred is False
        assert order.retailer_id == retailer.id

        [line] = db_session.query(OrderLine).filter(OrderLine.order_id == order.id).all()
        assert line.quantity == 2
        assert line.status == OrderLineStatus.ORDERED.value

        event = db_session.query(OrderEvent).filter(OrderEvent.order_id == order.id).one()
        assert event.event_type == EventType.ORDER_CONFIRMED
        assert event.inbound_message_id == message.id

    def test_retailer_hint_and_preview_reach_the_model(self, retailer, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message)

        [(_, _, _, relevance_kwargs)] = intelligence.called("is_relevant")
        assert relevance_kwargs["body_preview"] == "Thanks for your order ORD-1."
        [(_, _, _, parse_kwargs)] = intelligence.called("parse_order")
        assert parse_kwargs["retailer_hint"] == "Example Retail"

    def test_message_confirming_two_orders(self, db_session, tenant, orchestrator, intelligence, store_message):
        _, outcome = run(
            orchestrator, intelligence, store_message,
            ("ORDER_CONFIRMATION", 0.95),
            {"parse_order": order_result(("ORD-1", [("Mouse", 1)]), ("ORD-2", [("Keyboard", 1)]))},
        )

        numbers = sorted(o.external_order_number for o in orders_of(db_session, tenant))
        assert numbers == ["ORD-1", "ORD-2"]
        assert len(outcome.merge.order_ids) == 2

    def test_order_without_reference_gets_message_keyed_stub(self, db_session, tenant, orchestrator, intelligence, store_message):
        message, _ = run(
            orchestrator, intelligence, store_message,
            ("ORDER_CONFIRMATION", 0.95),
            {"parse_order": order_result((None, [("Desk Lamp", 1)]))},
        )

        [order] = orders_of(db_session, tenant)
        assert order.external_order_number == f"UNKNOWN-{message.id}"

    def test_overlapping_order_numbers_stay_distinct(self, db_session, tenant, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, ("Mouse", 1), number="ORD-12345")
        confirm(orchestrator, intelligence, store_message, ("Keyboard", 1), number="ORD-123456")

        orders = {o.external_order_number: o for o in orders_of(db_session, tenant)}
        assert sorted(orders) == ["ORD-12345", "ORD-123456"]
        [line] = db_session.query(OrderLine).filter(OrderLine.order_id == orders["ORD-12345"].id).all()
        assert line.product_name == "Mouse"

    def test_shipment_finds_order_by_partial_reference(self, db_session, tenant, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, number="ORD-12345")

        ship(orchestrator, intelligence, store_message, reference="12345")

        [order] = orders_of(db_session, tenant)
        assert order.external_order_number == "ORD-12345"
        assert db_session.query(Shipment).one().order_id == order.id


class TestIdempotency:
    """Test reprocessing and redelivery never duplicate entities"""

    def test_redelivery_is_skipped(self, orchestrator, intelligence, store_message):
        message, _ = confirm(orchestrator, intelligence, store_message)

        outcome = orchestrator.process(message.id)

        assert outcome.outcome == "skipped"
        assert len(intelligence.called("classify")) == 1

    def test_reprocess_does_not_duplicate(self, db_session, tenant, orchestrator, intelligence, store_message):
        message, _ = ship(orchestrator, intelligence, store_message, items=[("Wireless Mouse", 1)])

        outcome = orchestrator.process(message.id, reprocess=True)

        assert outcome.outcome == "parsed"
        assert len(orders_of(db_session, tenant)) == 1
        assert db_session.query(Shipment).count() == 1
        assert db_session.query(OrderEvent).filter(
            OrderEvent.event_type == EventType.SHIPMENT_RECORDED
        ).count() == 1
        [shipment] = db_session.query(Shipment).all()
        assert len(shipment.pending_items_json) == 1

    def test_in_flight_message_is_resumed(self, db_session, orchestrator, intelligence, store_message):
        intelligence.script(
            classification=("ORDER_CONFIRMATION", 0.95),
            parse={"parse_order": order_result(("ORD-1", [("Mouse", 1)]))},
        )
        message = store_message(path=(
            ProcessingStatus.CLASSIFYING, ProcessingStatus.CLASSIFIED, ProcessingStatus.PARSING,
        ))

        outcome = orchestrator.process(message.id)

        assert outcome.outcome == "parsed"
        assert db_session.query(Order).count() == 1


class TestReconciliation:
    """Test inferred stubs and orphaned items"""

    def test_shipment_before_confirmation(self, db_session, tenant, orchestrator, intelligence, store_message):
        """Shipment T123 arrives first; the confirmation later reconciles the stub"""
        _, shipped = ship(orchestrator, intelligence, store_message, items=[("Wireless Mouse", 1)])

        [stub] = orders_of(db_session, tenant)
        assert stub.is_inferred is True
        assert stub.status == OrderStatus.SHIPPED.value
        assert shipped.merge.orphaned_items == 1
        assert shipped.merge.created["order"] == [str(stub.id)]

        _, confirmed = confirm(orchestrator, intelligence, store_message)

        [order] = orders_of(db_session, tenant)
        assert order.id == stub.id
        assert order.is_inferred is False
        assert confirmed.merge.reconciled_items == 1

        [shipment] = db_session.query(Shipment).all()
        assert shipment.pending_items_json is None
        [shipment_line] = db_session.query(ShipmentLine).all()
        [line] = db_session.query(OrderLine).all()
        assert shipment_line.order_line_id == line.id
        assert shipment_line.quantity == 1
        assert line.status == OrderLineStatus.SHIPPED.value
        assert order.status == OrderStatus.SHIPPED.value

    def test_shipment_without_items_covers_every_line(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, ("Mouse", 1), ("Keyboard", 2))

        ship(orchestrator, intelligence, store_message)

        assert sorted(sl.quantity for sl in db_session.query(ShipmentLine).all()) == [1, 2]
        assert db_session.query(Order).one().status == OrderStatus.SHIPPED.value

    def test_partial_shipment(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, ("Mouse", 1), ("Keyboard", 1))

        ship(orchestrator, intelligence, store_message, items=[("Mouse", 1)])

        assert db_session.query(Order).one().status == OrderStatus.PARTIALLY_SHIPPED.value

    def test_shipped_quantity_never_exceeds_ordered(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, ("Wireless Mouse", 2))

        ship(orchestrator, intelligence, store_message, tracking="T1", items=[("Wireless Mouse", 5)])
        ship(orchestrator, intelligence, store_message, tracking="T2", items=[("Wireless Mouse", 1)])

        shipped = sum(sl.quantity for sl in db_session.query(ShipmentLine).all())
        assert shipped == 2
        assert db_session.query(Shipment).count() == 2


class TestLifecycle:
    """Test cancellation, delivery and return flows end to end"""

    def test_partial_and_full_cancellation(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, ("Mouse", 1), ("USB-C Cable", 1))

        run(
            orchestrator, intelligence, store_message,
            ("ORDER_CANCELLATION", 0.9),
            {"parse_cancellation": ParseResult.from_data(CancellationData(
                order_reference="ORD-1",
                cancelled_items=[ItemReference(product_name="USB-C Cable")],
            ), 0.9)},
        )
        order = db_session.query(Order).one()
        assert order.status == OrderStatus.PARTIALLY_CANCELLED.value

        run(
            orchestrator, intelligence, store_message,
            ("ORDER_CANCELLATION", 0.9),
            {"parse_cancellation": ParseResult.from_data(CancellationData(
                order_reference="ORD-1", is_full_cancellation=True, refund_amount=Decimal("25.00"),
            ), 0.9)},
        )
        db_session.refresh(order)
        assert order.status == OrderStatus.CANCELLED.value
        assert order.is_cancelled is True
        assert db_session.query(Refund).one().amount == Decimal("25.00")

    def test_delivery_issue_then_delivered(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message)
        ship(orchestrator, intelligence, store_message)

        run(
            orchestrator, intelligence, store_message,
            ("DELIVERY_ISSUE", 0.9),
            {"parse_delivery": ParseResult.from_data(DeliveryData(
                tracking_number="T123", issue_type=DeliveryIssueType.DAMAGED,
            ), 0.9)},
        )
        order = db_session.query(Order).one()
        assert order.status == OrderStatus.DELIVERY_EXCEPTION.value

        run(
            orchestrator, intelligence, store_message,
            ("DELIVERY_CONFIRMATION", 0.9),
            {"parse_delivery": ParseResult.from_data(DeliveryData(tracking_number="T123"), 0.9)},
        )
        db_session.refresh(order)
        assert order.status == OrderStatus.DELIVERED.value

    def test_return_and_refund(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message)
        ship(orchestrator, intelligence, store_message)
        run(
            orchestrator, intelligence, store_message,
            ("DELIVERY_CONFIRMATION", 0.9),
            {"parse_delivery": ParseResult.from_data(DeliveryData(tracking_number="T123"), 0.9)},
        )

        run(
            orchestrator, intelligence, store_message,
            ("RETURN_INITIATION", 0.9),
            {"parse_return": ParseResult.from_data(ReturnData(
                order_reference="ORD-1",
                rma_number="RMA-9",
                items=[ItemReference(product_name="Wireless Mouse")],
            ), 0.9)},
        )
        order = db_session.query(Order).one()
        assert order.status == OrderStatus.RETURN_IN_PROGRESS.value
        assert db_session.query(ReturnLine).one().quantity == 1

        _, outcome = run(
            orchestrator, intelligence, store_message,
            ("REFUND_CONFIRMATION", 0.9),
            {"parse_refund": ParseResult.from_data(RefundData(
                return_rma="RMA-9", refund_amount=Decimal("19.99"), transaction_id="TX-1",
            ), 0.9)},
        )
        db_session.refresh(order)
        assert order.status == OrderStatus.REFUNDED.value
        refund = db_session.query(Refund).one()
        assert refund.return_id is not None
        assert outcome.merge.status_changes[str(order.id)] == (
            OrderStatus.RETURN_IN_PROGRESS.value, OrderStatus.REFUNDED.value,
        )

    @staticmethod
    def start_return(orchestrator, intelligence, store_message, rma, reason, quantity):
        return run(
            orchestrator, intelligence, store_message,
            ("RETURN_INITIATION", 0.9),
            {"parse_return": ParseResult.from_data(ReturnData(
                order_reference="ORD-1",
                rma_number=rma,
                return_reason=reason,
                items=[ItemReference(product_name="Wireless Mouse", quantity=quantity)],
            ), 0.9)},
        )

    def test_returns_never_exceed_shipped_quantity(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, ("Wireless Mouse", 3))
        ship(orchestrator, intelligence, store_message, items=[("Wireless Mouse", 1)])

        self.start_return(orchestrator, intelligence, store_message, "RMA-1", "Too big", 3)
        self.start_return(orchestrator, intelligence, store_message, "RMA-2", "Defective", 2)

        return_lines = db_session.query(ReturnLine).all()
        assert sum(rl.quantity for rl in return_lines) == 1
        assert db_session.query(OrderReturn).count() == 2
        second = db_session.query(OrderReturn).filter(OrderReturn.rma_number == "RMA-2").one()
        assert second.pending_items_json is None

    def test_return_before_shipment_waits_for_it(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message)

        self.start_return(orchestrator, intelligence, store_message, "RMA-1", "Too big", 1)

        ret = db_session.query(OrderReturn).one()
        assert db_session.query(ReturnLine).count() == 0
        [pending] = ret.pending_items_json
        assert pending["product_name"] == "Wireless Mouse"

        ship(orchestrator, intelligence, store_message)

        db_session.refresh(ret)
        assert ret.pending_items_json is None
        assert db_session.query(ReturnLine).one().quantity == 1


class TestGating:
    """Test confidence gates, noise and manual review"""

    def test_low_confidence_goes_to_manual_review(self, db_session, orchestrator, intelligence, store_message):
        message, outcome = run(
            orchestrator, intelligence, store_message,
            ("SHIPMENT_CONFIRMATION", 0.65),
        )

        assert outcome.outcome == "manual_review"
        assert intelligence.called("parse_shipment") == []
        db_session.refresh(message)
        assert message.status == ProcessingStatus.MANUAL_REVIEW.value
        assert message.classification_type == "SHIPMENT_CONFIRMATION"
        assert "0.65" in message.review_reason
        assert db_session.query(Order).count() == 0

    def test_low_parse_confidence_goes_to_manual_review(self, db_session, orchestrator, intelligence, store_message):
        message, outcome = run(
            orchestrator, intelligence, store_message,
            ("ORDER_CONFIRMATION", 0.95),
            {"parse_order": order_result(("ORD-1", [("Mouse", 1)]), confidence=0.5)},
        )

        assert outcome.outcome == "manual_review"
        db_session.refresh(message)
        assert message.status == ProcessingStatus.MANUAL_REVIEW.value
        assert db_session.query(Order).count() == 0

    def test_unparseable_goes_to_manual_review(self, db_session, orchestrator, intelligence, store_message):
        message, outcome = run(
            orchestrator, intelligence, store_message,
            ("REFUND_CONFIRMATION", 0.95),
        )

        assert outcome.outcome == "manual_review"
        assert "no data" in outcome.reason

    def test_irrelevant_message_is_noise(self, db_session, orchestrator, intelligence, store_message):
        intelligence.script(relevant=False)
        message = store_message(subject="Summer sale: 40% off", body="Shop now")

        outcome = orchestrator.process(message.id)

        assert outcome.outcome == "noise"
        assert intelligence.called("classify") == []
        db_session.refresh(message)
        assert message.status == ProcessingStatus.CLASSIFIED.value
        assert message.classification_type == "PROMOTIONAL"

        assert orchestrator.process(message.id).outcome == "skipped"
        assert len(intelligence.called("is_relevant")) == 1

    def test_promotional_classification_is_noise(self, db_session, orchestrator, intelligence, store_message):
        message, outcome = run(orchestrator, intelligence, store_message, ("PROMOTIONAL", 0.99))

        assert outcome.outcome == "noise"
        assert intelligence.calls[-1][0] == "classify"
        assert db_session.query(Order).count() == 0


class TestForwardedMessages:
    """Test forwarded messages are processed as if sent by the retailer"""

    def test_original_sender_is_used(self, db_session, retailer, orchestrator, intelligence, store_message):
        body = (
            "FYI\n\n"
            "---------- Forwarded message ---------\n"
            "From: Example Retail <noreply@retailer.example>\n"
            "Subject: Your order ORD-1 is confirmed\n"
            "\n"
            "Thanks for your order ORD-1.\n"
        )
        message, outcome = run(
            orchestrator, intelligence, store_message,
            ("ORDER_CONFIRMATION", 0.95),
            {"parse_order": order_result(("ORD-1", [("Mouse", 1)]))},
            subject="Fwd: Your order ORD-1 is confirmed",
            body=body,
            sender="Me <me@home.example>",
        )

        assert outcome.retailer_id == retailer.id
        db_session.refresh(message)
        assert message.original_sender_address == "noreply@retailer.example"
        [(_, subject, sender, kwargs)] = intelligence.called("classify")
        assert subject == "Your order ORD-1 is confirmed"
        assert sender == "noreply@retailer.example"
        assert "FYI" not in kwargs["body"]

    def test_unknown_sender_still_processed(self, db_session, orchestrator, intelligence, store_message):
        message, outcome = run(
            orchestrator, intelligence, store_message,
            ("ORDER_CONFIRMATION", 0.95),
            {"parse_order": order_result(("ORD-1", [("Mouse", 1)]))},
            sender="Shop <orders@unknown-shop.example>",
        )

        assert outcome.outcome == "parsed"
        assert outcome.retailer_id is None


class TestFailures:
    """Test failure recording, retry and cancellation"""

    def test_transient_failure_then_retry(self, db_session, orchestrator, intelligence, store_message):
        intelligence.script(
            classification=("ORDER_CONFIRMATION", 0.95),
            parse={"parse_order": order_result(("ORD-1", [("Mouse", 1)]))},
        )
        intelligence.fail_once("classify", LLMTimeoutError("classifier timed out"))
        message = store_message()

        with pytest.raises(TransientPipelineError):
            orchestrator.process(message.id)

        db_session.refresh(message)
        assert message.status == ProcessingStatus.FAILED.value
        assert message.retry_count == 1
        assert "classifier timed out" in message.error_detail
        assert db_session.query(Order).count() == 0

        outcome = orchestrator.process(message.id)

        assert outcome.outcome == "parsed"
        db_session.refresh(message)
        assert message.status == ProcessingStatus.PARSED.value
        assert message.error_detail is None

    def test_attempt_ceiling_stops_retries(self, orchestrator, intelligence, store_message, policy):
        message = store_message(
            path=(ProcessingStatus.CLASSIFYING, ProcessingStatus.FAILED),
            retry_count=policy.max_attempts,
        )

        outcome = orchestrator.process(message.id)

        assert outcome.outcome == "skipped"
        assert intelligence.calls == []

    def test_cancelled_before_start(self, db_session, orchestrator, intelligence, store_message):
        message = store_message()
        token = CancellationToken()
        token.cancel("worker shutdown")

        with pytest.raises(ProcessingCancelled):
            orchestrator.process(message.id, cancellation=token)

        db_session.refresh(message)
        assert message.status == ProcessingStatus.PENDING.value
        assert message.retry_count == 0
        assert intelligence.calls == []

    def test_cancelled_mid_pipeline_persists_nothing(self, db_session, orchestrator, intelligence, store_message):
        intelligence.script(classification=("ORDER_CONFIRMATION", 0.95))
        intelligence.fail_once("parse_order", ProcessingCancelled("deadline reached"))
        message = store_message()

        with pytest.raises(ProcessingCancelled):
            orchestrator.process(message.id)

        db_session.refresh(message)
        assert message.status == ProcessingStatus.PENDING.value
        assert db_session.query(Order).count() == 0
        assert db_session.query(AuditLog).filter(AuditLog.inbound_message_id == message.id).count() == 0

    def test_conflict_is_retried(self, db_session, orchestrator, intelligence, store_message, monkeypatch):
        original = orchestrator._merge
        attempts = []

        def flaky(message, ctype, analysis):
            attempts.append(1)
            if len(attempts) == 1:
                raise StaleDataError("customer_order version mismatch")
            return original(message, ctype, analysis)

        monkeypatch.setattr(orchestrator, "_merge", flaky)

        _, outcome = confirm(orchestrator, intelligence, store_message)

        assert outcome.attempts == 2
        assert db_session.query(Order).count() == 1
        assert db_session.query(OrderEvent).count() == 1

    def test_conflict_retries_exhausted(self, db_session, orchestrator, intelligence, store_message, monkeypatch, policy):
        def always_stale(message, ctype, analysis):
            raise StaleDataError("customer_order version mismatch")

        monkeypatch.setattr(orchestrator, "_merge", always_stale)
        intelligence.script(
            classification=("ORDER_CONFIRMATION", 0.95),
            parse={"parse_order": order_result(("ORD-1", [("Mouse", 1)]))},
        )
        message = store_message()

        with pytest.raises(MergeConflictError) as exc_info:
            orchestrator.process(message.id)

        assert exc_info.value.attempts == policy.merge_conflict_retries
        db_session.refresh(message)
        assert message.status == ProcessingStatus.FAILED.value
        assert db_session.query(Order).count() == 0

    def test_persistent_key_collision_is_structural(self, db_session, orchestrator, intelligence, store_message, monkeypatch):
        def collide(message, ctype, analysis):
            raise IntegrityError("INSERT INTO shipment", {}, Exception("duplicate key"))

        monkeypatch.setattr(orchestrator, "_merge", collide)
        intelligence.script(
            classification=("ORDER_CONFIRMATION", 0.95),
            parse={"parse_order": order_result(("ORD-1", [("Mouse", 1)]))},
        )
        message = store_message()

        with pytest.raises(StructuralMergeError):
            orchestrator.process(message.id)

        db_session.refresh(message)
        assert message.status == ProcessingStatus.FAILED.value
        assert message.retry_count == 1

    def test_tracking_number_claimed_by_other_order(self, db_session, orchestrator, intelligence, store_message):
        confirm(orchestrator, intelligence, store_message, number="ORD-1")
        confirm(orchestrator, intelligence, store_message, number="ORD-2")
        ship(orchestrator, intelligence, store_message, tracking="T123", reference="ORD-1")

        intelligence.script(
            classification=("SHIPMENT_UPDATE", 0.9),
            parse={"parse_shipment": ParseResult.from_data(
                ShipmentData(order_reference="ORD-2", tracking_number="T123"), 0.9,
            )},
        )
        message = store_message(subject="Update for ORD-2")

        with pytest.raises(StructuralMergeError):
            orchestrator.process(message.id)

        db_session.refresh(message)
        assert message.status == ProcessingStatus.FAILED.value

    def test_message_of_other_tenant_is_not_found(self, orchestrator, store_message, other_tenant):
        message = store_message(tenant_id=other_tenant.id)

        with pytest.raises(MessageNotFoundError):
            orchestrator.process(message.id)


class TestAuditTrail:
    """Test every step leaves an audit entry"""

    def test_steps_are_logged(self, db_session, retailer, orchestrator, intelligence, store_message):
        message, _ = confirm(orchestrator, intelligence, store_message)

        steps = {
            entry.step
            for entry in db_session.query(AuditLog).filter(AuditLog.inbound_message_id == message.id)
        }
        assert {
            AuditStep.MATCH_RETAILER.value,
            AuditStep.RELEVANCE.value,
            AuditStep.CLASSIFY.value,
            AuditStep.PARSE.value,
            AuditStep.MERGE.value,
            AuditStep.STATUS_TRANSITION.value,
        } <= steps

    def test_missing_body_falls_back_to_preview(self, db_session, orchestrator, intelligence, store_message):
        message = store_message(body=None)
        message.body_preview = "Thanks for your order ORD-1 (preview)"
        db_session.commit()

        orchestrator.process(message.id)

        assert "ORD-1 (preview)" in intelligence.called("classify")[0][3]["body"]
        warning = db_session.query(AuditLog).filter(
            AuditLog.inbound_message_id == message.id,
            AuditLog.step == AuditStep.NORMALIZE.value,
            AuditLog.status == "WARNING",
        ).one()
        assert "preview" in warning.message

    def test_failure_is_logged(self, db_session, orchestrator, intelligence, store_message):
        intelligence.fail_once("is_relevant", LLMTimeoutError("timed out"))
        message = store_message()

        with pytest.raises(TransientPipelineError):
            orchestrator.process(message.id)

        errors = db_session.query(AuditLog).filter(
            AuditLog.inbound_message_id == message.id,
            AuditLog.status == "ERROR",
        ).all()
        assert len(errors) == 1
        assert errors[0].details_json["retryable"] is True
