"""Operator review service.

Operators work the manual-review queue here: approve a message (optionally
with a corrected classification), dismiss it, force a full reprocess, or
close an order. Each action writes a REVIEW audit entry.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from audit.service import AuditStatus, AuditStep, log_processing_step
from domain.messages.classification import ClassificationType, parse_classification_type
from domain.messages.processing_status import ProcessingStatus
from infrastructure.repositories.inbound_message_repository import InboundMessageRepository
from infrastructure.repositories.order_repository import OrderRepository
from models.base import utcnow
from models.inbound_message import InboundMessage
from models.order import Order
from observability import metrics
from pipeline.errors import MessageNotFoundError
from pipeline.merger import OrderGraphMerger
from pipeline.orchestrator import MessageProcessingOrchestrator, ProcessingOutcome

logger = logging.getLogger(__name__)


class OrderNotFoundError(LookupError):
    """Order does not exist for the tenant."""

    def __init__(self, order_id: UUID):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class ReviewService:
    """Operator actions for one tenant.

    Args:
        db: Tenant-scoped session
        tenant_id: Tenant UUID
        orchestrator: Orchestrator used for approve/reprocess runs
    """

    def __init__(self, db: Session, tenant_id: UUID, orchestrator: MessageProcessingOrchestrator):
        self.db = db
        self.tenant_id = tenant_id
        self.orchestrator = orchestrator
        self.messages = InboundMessageRepository(db, tenant_id)
        self.orders = OrderRepository(db, tenant_id)

    def list_queue(self, limit: int = 50, offset: int = 0) -> Tuple[List[InboundMessage], int]:
        """Messages waiting for review, oldest first, with the total count."""
        statuses = [ProcessingStatus.MANUAL_REVIEW]
        items = self.messages.list_by_status(statuses, limit=limit, offset=offset)
        total = self.messages.count_by_status(statuses)
        metrics.manual_review_queue_depth.set(total)
        return items, total

    def get_message(self, message_id: UUID) -> InboundMessage:
        message = self.messages.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def approve(self, message_id: UUID, classification_type: Optional[str] = None) -> ProcessingOutcome:
        """Re-run parse and merge for a message in manual review.

        Raises:
            MessageNotFoundError: Unknown message
            StateTransitionError: Message is not in manual review
            ValueError: Unknown or unusable classification type
        """
        corrected: Optional[ClassificationType] = None
        if classification_type:
            corrected = parse_classification_type(classification_type)
            if corrected is None:
                raise ValueError(f"Unknown classification type '{classification_type}'")

        outcome = self.orchestrator.approve_manual_review(message_id, classification_type=corrected)
        logger.info(
            f"Operator approved message {message_id}: {outcome.status}",
            extra={"tenant_id": str(self.tenant_id), "inbound_message_id": str(message_id)}
        )
        return outcome

    def dismiss(self, message_id: UUID, reason: Optional[str] = None) -> InboundMessage:
        """MANUAL_REVIEW → DISMISSED.

        Raises:
            MessageNotFoundError: Unknown message
            StateTransitionError: Message is not in manual review
        """
        message = self.get_message(message_id)
        previous = message.status
        message.status = ProcessingStatus.DISMISSED
        message.processed_at = utcnow()
        log_processing_step(
            self.db, self.tenant_id, AuditStep.REVIEW, AuditStatus.INFO,
            f"Dismissed by operator{': ' + reason if reason else ''}",
            inbound_message_id=message.id,
            details={"from": previous, "to": ProcessingStatus.DISMISSED.value, "reason": reason},
        )
        self.db.commit()
        return message

    def reprocess(self, message_id: UUID) -> ProcessingOutcome:
        """Reset a message to PENDING and run the full pipeline again."""
        self.get_message(message_id)
        log_processing_step(
            self.db, self.tenant_id, AuditStep.REVIEW, AuditStatus.INFO,
            "Reprocess requested by operator",
            inbound_message_id=message_id,
        )
        self.db.commit()
        return self.orchestrator.process(message_id, reprocess=True)

    def close_order(self, order_id: UUID) -> Order:
        """Mark an order closed by the operator and recompute its status.

        A concurrent merge into the same order is retried on fresh state
        up to the policy's conflict retry count.

        Raises:
            OrderNotFoundError: Unknown order
            StaleDataError: Conflicts persisted through every retry
        """
        attempts = self.orchestrator.policy.merge_conflict_retries
        for attempt in range(1, attempts + 1):
            order = self.orders.get_order(order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            try:
                merger = OrderGraphMerger(self.db, self.tenant_id, None)
                status = merger.close_order(order)
                log_processing_step(
                    self.db, self.tenant_id, AuditStep.REVIEW, AuditStatus.INFO,
                    f"Order {order.external_order_number} closed by operator (status {status.value})",
                    details={"order_id": str(order.id), "status": status.value},
                )
                self.db.commit()
                return order
            except StaleDataError as e:
                self.db.rollback()
                resolution = "retried" if attempt < attempts else "exhausted"
                metrics.merge_conflicts_total.labels(resolution=resolution).inc()
                logger.warning(
                    f"Conflict closing order {order_id} (attempt {attempt}): {e}",
                    extra={"tenant_id": str(self.tenant_id), "order_id": str(order_id)}
                )
                if attempt == attempts:
                    raise
