"""Message processing orchestrator.

Runs the pipeline for one inbound message:

    normalize → match retailer → relevance filter → classify → parse
    → merge → reconcile → recompute status → audit log

Processing is split in two stages:

1. Analysis calls the model service and touches no database state, so a
   cancellation or transient model failure leaves nothing half-written.
2. Apply walks the message through its state machine, merges the parsed
   data and commits everything (status, entities, events, audit entries)
   in one transaction. Concurrent merges into the same order surface as
   StaleDataError; the whole apply stage is then retried from scratch.

Failures are recorded in a separate transaction (status FAILED, retry
count incremented, error detail) and re-raised for the queue transport.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from audit.service import AuditStatus, AuditStep, log_processing_step
from domain.ai.email_intelligence import ClassificationResult, EmailIntelligencePort, ParseResult
from domain.ai.ports import LLMAuthError, LLMError, TRANSIENT_LLM_ERRORS
from domain.cancellation import CancellationToken, ProcessingCancelled, check_cancelled
from domain.messages.classification import (
    ClassificationType,
    EventFamily,
    family_for,
    parse_classification_type,
)
from domain.messages.processing_status import (
    ProcessingStatus,
    SETTLED_STATES,
    IN_FLIGHT_STATES,
    StateTransitionError,
    can_transition,
)
from domain.normalization.addresses import extract_email_address
from domain.normalization.forwarded_message import NormalizedMessage, normalize_forwarded_message
from domain.orders.enums import DeliveryStatus, ReturnStatus, RETURN_PROGRESS
from domain.parsing.results import DeliveryData, OrderEmailData, ReturnData
from domain.reconciliation.line_matching import LineMatcher, ContainmentMatcher
from domain.retailers.matcher import RetailerMatcher
from domain.retailers.models import RetailerMatch
from infrastructure.repositories.inbound_message_repository import InboundMessageRepository
from infrastructure.repositories.retailer_directory import SqlRetailerDirectory
from models.base import utcnow
from models.inbound_message import InboundMessage
from observability import metrics
from .errors import (
    MergeConflictError,
    MessageNotFoundError,
    PipelineError,
    StructuralMergeError,
    TransientPipelineError,
)
from .merger import MergeOutcome, OrderGraphMerger
from .policy import ProcessingPolicy

logger = logging.getLogger(__name__)

MAX_ERROR_DETAIL_LENGTH = 2000


class OutcomeKind:
    PARSED = "parsed"
    NOISE = "noise"
    MANUAL_REVIEW = "manual_review"
    SKIPPED = "skipped"


@dataclass
class AnalysisResult:
    """Everything learned about a message before touching the database.

    Attributes:
        normalized: Normalized subject/body and recovered original sender
        effective_sender: Address the model calls and matcher used
        retailer: Retailer match, or None
        used_preview: Body text was missing and the stored preview was used
        relevant: Relevance pre-filter verdict
        classification: Full classification (None when not relevant)
        family: Parser family (None when not classified confidently)
        parse_result: Parser output (None unless a parser ran)
        review_reason: Why the message needs manual review
        review_step: Step that sent the message to manual review
    """
    normalized: NormalizedMessage
    effective_sender: str
    retailer: Optional[RetailerMatch] = None
    used_preview: bool = False
    relevant: bool = True
    classification: Optional[ClassificationResult] = None
    family: Optional[EventFamily] = None
    parse_result: Optional[ParseResult] = None
    review_reason: Optional[str] = None
    review_step: Optional[AuditStep] = None

    @property
    def classification_type(self) -> Optional[ClassificationType]:
        return self.classification.classification_type if self.classification else None

    @property
    def retailer_id(self) -> Optional[UUID]:
        return self.retailer.retailer_id if self.retailer else None


@dataclass
class ProcessingOutcome:
    """Result of processing one message, returned to the worker."""
    message_id: UUID
    outcome: str
    status: str
    classification_type: Optional[str] = None
    confidence: Optional[float] = None
    retailer_id: Optional[UUID] = None
    reason: Optional[str] = None
    merge: Optional[MergeOutcome] = None
    attempts: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message_id": str(self.message_id),
            "outcome": self.outcome,
            "status": self.status,
            "classification_type": self.classification_type,
            "confidence": self.confidence,
            "retailer_id": str(self.retailer_id) if self.retailer_id else None,
            "reason": self.reason,
            "merge": self.merge.to_dict() if self.merge else None,
            "attempts": self.attempts,
        }


def _apply_return_hint(classification_type: ClassificationType, data: ReturnData) -> ReturnData:
    """Let the classification lift the parsed return status where the parser was vague."""
    hinted = {
        ClassificationType.RETURN_LABEL: ReturnStatus.LABEL_ISSUED,
        ClassificationType.RETURN_RECEIVED: ReturnStatus.RECEIVED,
        ClassificationType.RETURN_REJECTION: ReturnStatus.REJECTED,
    }.get(classification_type)
    if hinted is None or data.status == ReturnStatus.REJECTED:
        return data
    if hinted == ReturnStatus.REJECTED or RETURN_PROGRESS[hinted] > RETURN_PROGRESS.get(data.status, 0):
        return data.model_copy(update={"status": hinted})
    return data


def _apply_delivery_hint(classification_type: ClassificationType, data: DeliveryData) -> DeliveryData:
    if (
        classification_type == ClassificationType.DELIVERY_ISSUE
        and data.issue_type is None
        and data.status == DeliveryStatus.DELIVERED
    ):
        return data.model_copy(update={"status": DeliveryStatus.DELIVERY_EXCEPTION})
    return data


class MessageProcessingOrchestrator:
    """Sequences the pipeline for inbound messages of one tenant.

    All collaborators are passed in explicitly; the tenant id travels with
    the orchestrator instead of ambient state.

    Args:
        db: Tenant-scoped database session
        tenant_id: Tenant the messages belong to
        intelligence: Classifier/parser capability
        retailer_matcher: Matcher over the retailer directory (built from db if None)
        policy: Thresholds and limits (defaults if None)
        line_matcher: Item-to-line matching strategy (containment if None)
    """

    def __init__(
        self,
        db: Session,
        tenant_id: UUID,
        intelligence: EmailIntelligencePort,
        retailer_matcher: Optional[RetailerMatcher] = None,
        policy: Optional[ProcessingPolicy] = None,
        line_matcher: Optional[LineMatcher] = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.intelligence = intelligence
        self.retailer_matcher = retailer_matcher or RetailerMatcher(SqlRetailerDirectory(db))
        self.policy = policy or ProcessingPolicy()
        self.line_matcher = line_matcher or ContainmentMatcher()
        self.messages = InboundMessageRepository(db, tenant_id)

    # Entry points

    def process(
        self,
        message_id: UUID,
        cancellation: Optional[CancellationToken] = None,
        reprocess: bool = False,
    ) -> ProcessingOutcome:
        """Run the full pipeline for one message.

        Settled messages (parsed, manual review, dismissed, noise) are
        skipped unless reprocess is set; reprocessing resets the message
        to PENDING first. Failed messages are retried until the attempt
        ceiling.

        Args:
            message_id: Inbound message ID
            cancellation: Cancellation token checked between steps
            reprocess: Explicit operator reprocess

        Returns:
            ProcessingOutcome

        Raises:
            MessageNotFoundError: Message does not exist for the tenant
            TransientPipelineError: Model service unavailable (retryable)
            StructuralMergeError: Merge could not be applied
            MergeConflictError: Optimistic-concurrency retries exhausted
            ProcessingCancelled: Cancellation token fired (message left PENDING)
        """
        started = time.monotonic()
        message = self._load(message_id)

        skip_reason = None if reprocess else self._skip_reason(message)
        if skip_reason:
            logger.info(
                f"Skipping message {message_id}: {skip_reason}",
                extra={"inbound_message_id": str(message_id), "tenant_id": str(self.tenant_id)}
            )
            metrics.messages_processed_total.labels(outcome=OutcomeKind.SKIPPED).inc()
            return ProcessingOutcome(
                message_id=message_id,
                outcome=OutcomeKind.SKIPPED,
                status=message.status,
                classification_type=message.classification_type,
                confidence=message.classification_confidence,
                retailer_id=message.retailer_id,
                reason=skip_reason,
            )

        try:
            self._begin(message, reprocess)
            analysis = self._analyze(message, cancellation)
            outcome = self._with_conflict_retry(
                message_id,
                lambda msg: self._apply_analysis(msg, analysis),
                cancellation,
            )
        except ProcessingCancelled:
            self.db.rollback()
            metrics.messages_processed_total.labels(outcome="cancelled").inc()
            logger.warning(
                f"Processing of message {message_id} cancelled; message left resumable",
                extra={"inbound_message_id": str(message_id), "tenant_id": str(self.tenant_id)}
            )
            raise
        except Exception as e:
            self.db.rollback()
            self._record_failure(message_id, e)
            metrics.messages_processed_total.labels(outcome="failed").inc()
            raise

        metrics.messages_processed_total.labels(outcome=outcome.outcome).inc()
        metrics.processing_duration_seconds.observe(time.monotonic() - started)
        logger.info(
            f"Processed message {message_id}: {outcome.outcome} ({outcome.status})",
            extra={"inbound_message_id": str(message_id), "tenant_id": str(self.tenant_id)}
        )
        return outcome

    def approve_manual_review(
        self,
        message_id: UUID,
        classification_type: Optional[ClassificationType] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ProcessingOutcome:
        """Operator approval of a message in manual review.

        Re-runs the parser for the stored (or operator-corrected)
        classification and merges the result regardless of confidence.
        When the parser still extracts nothing the message stays in
        manual review with an updated reason.

        Raises:
            StateTransitionError: Message is not in MANUAL_REVIEW
            ValueError: No usable classification type, or a promotional one
        """
        message = self._load(message_id)
        current = ProcessingStatus(message.status)
        if current != ProcessingStatus.MANUAL_REVIEW:
            raise StateTransitionError(current, ProcessingStatus.PARSED)

        ctype = classification_type or parse_classification_type(message.classification_type)
        if ctype is None:
            raise ValueError("A classification type is required to approve this message")
        family = family_for(ctype)
        if family == EventFamily.NOISE:
            raise ValueError("Promotional messages cannot be approved; dismiss them instead")

        try:
            analysis = self._prepare(message)
            analysis.classification = ClassificationResult(classification_type=ctype, confidence=1.0)
            analysis.family = family
            analysis.parse_result = self._parse(family, analysis, cancellation)
            outcome = self._with_conflict_retry(
                message_id,
                lambda msg: self._apply_approval(msg, analysis, ctype),
                cancellation,
            )
        except ProcessingCancelled:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            self._record_failure(message_id, e)
            raise

        metrics.messages_processed_total.labels(outcome=outcome.outcome).inc()
        return outcome

    # Stage 0: load and reset

    def _load(self, message_id: UUID) -> InboundMessage:
        message = self.messages.get(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def _skip_reason(self, message: InboundMessage) -> Optional[str]:
        status = ProcessingStatus(message.status)
        if status in SETTLED_STATES:
            return f"already {status.value}"
        if status == ProcessingStatus.CLASSIFIED and message.classification_type == ClassificationType.PROMOTIONAL.value:
            return "classified as noise"
        if status == ProcessingStatus.FAILED and not self.policy.can_retry(message.retry_count or 0):
            return f"attempt ceiling reached ({message.retry_count} attempts)"
        return None

    def _begin(self, message: InboundMessage, reprocess: bool) -> None:
        """Bring the message back to PENDING when needed and commit that."""
        status = ProcessingStatus(message.status)
        if status == ProcessingStatus.PENDING and not reprocess:
            return

        if reprocess or status in IN_FLIGHT_STATES:
            message.reset_for_reprocessing()
            note = "Reset for reprocessing" if reprocess else f"Resumed interrupted processing from {status.value}"
        else:
            message.status = ProcessingStatus.PENDING
            note = f"Retry after failure (attempt {message.retry_count + 1})"

        log_processing_step(
            self.db, self.tenant_id, AuditStep.STATUS_TRANSITION, AuditStatus.INFO,
            f"{status.value} -> PENDING: {note}",
            inbound_message_id=message.id,
            details={"from": status.value, "to": ProcessingStatus.PENDING.value, "reprocess": reprocess},
        )
        self.db.commit()

    # Stage 1: analysis (no database writes)

    def _prepare(self, message: InboundMessage) -> AnalysisResult:
        body = message.body_text
        used_preview = False
        if body is None:
            body = message.body_preview or ""
            used_preview = True

        normalized = normalize_forwarded_message(message.subject, body, self.policy.max_body_length)
        retailer = self.retailer_matcher.match(message.sender_address, normalized.original_sender)
        effective_sender = (
            normalized.original_sender
            or extract_email_address(message.sender_address)
            or message.sender_address
        )
        return AnalysisResult(
            normalized=normalized,
            effective_sender=effective_sender,
            retailer=retailer,
            used_preview=used_preview,
        )

    def _analyze(self, message: InboundMessage, cancellation: Optional[CancellationToken]) -> AnalysisResult:
        check_cancelled(cancellation)
        analysis = self._prepare(message)
        normalized = analysis.normalized

        check_cancelled(cancellation)
        relevant = self._call(
            self.intelligence.is_relevant,
            normalized.subject,
            normalized.preview(self.policy.body_preview_length),
            analysis.effective_sender,
            cancellation=cancellation,
        )
        if not relevant:
            analysis.relevant = False
            metrics.classification_outcomes_total.labels(
                classification_type="IRRELEVANT", decision="noise"
            ).inc()
            return analysis

        check_cancelled(cancellation)
        classification = self._call(
            self.intelligence.classify,
            normalized.subject,
            normalized.body,
            analysis.effective_sender,
            cancellation=cancellation,
        )
        analysis.classification = classification
        metrics.classification_confidence_histogram.observe(classification.confidence)
        ctype = classification.classification_type

        if ctype is None:
            analysis.review_reason = f"Unusable classification: {classification.error or 'unknown type'}"
            analysis.review_step = AuditStep.CLASSIFY
            metrics.classification_outcomes_total.labels(
                classification_type="UNKNOWN", decision="manual_review"
            ).inc()
            return analysis

        if not self.policy.is_confident_classification(classification.confidence):
            analysis.review_reason = (
                f"Classification confidence {classification.confidence:.2f} below threshold "
                f"{self.policy.classification_threshold:.2f}"
            )
            analysis.review_step = AuditStep.CLASSIFY
            metrics.classification_outcomes_total.labels(
                classification_type=ctype.value, decision="manual_review"
            ).inc()
            return analysis

        analysis.family = family_for(ctype)
        if analysis.family == EventFamily.NOISE:
            metrics.classification_outcomes_total.labels(
                classification_type=ctype.value, decision="noise"
            ).inc()
            return analysis

        metrics.classification_outcomes_total.labels(
            classification_type=ctype.value, decision="parse"
        ).inc()
        check_cancelled(cancellation)
        analysis.parse_result = self._parse(analysis.family, analysis, cancellation)
        return analysis

    def _parse(
        self,
        family: EventFamily,
        analysis: AnalysisResult,
        cancellation: Optional[CancellationToken],
    ) -> ParseResult:
        parsers = {
            EventFamily.ORDER: self.intelligence.parse_order,
            EventFamily.SHIPMENT: self.intelligence.parse_shipment,
            EventFamily.DELIVERY: self.intelligence.parse_delivery,
            EventFamily.RETURN: self.intelligence.parse_return,
            EventFamily.REFUND: self.intelligence.parse_refund,
            EventFamily.CANCELLATION: self.intelligence.parse_cancellation,
            EventFamily.PAYMENT: self.intelligence.parse_payment,
        }
        result = self._call(
            parsers[family],
            analysis.normalized.subject,
            analysis.normalized.body,
            analysis.effective_sender,
            retailer_hint=analysis.retailer.retailer_name if analysis.retailer else None,
            cancellation=cancellation,
        )
        metrics.parse_confidence_histogram.labels(family=family.value).observe(result.confidence)
        return result

    @staticmethod
    def _call(fn, *args, **kwargs):
        """Invoke the model boundary, mapping its errors onto the pipeline taxonomy."""
        try:
            return fn(*args, **kwargs)
        except TRANSIENT_LLM_ERRORS as e:
            raise TransientPipelineError(str(e)) from e
        except LLMAuthError as e:
            raise PipelineError(f"Model service rejected credentials: {e}") from e
        except LLMError as e:
            raise PipelineError(f"Model service error: {e}") from e

    # Stage 2: apply (single transaction)

    def _with_conflict_retry(self, message_id: UUID, apply, cancellation: Optional[CancellationToken]) -> ProcessingOutcome:
        """Run apply(message) and commit, retrying the whole unit on conflicts.

        Raises:
            MergeConflictError: Version conflicts persisted through every retry
            StructuralMergeError: Natural-key collision persisted through every retry
        """
        attempts = 0
        last_error = None
        while attempts < self.policy.merge_conflict_retries:
            attempts += 1
            check_cancelled(cancellation)
            try:
                message = self._load(message_id)
                outcome = apply(message)
                check_cancelled(cancellation)
                self.db.commit()
                outcome.attempts = attempts
                return outcome
            except (StaleDataError, IntegrityError) as e:
                self.db.rollback()
                last_error = e
                metrics.merge_conflicts_total.labels(resolution="retried").inc()
                logger.warning(
                    f"Merge conflict for message {message_id} (attempt {attempts}): {e}",
                    extra={"inbound_message_id": str(message_id), "tenant_id": str(self.tenant_id)}
                )

        metrics.merge_conflicts_total.labels(resolution="exhausted").inc()
        if isinstance(last_error, IntegrityError):
            raise StructuralMergeError(
                f"Natural-key collision while merging message {message_id}: {last_error.orig}"
            ) from last_error
        raise MergeConflictError(message_id, attempts) from last_error

    def _apply_analysis(self, message: InboundMessage, analysis: AnalysisResult) -> ProcessingOutcome:
        self._record_context(message, analysis)
        self._transition(message, ProcessingStatus.CLASSIFYING, "Classification started")

        if not analysis.relevant:
            message.classification_type = ClassificationType.PROMOTIONAL.value
            message.classification_confidence = None
            self._audit(message, AuditStep.RELEVANCE, AuditStatus.SUCCESS, "Not relevant; classified as noise")
            self._transition(message, ProcessingStatus.CLASSIFIED, "Relevance filter rejected message")
            message.processed_at = utcnow()
            return self._outcome(message, OutcomeKind.NOISE, analysis, reason="not relevant")

        self._audit(message, AuditStep.RELEVANCE, AuditStatus.SUCCESS, "Relevant")
        classification = analysis.classification
        ctype = classification.classification_type
        message.classification_type = ctype.value if ctype else None
        message.classification_confidence = classification.confidence
        message.secondary_classification_type = (
            classification.secondary_type.value if classification.secondary_type else None
        )

        if analysis.review_step == AuditStep.CLASSIFY:
            return self._to_manual_review(message, analysis)

        self._audit(
            message, AuditStep.CLASSIFY, AuditStatus.SUCCESS,
            f"Classified as {ctype.value}",
            {"confidence": classification.confidence,
             "secondary_type": message.secondary_classification_type},
        )

        if analysis.family == EventFamily.NOISE:
            self._transition(message, ProcessingStatus.CLASSIFIED, "Promotional message")
            message.processed_at = utcnow()
            return self._outcome(message, OutcomeKind.NOISE, analysis, reason="promotional")

        self._transition(message, ProcessingStatus.CLASSIFIED, f"Classified as {ctype.value}")
        self._transition(message, ProcessingStatus.PARSING, f"Parsing as {analysis.family.value}")

        review_reason = self._parse_review_reason(analysis.parse_result)
        if review_reason:
            analysis.review_reason = review_reason
            analysis.review_step = AuditStep.PARSE
            return self._to_manual_review(message, analysis)

        self._audit(
            message, AuditStep.PARSE, AuditStatus.SUCCESS,
            f"Parsed {analysis.family.value} data",
            {"confidence": analysis.parse_result.confidence},
        )
        merge = self._merge(message, ctype, analysis)
        message.error_detail = None
        message.review_reason = None
        self._transition(message, ProcessingStatus.PARSED, "Merged into order graph")
        message.processed_at = utcnow()
        return self._outcome(message, OutcomeKind.PARSED, analysis, merge=merge)

    def _apply_approval(
        self,
        message: InboundMessage,
        analysis: AnalysisResult,
        ctype: ClassificationType,
    ) -> ProcessingOutcome:
        self._record_context(message, analysis)
        previous_type = message.classification_type
        message.classification_type = ctype.value
        self._audit(
            message, AuditStep.REVIEW, AuditStatus.INFO,
            f"Approved by operator as {ctype.value}",
            {"previous_type": previous_type},
        )

        result = analysis.parse_result
        if result is None or result.data is None or self._is_empty(result.data):
            reason = f"Parser extracted no data on approval: {result.error if result else 'no result'}"
            message.review_reason = reason
            self._audit(message, AuditStep.PARSE, AuditStatus.WARNING, reason)
            return self._outcome(message, OutcomeKind.MANUAL_REVIEW, analysis, reason=reason)

        self._audit(
            message, AuditStep.PARSE, AuditStatus.SUCCESS,
            f"Parsed {analysis.family.value} data",
            {"confidence": result.confidence, "operator_approved": True},
        )
        merge = self._merge(message, ctype, analysis)
        message.error_detail = None
        message.review_reason = None
        self._transition(message, ProcessingStatus.PARSED, "Approved by operator")
        message.processed_at = utcnow()
        return self._outcome(message, OutcomeKind.PARSED, analysis, merge=merge)

    def _record_context(self, message: InboundMessage, analysis: AnalysisResult) -> None:
        normalized = analysis.normalized
        if analysis.used_preview:
            self._audit(
                message, AuditStep.NORMALIZE, AuditStatus.WARNING,
                "Body text missing; processed stored preview only",
            )
        if normalized.original_sender:
            message.original_sender_address = normalized.original_sender
            self._audit(
                message, AuditStep.NORMALIZE, AuditStatus.INFO,
                f"Forwarded message; original sender {normalized.original_sender}",
                {"format": normalized.forward_format, "truncated": normalized.truncated},
            )

        message.retailer_id = analysis.retailer_id
        if analysis.retailer:
            self._audit(
                message, AuditStep.MATCH_RETAILER, AuditStatus.SUCCESS,
                f"Matched retailer {analysis.retailer.retailer_name}",
                {"retailer_id": str(analysis.retailer.retailer_id),
                 "method": analysis.retailer.method,
                 "confidence": analysis.retailer.confidence},
            )
        else:
            self._audit(
                message, AuditStep.MATCH_RETAILER, AuditStatus.INFO,
                f"No retailer matched sender {analysis.effective_sender}",
            )

    def _parse_review_reason(self, result: Optional[ParseResult]) -> Optional[str]:
        if result is None or result.data is None:
            return f"Parser extracted no data: {(result.error if result else None) or 'no result'}"
        if self._is_empty(result.data):
            return "Parser found no orders in message"
        if result.needs_review or result.confidence < self.policy.parser_threshold:
            return (
                f"Parse confidence {result.confidence:.2f} below threshold "
                f"{self.policy.parser_threshold:.2f}"
            )
        return None

    @staticmethod
    def _is_empty(data) -> bool:
        return isinstance(data, OrderEmailData) and not data.orders

    def _to_manual_review(self, message: InboundMessage, analysis: AnalysisResult) -> ProcessingOutcome:
        message.review_reason = analysis.review_reason
        self._audit(
            message, analysis.review_step, AuditStatus.WARNING, analysis.review_reason,
            {"confidence": (
                analysis.parse_result.confidence
                if analysis.review_step == AuditStep.PARSE and analysis.parse_result
                else message.classification_confidence
            )},
        )
        self._transition(message, ProcessingStatus.MANUAL_REVIEW, analysis.review_reason)
        return self._outcome(message, OutcomeKind.MANUAL_REVIEW, analysis, reason=analysis.review_reason)

    def _merge(self, message: InboundMessage, ctype: ClassificationType, analysis: AnalysisResult) -> MergeOutcome:
        data = analysis.parse_result.data
        family = analysis.family
        merger = OrderGraphMerger(
            self.db,
            self.tenant_id,
            message,
            retailer_id=analysis.retailer_id,
            line_matcher=self.line_matcher,
            policy=self.policy,
        )

        if family == EventFamily.ORDER:
            is_modification = ctype == ClassificationType.ORDER_MODIFICATION
            for order_data in data.orders:
                merger.merge_order(order_data, is_modification=is_modification or order_data.is_modification)
        elif family == EventFamily.SHIPMENT:
            merger.merge_shipment(data)
        elif family == EventFamily.DELIVERY:
            merger.merge_delivery(_apply_delivery_hint(ctype, data))
        elif family == EventFamily.RETURN:
            merger.merge_return(_apply_return_hint(ctype, data))
        elif family == EventFamily.REFUND:
            merger.merge_refund(data)
        elif family == EventFamily.CANCELLATION:
            merger.merge_cancellation(data)
        elif family == EventFamily.PAYMENT:
            merger.merge_payment(data)
        else:
            raise StructuralMergeError(f"No merge for event family {family}")

        outcome = merger.outcome
        self._audit(
            message, AuditStep.MERGE, AuditStatus.SUCCESS,
            f"Merged into {len(outcome.order_ids)} order(s)",
            outcome.to_dict(),
        )
        created_orders = len(outcome.created.get("order", []))
        if created_orders and family != EventFamily.ORDER:
            metrics.inferred_orders_total.inc(created_orders)
        if outcome.reconciled_items:
            metrics.reconciled_items_total.inc(outcome.reconciled_items)
            self._audit(
                message, AuditStep.RECONCILE, AuditStatus.SUCCESS,
                f"Reconciled {outcome.reconciled_items} orphaned item(s)",
            )
        if outcome.orphaned_items:
            metrics.orphaned_items_total.inc(outcome.orphaned_items)
            self._audit(
                message, AuditStep.RECONCILE, AuditStatus.WARNING,
                f"{outcome.orphaned_items} item(s) could not be matched to order lines",
            )
        return outcome

    # Helpers

    def _transition(self, message: InboundMessage, to_status: ProcessingStatus, note: str) -> None:
        from_status = message.status
        message.status = to_status
        self._audit(
            message, AuditStep.STATUS_TRANSITION, AuditStatus.INFO,
            f"{from_status} -> {to_status.value}: {note}",
            {"from": from_status, "to": to_status.value},
        )

    def _audit(self, message: InboundMessage, step, status, text: str, details: Optional[dict] = None) -> None:
        log_processing_step(
            self.db,
            self.tenant_id,
            step,
            status,
            text,
            inbound_message_id=message.id,
            details=details,
        )

    def _outcome(
        self,
        message: InboundMessage,
        kind: str,
        analysis: AnalysisResult,
        reason: Optional[str] = None,
        merge: Optional[MergeOutcome] = None,
    ) -> ProcessingOutcome:
        return ProcessingOutcome(
            message_id=message.id,
            outcome=kind,
            status=message.status,
            classification_type=message.classification_type,
            confidence=message.classification_confidence,
            retailer_id=analysis.retailer_id,
            reason=reason,
            merge=merge,
        )

    def _record_failure(self, message_id: UUID, error: Exception) -> None:
        """Mark the message FAILED in a fresh transaction.

        Messages in manual review keep their status; only the retry count
        and error detail are updated.
        """
        detail = f"{type(error).__name__}: {error}"[:MAX_ERROR_DETAIL_LENGTH]
        try:
            message = self.messages.get(message_id)
            if message is None:
                return
            current = ProcessingStatus(message.status)
            if current != ProcessingStatus.FAILED and can_transition(current, ProcessingStatus.FAILED):
                message.status = ProcessingStatus.FAILED
            message.retry_count = (message.retry_count or 0) + 1
            message.error_detail = detail
            log_processing_step(
                self.db, self.tenant_id, AuditStep.STATUS_TRANSITION, AuditStatus.ERROR,
                f"{current.value} -> {message.status}: {detail}",
                inbound_message_id=message.id,
                details={
                    "error_type": type(error).__name__,
                    "retry_count": message.retry_count,
                    "retryable": isinstance(error, (TransientPipelineError, MergeConflictError)),
                },
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                f"Could not record failure for message {message_id}",
                extra={"inbound_message_id": str(message_id), "tenant_id": str(self.tenant_id)}
            )
        logger.error(
            f"Processing of message {message_id} failed: {detail}",
            extra={"inbound_message_id": str(message_id), "tenant_id": str(self.tenant_id)}
        )
