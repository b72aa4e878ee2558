"""InboundMessage model - Represents a received purchase notification email.

Each message is created once per (tenant, transport message id) by the
mailbox transport and is mutated only by the processing orchestrator or
an operator review action. Messages are never deleted; they end in a
terminal processing status.
"""

from uuid import uuid4

from sqlalchemy import (
    Column, Text, Integer, Float, DateTime, Uuid, ForeignKey, Index,
)
from sqlalchemy.orm import validates

from domain.messages.processing_status import ProcessingStatus, validate_transition
from .base import Base, utcnow, enum_value


class InboundMessage(Base):
    """
    InboundMessage model - Tracks one email through the pipeline.

    Multi-tenant isolation: Every inbound_message belongs to exactly one tenant.
    Deduplication: the same transport message id is stored once per tenant.
    """
    __tablename__ = "inbound_message"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(
        Uuid,
        ForeignKey("tenant.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Deduplication key (Message-ID header from the transport)
    transport_message_id = Column(Text, nullable=False)

    # Email metadata
    sender_address = Column(Text, nullable=False)
    original_sender_address = Column(Text, nullable=True)
    subject = Column(Text, nullable=True)
    body_text = Column(Text, nullable=True)
    body_preview = Column(Text, nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Processing state
    status = Column(Text, nullable=False)
    classification_type = Column(Text, nullable=True)
    classification_confidence = Column(Float, nullable=True)
    secondary_classification_type = Column(Text, nullable=True)
    retailer_id = Column(Uuid, ForeignKey("retailer.id", ondelete="SET NULL"), nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    error_detail = Column(Text, nullable=True)
    review_reason = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "ux_inbound_message_transport_id",
            "tenant_id", "transport_message_id",
            unique=True,
        ),
        Index("ix_inbound_message_tenant_status", "tenant_id", "status"),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault("status", ProcessingStatus.PENDING)
        kwargs.setdefault("retry_count", 0)
        super().__init__(**kwargs)

    @validates("status")
    def validate_status_transition(self, key, new_status):
        """
        Validate processing status state machine transitions.

        The current value is read before assignment, so the check covers
        the real from→to pair. reset_for_reprocessing() is the only way
        to move a message back to PENDING outside the retry path.

        Raises:
            StateTransitionError: If transition is not allowed by state machine
            ValueError: If new_status is not a ProcessingStatus value
        """
        new_status = ProcessingStatus(enum_value(new_status))
        current = ProcessingStatus(self.status) if self.status else None
        validate_transition(current, new_status, reprocess=getattr(self, "_reprocessing", False))
        return new_status.value

    @property
    def processing_status(self) -> ProcessingStatus:
        return ProcessingStatus(self.status)

    def reset_for_reprocessing(self) -> None:
        """Explicit reprocess: back to PENDING from any state."""
        self._reprocessing = True
        try:
            self.status = ProcessingStatus.PENDING
        finally:
            self._reprocessing = False
        self.error_detail = None
        self.review_reason = None
        self.processed_at = None

    def __repr__(self):
        return (
            f"<InboundMessage(id={self.id}, tenant_id={self.tenant_id}, "
            f"status={self.status}, sender={self.sender_address})>"
        )
