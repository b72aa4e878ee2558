"""Inbound message repository for database operations"""

from datetime import datetime
from typing import Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import select, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from domain.messages.processing_status import ProcessingStatus
from models.inbound_message import InboundMessage


class InboundMessageRepository:
    """Repository for inbound_message database operations.

    Every query is filtered by the tenant the repository was created for.
    """

    def __init__(self, db: Session, tenant_id: UUID):
        """Initialize repository with database session.

        Args:
            db: SQLAlchemy database session
            tenant_id: Tenant ID (multi-tenant isolation)
        """
        self.db = db
        self.tenant_id = tenant_id

    def get(self, message_id: UUID) -> Optional[InboundMessage]:
        """Get a message by id, or None if it belongs to another tenant."""
        return self.db.execute(
            select(InboundMessage).where(
                and_(
                    InboundMessage.id == message_id,
                    InboundMessage.tenant_id == self.tenant_id
                )
            )
        ).scalar_one_or_none()

    def get_by_transport_id(self, transport_message_id: str) -> Optional[InboundMessage]:
        return self.db.execute(
            select(InboundMessage).where(
                and_(
                    InboundMessage.tenant_id == self.tenant_id,
                    InboundMessage.transport_message_id == transport_message_id
                )
            )
        ).scalar_one_or_none()

    def create_if_absent(
        self,
        transport_message_id: str,
        sender_address: str,
        subject: Optional[str],
        body_text: Optional[str],
        received_at: Optional[datetime] = None,
        preview_length: int = 500,
    ) -> Tuple[InboundMessage, bool]:
        """Store a message once per (tenant, transport message id).

        Used by the mailbox transport; a redelivered message returns the
        existing row.

        Args:
            transport_message_id: Message-ID assigned by the transport
            sender_address: Envelope/From sender as received
            subject: Raw subject
            body_text: Raw body (text or HTML)
            received_at: Receive timestamp (defaults to now)
            preview_length: Characters kept in body_preview

        Returns:
            Tuple of (message, created)
        """
        existing = self.get_by_transport_id(transport_message_id)
        if existing:
            return existing, False

        message = InboundMessage(
            tenant_id=self.tenant_id,
            transport_message_id=transport_message_id,
            sender_address=sender_address,
            subject=subject,
            body_text=body_text,
            body_preview=(body_text or "")[:preview_length] or None,
        )
        if received_at is not None:
            message.received_at = received_at

        self.db.add(message)
        try:
            self.db.flush()
        except IntegrityError:
            # Stored concurrently by another transport worker
            self.db.rollback()
            existing = self.get_by_transport_id(transport_message_id)
            if existing is None:
                raise
            return existing, False

        return message, True

    def list_by_status(
        self,
        statuses: Sequence[ProcessingStatus],
        limit: int = 50,
        offset: int = 0,
    ) -> list[InboundMessage]:
        """List messages in any of the given statuses, oldest first."""
        values = [ProcessingStatus(s).value for s in statuses]
        return list(self.db.execute(
            select(InboundMessage)
            .where(
                and_(
                    InboundMessage.tenant_id == self.tenant_id,
                    InboundMessage.status.in_(values)
                )
            )
            .order_by(InboundMessage.received_at.asc(), InboundMessage.id.asc())
            .offset(offset)
            .limit(limit)
        ).scalars().all())

    def count_by_status(self, statuses: Sequence[ProcessingStatus]) -> int:
        values = [ProcessingStatus(s).value for s in statuses]
        return self.db.query(InboundMessage).filter(
            InboundMessage.tenant_id == self.tenant_id,
            InboundMessage.status.in_(values)
        ).count()

    def list_retryable_failed(self, max_attempts: int, limit: int = 100) -> list[InboundMessage]:
        """Failed messages still below the attempt ceiling, oldest first."""
        return list(self.db.execute(
            select(InboundMessage)
            .where(
                and_(
                    InboundMessage.tenant_id == self.tenant_id,
                    InboundMessage.status == ProcessingStatus.FAILED.value,
                    InboundMessage.retry_count < max_attempts
                )
            )
            .order_by(InboundMessage.updated_at.asc())
            .limit(limit)
        ).scalars().all())
