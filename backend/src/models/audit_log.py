"""AuditLog SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Column, Text, DateTime, Uuid, ForeignKey, Index

from .base import Base, PortableJSONB, utcnow


class AuditLog(Base):
    """AuditLog model for immutable pipeline step logging.

    One entry per processing step outcome of an inbound message.
    Entries are append-only and should never be updated or deleted.
    """
    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_tenant_id_created_at", "tenant_id", "created_at"),
        Index("ix_audit_log_inbound_message_id", "inbound_message_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="RESTRICT"), nullable=False)
    inbound_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)
    step = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    details_json = Column(PortableJSONB, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self):
        """Convert audit log entry to dictionary representation"""
        return {
            "id": str(self.id),
            "tenant_id": str(self.tenant_id),
            "inbound_message_id": str(self.inbound_message_id) if self.inbound_message_id else None,
            "step": self.step,
            "status": self.status,
            "message": self.message,
            "details": self.details_json,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
