"""Refund SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import (
    Column, Text, Boolean, DateTime, Date, Numeric, Uuid, ForeignKey, Index, text,
)

from .base import Base, utcnow


class Refund(Base):
    """Money returned to the customer, optionally for a specific return.

    Deduplicated by transaction_id per tenant when present, otherwise by
    (order_id, source_message_id, amount).
    """
    __tablename__ = "refund"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False, index=True)
    return_id = Column(Uuid, ForeignKey("order_return.id", ondelete="SET NULL"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(Text, nullable=False, default="USD")
    refund_method = Column(Text, nullable=True)
    refund_date = Column(Date, nullable=True)
    transaction_id = Column(Text, nullable=True)
    is_partial = Column(Boolean, nullable=False, default=False)

    source_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "ux_refund_transaction",
            "tenant_id", "transaction_id",
            unique=True,
            postgresql_where=text("transaction_id IS NOT NULL"),
            sqlite_where=text("transaction_id IS NOT NULL"),
        ),
    )

    def __repr__(self):
        return f"<Refund(id={self.id}, order_id={self.order_id}, amount={self.amount})>"
