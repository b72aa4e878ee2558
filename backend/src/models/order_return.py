"""OrderReturn and ReturnLine SQLAlchemy models"""

from uuid import uuid4

from sqlalchemy import (
    Column, Text, Integer, DateTime, Date, Numeric, Uuid, ForeignKey, Index, text,
)
from sqlalchemy.orm import validates

from domain.orders.enums import ReturnStatus, ReturnMethod
from .base import Base, PortableJSONB, utcnow, enum_value


class OrderReturn(Base):
    """Return of some or all items of an order.

    Deduplicated by (order_id, rma_number) when the retailer issued an RMA,
    otherwise by (order_id, reason_key).
    """
    __tablename__ = "order_return"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False, index=True)

    rma_number = Column(Text, nullable=True)
    # Normalized return reason, dedup key when no RMA is known
    reason_key = Column(Text, nullable=False, default="")
    status = Column(Text, nullable=False, default=ReturnStatus.INITIATED.value)
    return_reason = Column(Text, nullable=True)
    return_method = Column(Text, nullable=True)
    return_carrier = Column(Text, nullable=True)
    return_tracking_number = Column(Text, nullable=True)
    return_by_date = Column(Date, nullable=True)
    received_by_retailer_date = Column(Date, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    estimated_refund_amount = Column(Numeric(12, 2), nullable=True)

    # Item references not yet matched to order lines
    pending_items_json = Column(PortableJSONB, nullable=True)

    source_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "ux_order_return_rma",
            "order_id", "rma_number",
            unique=True,
            postgresql_where=text("rma_number IS NOT NULL"),
            sqlite_where=text("rma_number IS NOT NULL"),
        ),
    )

    @validates("status")
    def validate_status(self, key, value):
        return ReturnStatus(enum_value(value)).value

    @validates("return_method")
    def validate_return_method(self, key, value):
        if value is None:
            return None
        return ReturnMethod(enum_value(value)).value

    def __repr__(self):
        return f"<OrderReturn(id={self.id}, rma={self.rma_number}, status={self.status})>"


class ReturnLine(Base):
    """Quantity of one order line included in a return"""
    __tablename__ = "return_line"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    return_id = Column(Uuid, ForeignKey("order_return.id", ondelete="CASCADE"), nullable=False, index=True)
    order_line_id = Column(Uuid, ForeignKey("order_line.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ux_return_line", "return_id", "order_line_id", unique=True),
    )

    def __repr__(self):
        return f"<ReturnLine(return_id={self.return_id}, line={self.order_line_id}, qty={self.quantity})>"
