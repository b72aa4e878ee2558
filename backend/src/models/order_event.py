"""OrderEvent model - append-only order timeline"""

from uuid import uuid4

from sqlalchemy import Column, Text, DateTime, Uuid, ForeignKey, Index

from .base import Base, PortableJSONB, utcnow


class OrderEvent(Base):
    """Timeline entry recording what changed on an order and which message caused it.

    Rows are never updated or deleted.
    """
    __tablename__ = "order_event"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False)
    inbound_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)

    # e.g. ORDER_CONFIRMED, SHIPMENT_UPDATED, STATUS_CHANGED
    event_type = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=True)
    entity_id = Column(Uuid, nullable=True)
    summary = Column(Text, nullable=False)
    details_json = Column(PortableJSONB, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_order_event_order", "order_id", "created_at"),
    )

    def __repr__(self):
        return f"<OrderEvent(order_id={self.order_id}, type={self.event_type})>"
