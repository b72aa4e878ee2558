"""Shipment, ShipmentLine and Delivery SQLAlchemy models"""

from uuid import uuid4

from sqlalchemy import (
    Column, Text, Integer, Boolean, DateTime, Date, Uuid, ForeignKey, Index, text,
)
from sqlalchemy.orm import validates

from domain.orders.enums import ShipmentStatus, DeliveryStatus, DeliveryIssueType
from .base import Base, PortableJSONB, utcnow, enum_value


class Shipment(Base):
    """Package sent for an order.

    Deduplicated by tracking number per tenant; shipments without a
    tracking number are deduplicated by (order_id, source_message_id).

    pending_items_json holds item references from the shipment message
    that could not yet be matched to an order line. Reconciliation moves
    them into ShipmentLine rows once the order's lines are known.
    """
    __tablename__ = "shipment"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False, index=True)

    carrier = Column(Text, nullable=True)
    tracking_number = Column(Text, nullable=True)
    tracking_url = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=ShipmentStatus.SHIPPED.value)
    status_detail = Column(Text, nullable=True)
    ship_date = Column(Date, nullable=True)
    estimated_delivery = Column(Date, nullable=True)

    # [{"product_name": ..., "sku": ..., "quantity": ...}]
    pending_items_json = Column(PortableJSONB, nullable=True)

    source_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "ux_shipment_tracking_number",
            "tenant_id", "tracking_number",
            unique=True,
            postgresql_where=text("tracking_number IS NOT NULL"),
            sqlite_where=text("tracking_number IS NOT NULL"),
        ),
    )

    @validates("status")
    def validate_status(self, key, value):
        return ShipmentStatus(enum_value(value)).value

    def __repr__(self):
        return f"<Shipment(id={self.id}, tracking={self.tracking_number}, status={self.status})>"


class ShipmentLine(Base):
    """Quantity of one order line carried by a shipment"""
    __tablename__ = "shipment_line"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    shipment_id = Column(Uuid, ForeignKey("shipment.id", ondelete="CASCADE"), nullable=False, index=True)
    order_line_id = Column(Uuid, ForeignKey("order_line.id", ondelete="CASCADE"), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ux_shipment_line", "shipment_id", "order_line_id", unique=True),
    )

    def __repr__(self):
        return f"<ShipmentLine(shipment_id={self.shipment_id}, line={self.order_line_id}, qty={self.quantity})>"


class Delivery(Base):
    """Delivery outcome of a shipment (one per shipment)"""
    __tablename__ = "delivery"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    shipment_id = Column(Uuid, ForeignKey("shipment.id", ondelete="CASCADE"), nullable=False)

    status = Column(Text, nullable=False, default=DeliveryStatus.DELIVERED.value)
    delivery_date = Column(Date, nullable=True)
    delivery_location = Column(Text, nullable=True)
    issue_type = Column(Text, nullable=True)
    issue_description = Column(Text, nullable=True)
    issue_resolved = Column(Boolean, nullable=False, default=False)
    signed_by = Column(Text, nullable=True)
    photo_url = Column(Text, nullable=True)

    source_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ux_delivery_shipment", "shipment_id", unique=True),
    )

    @validates("status")
    def validate_status(self, key, value):
        return DeliveryStatus(enum_value(value)).value

    @validates("issue_type")
    def validate_issue_type(self, key, value):
        if value is None:
            return None
        return DeliveryIssueType(enum_value(value)).value

    def __repr__(self):
        return f"<Delivery(shipment_id={self.shipment_id}, status={self.status}, issue={self.issue_type})>"
