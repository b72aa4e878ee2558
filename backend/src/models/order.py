"""Order and OrderLine SQLAlchemy models"""

from uuid import uuid4

from sqlalchemy import (
    Column, Text, Integer, Boolean, DateTime, Date, Numeric, Uuid, ForeignKey, Index, text,
)
from sqlalchemy.orm import validates

from domain.orders.enums import OrderStatus, OrderLineStatus
from .base import Base, utcnow, enum_value


class Order(Base):
    """Customer order tracked from purchase notifications.

    Natural key is (tenant_id, normalized_order_number). status is never
    set directly by callers; the merger writes the aggregator result after
    every change to the order's children.

    version is a SQLAlchemy version counter. Two workers merging into the
    same order conflict on flush and the loser retries its whole merge.
    """
    __tablename__ = "customer_order"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    retailer_id = Column(Uuid, ForeignKey("retailer.id", ondelete="SET NULL"), nullable=True)

    external_order_number = Column(Text, nullable=False)
    normalized_order_number = Column(Text, nullable=False)

    status = Column(Text, nullable=False, default=OrderStatus.PLACED.value)
    is_inferred = Column(Boolean, nullable=False, default=False)
    is_closed = Column(Boolean, nullable=False, default=False)
    is_cancelled = Column(Boolean, nullable=False, default=False)

    order_date = Column(Date, nullable=True)
    subtotal = Column(Numeric(12, 2), nullable=True)
    tax_amount = Column(Numeric(12, 2), nullable=True)
    shipping_cost = Column(Numeric(12, 2), nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(Text, nullable=False, default="USD")

    estimated_delivery_start = Column(Date, nullable=True)
    estimated_delivery_end = Column(Date, nullable=True)
    shipping_address = Column(Text, nullable=True)
    payment_method_summary = Column(Text, nullable=True)
    external_order_url = Column(Text, nullable=True)

    # Message that created the order and the last one that changed it
    source_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)
    last_message_id = Column(Uuid, ForeignKey("inbound_message.id", ondelete="SET NULL"), nullable=True)

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ux_customer_order_number", "tenant_id", "normalized_order_number", unique=True),
        Index("ix_customer_order_tenant_status", "tenant_id", "status"),
    )

    @validates("status")
    def validate_status(self, key, value):
        return OrderStatus(enum_value(value)).value

    def __repr__(self):
        return (
            f"<Order(id={self.id}, number={self.external_order_number}, "
            f"status={self.status}, inferred={self.is_inferred})>"
        )


class OrderLine(Base):
    """Line item of an order.

    Natural key is (order_id, line_number); lines without an explicit
    line number fall back to (order_id, normalized_name).
    """
    __tablename__ = "order_line"

    id = Column(Uuid, primary_key=True, default=uuid4)
    tenant_id = Column(Uuid, ForeignKey("tenant.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(Uuid, ForeignKey("customer_order.id", ondelete="CASCADE"), nullable=False, index=True)

    # Insertion order within the order
    position = Column(Integer, nullable=False, default=0)
    line_number = Column(Integer, nullable=True)

    product_name = Column(Text, nullable=True)
    normalized_name = Column(Text, nullable=True)
    sku = Column(Text, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(12, 2), nullable=True)
    line_total = Column(Numeric(12, 2), nullable=True)
    product_url = Column(Text, nullable=True)
    image_url = Column(Text, nullable=True)

    status = Column(Text, nullable=False, default=OrderLineStatus.ORDERED.value)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "ux_order_line_number",
            "order_id", "line_number",
            unique=True,
            postgresql_where=text("line_number IS NOT NULL"),
            sqlite_where=text("line_number IS NOT NULL"),
        ),
        Index(
            "ux_order_line_name",
            "order_id", "normalized_name",
            unique=True,
            postgresql_where=text("line_number IS NULL AND normalized_name IS NOT NULL"),
            sqlite_where=text("line_number IS NULL AND normalized_name IS NOT NULL"),
        ),
    )

    @validates("status")
    def validate_status(self, key, value):
        return OrderLineStatus(enum_value(value)).value

    @property
    def line_status(self) -> OrderLineStatus:
        return OrderLineStatus(self.status)

    def __repr__(self):
        return f"<OrderLine(id={self.id}, order_id={self.order_id}, product={self.product_name}, qty={self.quantity})>"
