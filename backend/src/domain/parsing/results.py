"""
Typed parser outputs, one model per event family.

These are Pydantic models so that model output can be validated as it is
read. Enum-valued fields accept loose spellings, dates accept ISO strings
and unparseable dates degrade to None instead of failing the whole parse.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator

from domain.orders.enums import (
    ShipmentStatus,
    DeliveryStatus,
    DeliveryIssueType,
    ReturnStatus,
    ReturnMethod,
    parse_enum,
)


def _lenient_date(value):
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            try:
                return date.fromisoformat(text[:10])
            except ValueError:
                return None
    return None


def _lenient_quantity(value):
    if value in (None, ""):
        return 1
    try:
        quantity = int(Decimal(str(value)))
    except (ArithmeticError, ValueError):
        return 1
    return max(quantity, 1)


class ParsedModel(BaseModel):
    """Base for parser outputs; unknown keys from the model are ignored."""
    model_config = {"extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data):
        # Explicit nulls fall back to field defaults
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class ItemReference(ParsedModel):
    """Item mentioned by a shipment, return or cancellation message"""
    product_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = 1
    return_reason: Optional[str] = None

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, value):
        return _lenient_quantity(value)


class OrderLineData(ParsedModel):
    """Order line item as extracted from a confirmation"""
    product_name: Optional[str] = None
    sku: Optional[str] = None
    line_number: Optional[int] = None
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    line_total: Optional[Decimal] = None
    product_url: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, value):
        return _lenient_quantity(value)


class OrderData(ParsedModel):
    """One order from an order confirmation or modification message"""
    external_order_number: Optional[str] = None
    retailer_name: Optional[str] = None
    order_date: Optional[date] = None
    subtotal: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    shipping_cost: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    total_amount: Optional[Decimal] = None
    currency: str = "USD"
    estimated_delivery_start: Optional[date] = None
    estimated_delivery_end: Optional[date] = None
    shipping_address: Optional[str] = None
    payment_method_summary: Optional[str] = None
    external_order_url: Optional[str] = None
    is_modification: bool = False
    lines: List[OrderLineData] = Field(default_factory=list)

    @field_validator(
        "order_date", "estimated_delivery_start", "estimated_delivery_end", mode="before"
    )
    @classmethod
    def coerce_dates(cls, value):
        return _lenient_date(value)


class OrderEmailData(ParsedModel):
    """Order parser output; a single message may confirm several orders"""
    orders: List[OrderData] = Field(default_factory=list)


class ShipmentData(ParsedModel):
    """Shipment confirmation or tracking update"""
    order_reference: Optional[str] = None
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    tracking_url: Optional[str] = None
    ship_date: Optional[date] = None
    estimated_delivery: Optional[date] = None
    status: ShipmentStatus = ShipmentStatus.SHIPPED
    status_detail: Optional[str] = None
    items: List[ItemReference] = Field(default_factory=list)

    @field_validator("ship_date", "estimated_delivery", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return _lenient_date(value)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return parse_enum(ShipmentStatus, value, ShipmentStatus.SHIPPED)


class DeliveryData(ParsedModel):
    """Delivery confirmation or delivery issue"""
    order_reference: Optional[str] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    delivery_date: Optional[date] = None
    delivery_location: Optional[str] = None
    status: DeliveryStatus = DeliveryStatus.DELIVERED
    issue_type: Optional[DeliveryIssueType] = None
    issue_description: Optional[str] = None
    signed_by: Optional[str] = None
    photo_url: Optional[str] = None

    @field_validator("delivery_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return _lenient_date(value)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return parse_enum(DeliveryStatus, value, DeliveryStatus.DELIVERED)

    @field_validator("issue_type", mode="before")
    @classmethod
    def coerce_issue_type(cls, value):
        if value in (None, ""):
            return None
        return parse_enum(DeliveryIssueType, value, DeliveryIssueType.OTHER)


class ReturnData(ParsedModel):
    """Return initiation, label, receipt or rejection"""
    order_reference: Optional[str] = None
    rma_number: Optional[str] = None
    status: ReturnStatus = ReturnStatus.INITIATED
    return_reason: Optional[str] = None
    return_method: Optional[ReturnMethod] = None
    return_carrier: Optional[str] = None
    return_tracking_number: Optional[str] = None
    return_by_date: Optional[date] = None
    received_by_retailer_date: Optional[date] = None
    rejection_reason: Optional[str] = None
    estimated_refund_amount: Optional[Decimal] = None
    items: List[ItemReference] = Field(default_factory=list)

    @field_validator("return_by_date", "received_by_retailer_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return _lenient_date(value)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value):
        return parse_enum(ReturnStatus, value, ReturnStatus.INITIATED)

    @field_validator("return_method", mode="before")
    @classmethod
    def coerce_method(cls, value):
        return parse_enum(ReturnMethod, value)


class RefundData(ParsedModel):
    """Refund confirmation"""
    order_reference: Optional[str] = None
    return_rma: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    currency: str = "USD"
    refund_method: Optional[str] = None
    refund_date: Optional[date] = None
    transaction_id: Optional[str] = None
    is_partial: bool = False

    @field_validator("refund_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return _lenient_date(value)


class CancellationData(ParsedModel):
    """Order cancellation, full or partial"""
    order_reference: Optional[str] = None
    is_full_cancellation: bool = False
    cancellation_reason: Optional[str] = None
    initiated_by: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    refund_method: Optional[str] = None
    cancelled_items: List[ItemReference] = Field(default_factory=list)


class PaymentData(ParsedModel):
    """Payment confirmation"""
    order_reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "USD"
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
    payment_date: Optional[date] = None

    @field_validator("payment_date", mode="before")
    @classmethod
    def coerce_dates(cls, value):
        return _lenient_date(value)
