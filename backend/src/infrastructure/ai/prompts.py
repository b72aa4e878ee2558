"""Prompt templates for the classifier and parser roles.

Every prompt asks for one JSON object. Parser prompts describe the field
names of the matching model in domain.parsing.results and always include
a top-level "confidence" between 0 and 1.
"""

from typing import Optional

from domain.ai.models import AICallType
from domain.messages.classification import ClassificationType
from domain.orders.enums import (
    DeliveryIssueType,
    DeliveryStatus,
    ReturnMethod,
    ReturnStatus,
    ShipmentStatus,
)

RELEVANCE_PROMPT = """You screen emails for a personal order tracker.
Decide whether the email is about a purchase the recipient made: an order
confirmation or change, payment, shipment, delivery, return, refund or
cancellation. Marketing, newsletters, account notices and receipts for
in-store purchases are NOT order related.

Return JSON: {"is_order_related": true|false}"""

CLASSIFIER_PROMPT = """You classify retailer emails about online orders.
Choose exactly one type:
""" + "\n".join(f"- {t.value}" for t in ClassificationType) + """

Guidance:
- ORDER_MODIFICATION: the retailer changed items, totals or the address of an existing order
- SHIPMENT_UPDATE: tracking progress for a shipment already sent
- DELIVERY_ISSUE: failed attempt, damaged or missing package, delay
- RETURN_LABEL: the email carries or links a return shipping label
- PROMOTIONAL: anything not about a specific order

Return JSON:
{"type": "<TYPE>", "confidence": 0.0-1.0, "secondary_type": "<TYPE>"|null, "reasoning": "<one sentence>"}"""

_PARSER_PREAMBLE = """You extract structured data from a retailer email.
Copy values exactly as they appear. Use null for anything not stated;
never invent order numbers, tracking numbers or amounts. Dates are
YYYY-MM-DD. Amounts are plain numbers without currency symbols.
Set "confidence" (0.0-1.0) to how sure you are the extraction is complete
and correct.
"""


def _choices(enum_cls) -> str:
    return "|".join(f'"{member.value}"' for member in enum_cls)


_ITEM_SHAPE = '{"product_name": str|null, "sku": str|null, "quantity": int}'

ORDER_PARSER_PROMPT = _PARSER_PREAMBLE + """
The email may confirm several orders. Return JSON:
{"confidence": float, "orders": [{
  "external_order_number": str|null, "retailer_name": str|null,
  "order_date": date|null, "subtotal": number|null, "tax_amount": number|null,
  "shipping_cost": number|null, "discount_amount": number|null,
  "total_amount": number|null, "currency": "USD",
  "estimated_delivery_start": date|null, "estimated_delivery_end": date|null,
  "shipping_address": str|null, "payment_method_summary": str|null,
  "external_order_url": str|null, "is_modification": bool,
  "lines": [{"line_number": int|null, "product_name": str, "sku": str|null,
             "quantity": int, "unit_price": number|null, "line_total": number|null,
             "product_url": str|null, "image_url": str|null}]
}]}"""

SHIPMENT_PARSER_PROMPT = _PARSER_PREAMBLE + """
Return JSON:
{"confidence": float, "order_reference": str|null, "carrier": str|null,
 "tracking_number": str|null, "tracking_url": str|null, "ship_date": date|null,
 "estimated_delivery": date|null,
 "status": """ + _choices(ShipmentStatus) + """,
 "status_detail": str|null,
 "items": [""" + _ITEM_SHAPE + """]}"""

DELIVERY_PARSER_PROMPT = _PARSER_PREAMBLE + """
Return JSON:
{"confidence": float, "order_reference": str|null, "tracking_number": str|null,
 "carrier": str|null, "delivery_date": date|null, "delivery_location": str|null,
 "status": """ + _choices(DeliveryStatus) + """,
 "issue_type": """ + _choices(DeliveryIssueType) + """|null,
 "issue_description": str|null, "signed_by": str|null, "photo_url": str|null}"""

RETURN_PARSER_PROMPT = _PARSER_PREAMBLE + """
Return JSON:
{"confidence": float, "order_reference": str|null, "rma_number": str|null,
 "status": """ + _choices(ReturnStatus) + """,
 "return_reason": str|null,
 "return_method": """ + _choices(ReturnMethod) + """|null,
 "return_carrier": str|null, "return_tracking_number": str|null,
 "return_by_date": date|null, "received_by_retailer_date": date|null,
 "rejection_reason": str|null, "estimated_refund_amount": number|null,
 "items": [{"product_name": str|null, "sku": str|null, "quantity": int, "return_reason": str|null}]}"""

REFUND_PARSER_PROMPT = _PARSER_PREAMBLE + """
Return JSON:
{"confidence": float, "order_reference": str|null, "return_rma": str|null,
 "refund_amount": number|null, "currency": "USD", "refund_method": str|null,
 "refund_date": date|null, "transaction_id": str|null, "is_partial": bool}"""

CANCELLATION_PARSER_PROMPT = _PARSER_PREAMBLE + """
Set is_full_cancellation only when the whole order was cancelled.
Return JSON:
{"confidence": float, "order_reference": str|null, "is_full_cancellation": bool,
 "cancellation_reason": str|null, "initiated_by": "customer"|"retailer"|null,
 "refund_amount": number|null, "refund_method": str|null,
 "cancelled_items": [""" + _ITEM_SHAPE + """]}"""

PAYMENT_PARSER_PROMPT = _PARSER_PREAMBLE + """
Return JSON:
{"confidence": float, "order_reference": str|null, "amount": number|null,
 "currency": "USD", "payment_method": str|null, "transaction_id": str|null,
 "payment_date": date|null}"""

SYSTEM_PROMPTS = {
    AICallType.RELEVANCE_FILTER: RELEVANCE_PROMPT,
    AICallType.CLASSIFY: CLASSIFIER_PROMPT,
    AICallType.PARSE_ORDER: ORDER_PARSER_PROMPT,
    AICallType.PARSE_SHIPMENT: SHIPMENT_PARSER_PROMPT,
    AICallType.PARSE_DELIVERY: DELIVERY_PARSER_PROMPT,
    AICallType.PARSE_RETURN: RETURN_PARSER_PROMPT,
    AICallType.PARSE_REFUND: REFUND_PARSER_PROMPT,
    AICallType.PARSE_CANCELLATION: CANCELLATION_PARSER_PROMPT,
    AICallType.PARSE_PAYMENT: PAYMENT_PARSER_PROMPT,
}


def build_relevance_prompt(subject: str, body_preview: str, sender: str) -> str:
    return f"Subject: {subject}\nFrom: {sender}\nPreview: {body_preview}"


def build_message_prompt(
    subject: str,
    body: str,
    sender: str,
    retailer_hint: Optional[str] = None,
) -> str:
    """User prompt shared by the classifier and all parsers."""
    prompt = f"Subject: {subject}\nFrom: {sender}\n\nEmail Body:\n{body}"
    if retailer_hint:
        prompt += f"\n\nKnown retailer context: {retailer_hint}"
    return prompt
