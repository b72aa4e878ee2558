"""Pydantic schemas for the operator review endpoints"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ReviewMessageResponse(BaseModel):
    """Inbound message as shown in the review queue"""
    id: UUID
    transport_message_id: str
    sender_address: str
    original_sender_address: Optional[str] = None
    subject: Optional[str] = None
    body_preview: Optional[str] = None
    received_at: datetime
    status: str
    classification_type: Optional[str] = None
    classification_confidence: Optional[float] = None
    retailer_id: Optional[UUID] = None
    retry_count: int = 0
    review_reason: Optional[str] = None
    error_detail: Optional[str] = None

    model_config = {"from_attributes": True}


class ReviewQueueResponse(BaseModel):
    """Paginated review queue"""
    items: List[ReviewMessageResponse]
    total: int = Field(..., description="Messages waiting for review")
    limit: int
    offset: int


class ApproveRequest(BaseModel):
    """Operator approval, optionally correcting the classification"""
    classification_type: Optional[str] = Field(
        None,
        description="Corrected classification type (e.g. SHIPMENT_CONFIRMATION); stored type if omitted",
    )

    model_config = {
        "json_schema_extra": {
            "example": {"classification_type": "SHIPMENT_CONFIRMATION"}
        }
    }


class DismissRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Why the message was dismissed")


class ProcessingOutcomeResponse(BaseModel):
    """Result of an approval or reprocess run"""
    message_id: UUID
    outcome: str = Field(..., description="parsed | noise | manual_review | skipped")
    status: str
    classification_type: Optional[str] = None
    confidence: Optional[float] = None
    retailer_id: Optional[UUID] = None
    reason: Optional[str] = None
    merge: Optional[Dict[str, Any]] = None
    attempts: int = 0


class OrderStatusResponse(BaseModel):
    """Order status after an operator action"""
    id: UUID
    external_order_number: str
    status: str
    is_closed: bool
    is_inferred: bool

    model_config = {"from_attributes": True}
