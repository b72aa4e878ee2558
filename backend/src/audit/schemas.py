"""Pydantic schemas for audit log endpoints.

Audit logs are read-only (no create/update/delete operations).
"""

from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional


class AuditLogResponse(BaseModel):
    """Response schema for audit log entries"""
    id: UUID = Field(..., description="Audit log entry unique identifier")
    tenant_id: UUID = Field(..., description="Tenant ID")
    inbound_message_id: Optional[UUID] = Field(None, description="Message the step belongs to")
    step: str = Field(..., description="Pipeline step (CLASSIFY, MERGE, etc.)")
    status: str = Field(..., description="INFO, SUCCESS, WARNING or ERROR")
    message: str = Field(..., description="Step outcome")
    details: Optional[dict] = Field(None, validation_alias="details_json", description="Additional context as JSON")
    created_at: datetime = Field(..., description="Event timestamp")

    model_config = {
        "from_attributes": True,
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "id": "550e8400-e29b-41d4-a716-446655440000",
                "tenant_id": "7c9e6679-7425-40de-944b-e07fc1f90ae7",
                "inbound_message_id": "123e4567-e89b-12d3-a456-426614174000",
                "step": "CLASSIFY",
                "status": "SUCCESS",
                "message": "Classified as SHIPMENT_CONFIRMATION",
                "details": {"confidence": 0.92},
                "created_at": "2025-01-04T12:00:00Z"
            }
        },
    }


class AuditLogListResponse(BaseModel):
    """Response schema for audit log queries, with pagination metadata"""
    entries: list[AuditLogResponse] = Field(..., description="List of audit log entries")
    total: int = Field(..., description="Total number of entries matching filters")
    page: int = Field(..., description="Current page number")
    per_page: int = Field(..., description="Entries per page")
