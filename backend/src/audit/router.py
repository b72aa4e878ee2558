"""Audit log query endpoints.

All endpoints in this router are read-only. The pipeline only writes the
audit log; operators read it here, filtered by:
- Inbound message
- Step (CLASSIFY, MERGE, etc.)
- Status (SUCCESS, ERROR, etc.)
- Pagination (page, per_page)
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from models.audit_log import AuditLog
from tenancy.dependencies import get_tenant_id
from .schemas import AuditLogListResponse


router = APIRouter(prefix="/audit", tags=["Audit Logs"])


@router.get(
    "",
    response_model=AuditLogListResponse,
    summary="Query pipeline audit log",
)
def query_audit_logs(
    db: Session = Depends(get_db),
    tenant_id: UUID = Depends(get_tenant_id),
    inbound_message_id: Optional[UUID] = Query(None, description="Filter by inbound message"),
    step: Optional[str] = Query(None, description="Filter by step (e.g., CLASSIFY)"),
    status: Optional[str] = Query(None, description="Filter by status (e.g., ERROR)"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(50, ge=1, le=100, description="Entries per page (max 100)"),
) -> AuditLogListResponse:
    """Query audit log entries of the caller's tenant, oldest first.

    Example:
        GET /audit?inbound_message_id=...&status=ERROR
    """
    query = db.query(AuditLog).filter(AuditLog.tenant_id == tenant_id)

    if inbound_message_id:
        query = query.filter(AuditLog.inbound_message_id == inbound_message_id)
    if step:
        query = query.filter(AuditLog.step == step.upper())
    if status:
        query = query.filter(AuditLog.status == status.upper())

    total = query.count()

    offset = (page - 1) * per_page
    entries = query.order_by(AuditLog.created_at.asc()).offset(offset).limit(per_page).all()

    return AuditLogListResponse(
        entries=entries,
        total=total,
        page=page,
        per_page=per_page
    )
