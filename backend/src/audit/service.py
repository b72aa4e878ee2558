"""Audit logging service for pipeline steps.

This service provides the single write path for audit log entries. Each
processing step of an inbound message records its outcome here:

- NORMALIZE, MATCH_RETAILER
- RELEVANCE, CLASSIFY
- PARSE, MERGE, RECONCILE
- STATUS_TRANSITION, REVIEW
"""

from enum import Enum
from typing import Optional, Dict, Any
from uuid import UUID

from sqlalchemy.orm import Session

from models.audit_log import AuditLog


class AuditStatus(str, Enum):
    """Outcome recorded for a pipeline step"""
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class AuditStep(str, Enum):
    NORMALIZE = "NORMALIZE"
    MATCH_RETAILER = "MATCH_RETAILER"
    RELEVANCE = "RELEVANCE"
    CLASSIFY = "CLASSIFY"
    PARSE = "PARSE"
    MERGE = "MERGE"
    RECONCILE = "RECONCILE"
    STATUS_TRANSITION = "STATUS_TRANSITION"
    REVIEW = "REVIEW"


def log_processing_step(
    db: Session,
    tenant_id: UUID,
    step,
    status,
    message: str,
    inbound_message_id: Optional[UUID] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Create an audit log entry for one pipeline step.

    The entry joins the caller's transaction, so it becomes visible only
    when the step's other effects are committed.

    Args:
        db: Database session
        tenant_id: Tenant ID
        step: AuditStep or step name
        status: AuditStatus or status name
        message: Human readable outcome
        inbound_message_id: Message being processed (None for operator actions on orders)
        details: Additional context as JSON (confidence, entity ids touched, ...)

    Returns:
        AuditLog: The created audit log entry

    Example:
        log_processing_step(
            db=db,
            tenant_id=message.tenant_id,
            step=AuditStep.CLASSIFY,
            status=AuditStatus.SUCCESS,
            message="Classified as SHIPMENT_CONFIRMATION",
            inbound_message_id=message.id,
            details={"confidence": 0.92},
        )
    """
    audit_entry = AuditLog(
        tenant_id=tenant_id,
        inbound_message_id=inbound_message_id,
        step=step.value if isinstance(step, Enum) else step,
        status=status.value if isinstance(status, Enum) else status,
        message=message,
        details_json=details,
    )

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry
