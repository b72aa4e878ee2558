"""Operator review endpoints.

Work the manual-review queue and close orders. The tenant comes from the
X-Tenant-ID header; every action runs in a session scoped to that tenant.
"""

from typing import Iterator, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm.exc import StaleDataError

from database import tenant_scoped_session
from domain.ai.email_intelligence import EmailIntelligencePort
from domain.messages.processing_status import StateTransitionError
from pipeline.errors import MessageNotFoundError, PipelineError
from pipeline.factory import build_orchestrator
from tenancy.dependencies import get_tenant_id
from .schemas import (
    ApproveRequest,
    DismissRequest,
    OrderStatusResponse,
    ProcessingOutcomeResponse,
    ReviewMessageResponse,
    ReviewQueueResponse,
)
from .service import OrderNotFoundError, ReviewService


router = APIRouter(prefix="/review", tags=["Review"])


def get_email_intelligence() -> EmailIntelligencePort:
    """Classifier/parser capability for approve and reprocess runs."""
    from infrastructure.ai.factory import build_email_intelligence
    return build_email_intelligence()


def get_review_service(
    tenant_id: UUID = Depends(get_tenant_id),
    intelligence: EmailIntelligencePort = Depends(get_email_intelligence),
) -> Iterator[ReviewService]:
    db = tenant_scoped_session(tenant_id)
    try:
        yield ReviewService(db, tenant_id, build_orchestrator(db, tenant_id, intelligence=intelligence))
    finally:
        db.close()


def _outcome_response(outcome) -> ProcessingOutcomeResponse:
    return ProcessingOutcomeResponse(
        message_id=outcome.message_id,
        outcome=outcome.outcome,
        status=outcome.status,
        classification_type=outcome.classification_type,
        confidence=outcome.confidence,
        retailer_id=outcome.retailer_id,
        reason=outcome.reason,
        merge=outcome.merge.to_dict() if outcome.merge else None,
        attempts=outcome.attempts,
    )


@router.get("/messages", response_model=ReviewQueueResponse, summary="List the manual review queue")
def list_queue(
    service: ReviewService = Depends(get_review_service),
    limit: int = Query(50, ge=1, le=100, description="Page size (default 50, max 100)"),
    offset: int = Query(0, ge=0),
) -> ReviewQueueResponse:
    items, total = service.list_queue(limit=limit, offset=offset)
    return ReviewQueueResponse(
        items=[ReviewMessageResponse.model_validate(m) for m in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/messages/{message_id}", response_model=ReviewMessageResponse)
def get_message(message_id: UUID, service: ReviewService = Depends(get_review_service)):
    try:
        return ReviewMessageResponse.model_validate(service.get_message(message_id))
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post(
    "/messages/{message_id}/approve",
    response_model=ProcessingOutcomeResponse,
    summary="Approve a message in manual review",
)
def approve(
    message_id: UUID,
    body: Optional[ApproveRequest] = None,
    service: ReviewService = Depends(get_review_service),
) -> ProcessingOutcomeResponse:
    """Parse and merge a MANUAL_REVIEW message regardless of confidence.

    Raises:
        404: Message not found
        409: Message not in MANUAL_REVIEW
        422: Unknown or promotional classification type
        502: Processing failed (message marked with error detail)
    """
    try:
        outcome = service.approve(message_id, body.classification_type if body else None)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StateTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except PipelineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return _outcome_response(outcome)


@router.post("/messages/{message_id}/dismiss", response_model=ReviewMessageResponse)
def dismiss(
    message_id: UUID,
    body: Optional[DismissRequest] = None,
    service: ReviewService = Depends(get_review_service),
):
    """MANUAL_REVIEW → DISMISSED"""
    try:
        message = service.dismiss(message_id, body.reason if body else None)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StateTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ReviewMessageResponse.model_validate(message)


@router.post("/messages/{message_id}/reprocess", response_model=ProcessingOutcomeResponse)
def reprocess(message_id: UUID, service: ReviewService = Depends(get_review_service)):
    """Reset the message to PENDING and run the whole pipeline again."""
    try:
        outcome = service.reprocess(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except PipelineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return _outcome_response(outcome)


@router.post("/orders/{order_id}/close", response_model=OrderStatusResponse)
def close_order(order_id: UUID, service: ReviewService = Depends(get_review_service)):
    """Operator close; the order shows CLOSED once all lines are delivered."""
    try:
        order = service.close_order(order_id)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except StaleDataError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Order was updated concurrently; retry"
        )
    return OrderStatusResponse.model_validate(order)
