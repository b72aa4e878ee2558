"""Message processing worker - Celery consumer of the inbound message queue.

Queue payload is {tenant_id, inbound_message_id}; the message itself was
stored before enqueueing. Each task runs the whole pipeline for one
message inside a tenant-scoped session with a processing deadline.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from celery import shared_task
from sqlalchemy.orm import Session

from audit.service import AuditStatus, AuditStep, log_processing_step
from config import get_settings
from domain.cancellation import CancellationToken, ProcessingCancelled
from domain.messages.processing_status import ProcessingStatus
from infrastructure.repositories.inbound_message_repository import InboundMessageRepository
from observability.correlation import bind_message_context
from pipeline.errors import MessageNotFoundError, StructuralMergeError
from pipeline.factory import build_orchestrator
from pipeline.policy import ProcessingPolicy
from .base import BaseTask, validate_tenant_id, get_scoped_session

logger = logging.getLogger(__name__)

CANCELLED_RETRY_COUNTDOWN_SECONDS = 30


def _attempts_so_far(session: Session, tenant_id: UUID, message_id: UUID) -> int:
    session.expire_all()
    message = InboundMessageRepository(session, tenant_id).get(message_id)
    return message.retry_count if message else 0


@shared_task(name="messages.process_inbound_message", base=BaseTask, bind=True, max_retries=None)
def process_inbound_message_task(
    self,
    inbound_message_id: str,
    tenant_id: str,
) -> Dict[str, Any]:
    """Run the processing pipeline for one stored inbound message.

    Args:
        inbound_message_id: UUID string of the inbound message
        tenant_id: UUID string of the tenant (REQUIRED for tenant isolation)

    Returns:
        Dict with processing result:
        - status: 'success' or 'not_found'
        - outcome: parsed | noise | manual_review | skipped (on success)

    Raises:
        Exception: The original failure once the message reaches
            MAX_PROCESSING_ATTEMPTS, so the transport dead-letters the task

    Retry policy:
        Cancellation (deadline) retries without consuming an attempt.
        Every other failure, structural merge errors included, is retried
        with exponential backoff while the message's retry count stays
        below MAX_PROCESSING_ATTEMPTS.
    """
    tenant_uuid = validate_tenant_id(tenant_id)
    message_uuid = UUID(inbound_message_id)
    settings = get_settings()
    policy = ProcessingPolicy.from_settings(settings)

    session = get_scoped_session(tenant_uuid)
    orchestrator = build_orchestrator(session, tenant_uuid, settings=settings)
    token = CancellationToken.with_deadline(settings.PROCESSING_DEADLINE_SECONDS)

    with bind_message_context(tenant_uuid, message_uuid):
        try:
            outcome = orchestrator.process(message_uuid, cancellation=token)
            return {"status": "success", **outcome.to_dict()}

        except MessageNotFoundError as e:
            logger.error(str(e))
            return {"status": "not_found", "message_id": inbound_message_id, "error": str(e)}

        except ProcessingCancelled as e:
            logger.warning(f"Message {inbound_message_id} cancelled ({e}); requeueing")
            raise self.retry(exc=e, countdown=CANCELLED_RETRY_COUNTDOWN_SECONDS)

        except Exception as e:
            attempts = _attempts_so_far(session, tenant_uuid, message_uuid)
            kind = "Structural merge failure" if isinstance(e, StructuralMergeError) else "Failure"
            if not policy.can_retry(attempts):
                logger.error(
                    f"{kind} for message {inbound_message_id} after {attempts} attempts; "
                    f"left FAILED for operator attention: {e}"
                )
                raise

            # Retry with exponential backoff
            retry_countdown = 2 ** self.request.retries * 60  # 1min, 2min, 4min
            logger.warning(
                f"{kind} for message {inbound_message_id} (attempt {attempts}), "
                f"retrying in {retry_countdown}s: {e}"
            )
            raise self.retry(exc=e, countdown=retry_countdown)

        finally:
            session.close()


@shared_task(name="messages.reprocess_failed_messages", bind=True)
def reprocess_failed_messages_task(self, tenant_id: str, limit: int = 100) -> Dict[str, Any]:
    """Reset retryable FAILED messages to PENDING and re-enqueue them.

    Messages at the attempt ceiling stay FAILED.

    Args:
        tenant_id: UUID string of tenant
        limit: Maximum number of messages to requeue (default 100)

    Returns:
        Dict with number of messages requeued and their ids
    """
    tenant_uuid = validate_tenant_id(tenant_id)
    policy = ProcessingPolicy.from_settings()
    session = get_scoped_session(tenant_uuid)

    try:
        repo = InboundMessageRepository(session, tenant_uuid)
        messages = repo.list_retryable_failed(policy.max_attempts, limit=limit)

        message_ids = []
        for message in messages:
            message.status = ProcessingStatus.PENDING
            log_processing_step(
                session, tenant_uuid, AuditStep.STATUS_TRANSITION, AuditStatus.INFO,
                f"FAILED -> PENDING: requeued for retry (attempt {message.retry_count + 1})",
                inbound_message_id=message.id,
            )
            message_ids.append(str(message.id))
        session.commit()
    finally:
        session.close()

    for message_id in message_ids:
        enqueue_inbound_message(tenant_uuid, UUID(message_id))

    logger.info(f"Requeued {len(message_ids)} failed message(s) for tenant {tenant_id}")
    return {"requeued": len(message_ids), "message_ids": message_ids}


def enqueue_inbound_message(tenant_id: UUID, message_id: UUID, countdown: Optional[int] = None) -> str:
    """Put {tenant_id, inbound_message_id} on the inbound queue.

    Returns:
        Celery task id
    """
    result = process_inbound_message_task.apply_async(
        kwargs={"inbound_message_id": str(message_id), "tenant_id": str(tenant_id)},
        queue=get_settings().INBOUND_QUEUE_NAME,
        countdown=countdown,
    )
    return result.id


def submit_inbound_message(
    db: Session,
    tenant_id: UUID,
    transport_message_id: str,
    sender_address: str,
    subject: str,
    body_text: Optional[str],
    received_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Store a message once per transport id and enqueue it when new.

    Redelivery of the same transport message returns the stored message
    without enqueueing a second task.
    """
    repo = InboundMessageRepository(db, tenant_id)
    message, created = repo.create_if_absent(
        transport_message_id=transport_message_id,
        sender_address=sender_address,
        subject=subject,
        body_text=body_text,
        received_at=received_at,
        preview_length=get_settings().BODY_PREVIEW_LENGTH,
    )
    db.commit()

    task_id = enqueue_inbound_message(tenant_id, message.id) if created else None
    return {"message_id": str(message.id), "created": created, "task_id": task_id}
