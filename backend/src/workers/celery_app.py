"""Celery application for the inbound message queue.

Delivery is at-least-once: tasks are acknowledged after they finish and
each worker process holds one message at a time. The pipeline is
idempotent per message, so redelivery after a crash is safe. Tasks that
still fail at the attempt ceiling are rejected rather than acknowledged.
"""

from celery import Celery

from config import settings

celery_app = Celery(
    "orderpulse",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["workers.message_processing_worker"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Failed tasks are rejected without requeue, so the broker dead-letters them
    task_acks_on_failure_or_timeout=False,
    worker_prefetch_multiplier=1,
    task_default_queue=settings.INBOUND_QUEUE_NAME,
    task_routes={
        "messages.*": {"queue": settings.INBOUND_QUEUE_NAME},
    },
)
