"""Base utilities for multi-tenant background tasks.

This module provides utilities for ensuring tenant isolation in Celery tasks:
- tenant_id validation (verify tenant exists)
- Scoped session creation (automatic tenant_id context)
- Base task class with tenant validation

Task Signature Pattern:
======================

Every multi-tenant Celery task follows this signature pattern:

@shared_task(base=BaseTask, bind=True)
def my_task(self, resource_id: str, tenant_id: str) -> Dict[str, Any]:
    tenant_uuid = validate_tenant_id(tenant_id)
    session = get_scoped_session(tenant_uuid)
    try:
        ...
        session.commit()
        return {"status": "success"}
    finally:
        session.close()

CRITICAL REQUIREMENTS:
======================

1. ALWAYS pass tenant_id explicitly when enqueuing (task.delay(..., tenant_id=str(tenant_uuid)))
2. NEVER derive tenant_id from global state or "current" context in workers
3. ALWAYS handle tenant_id as UUID string in task signatures (JSON serializable)
"""

from uuid import UUID

from celery import Task
from sqlalchemy.orm import Session

from database import SessionLocal, tenant_scoped_session
from models.tenant import Tenant


def validate_tenant_id(tenant_id: str) -> UUID:
    """Validate that tenant_id is a valid UUID and references an existing tenant.

    Args:
        tenant_id: Tenant UUID as string (from task parameters)

    Returns:
        UUID: Validated tenant UUID

    Raises:
        ValueError: If tenant_id is invalid UUID format or tenant doesn't exist
    """
    try:
        tenant_uuid = UUID(str(tenant_id))
    except (ValueError, AttributeError, TypeError) as e:
        raise ValueError(f"Invalid tenant_id format '{tenant_id}': {str(e)}")

    session = SessionLocal()
    try:
        tenant = session.get(Tenant, tenant_uuid)
        if not tenant:
            raise ValueError(f"Tenant {tenant_id} does not exist")
    finally:
        session.close()

    return tenant_uuid


def get_scoped_session(tenant_id: UUID) -> Session:
    """Create a database session scoped to a specific tenant for worker tasks.

    The session has tenant_id attached to session.info; new rows inherit it
    and rows of other tenants are rejected at flush.
    """
    return tenant_scoped_session(tenant_id)


class BaseTask(Task):
    """Base Celery task class with tenant validation.

    Tasks using this base class must pass tenant_id as a keyword argument.
    """

    def __call__(self, *args, **kwargs):
        """Validate tenant_id before running task.

        Raises:
            ValueError: If tenant_id parameter is missing or invalid
        """
        tenant_id = kwargs.get("tenant_id")

        if not tenant_id:
            raise ValueError(
                "tenant_id parameter is required for all multi-tenant tasks. "
                "Ensure you pass tenant_id=str(tenant_uuid) when enqueuing the task."
            )

        validate_tenant_id(tenant_id)

        return super().__call__(*args, **kwargs)
