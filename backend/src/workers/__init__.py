"""Background workers module for async task processing.

This module provides base utilities and the Celery tasks that consume the
inbound message queue.

All background tasks MUST:
1. Accept tenant_id as explicit parameter (UUID string)
2. Validate tenant_id exists before processing
3. Use a tenant-scoped session for database access
4. Filter all queries by tenant_id
"""

from .base import (
    validate_tenant_id,
    get_scoped_session,
    BaseTask,
)

__all__ = [
    "validate_tenant_id",
    "get_scoped_session",
    "BaseTask",
]
