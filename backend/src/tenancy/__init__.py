"""Tenancy module - explicit tenant context for API requests and workers.

The tenant id is passed explicitly through every call. Database sessions
opened for a tenant reject writes that carry another tenant's id (see
database.tenant_scoped_session).
"""

from .dependencies import get_tenant_id

__all__ = ["get_tenant_id"]
