"""FastAPI dependencies for tenant context.

Authentication is handled in front of this service; requests arrive with
the tenant already resolved in the X-Tenant-ID header.
"""

from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from database import get_db
from models.tenant import Tenant


def get_tenant_id(
    x_tenant_id: str = Header(..., alias="X-Tenant-ID"),
    db: Session = Depends(get_db),
) -> UUID:
    """Resolve the tenant for the current request.

    Every tenant-scoped endpoint uses this dependency and filters its
    queries by the returned id.

    Args:
        x_tenant_id: Raw X-Tenant-ID header value
        db: Database session

    Returns:
        UUID: Tenant ID for the current request context

    Raises:
        HTTPException 400: If the header is not a valid UUID
        HTTPException 404: If the tenant does not exist
    """
    try:
        tenant_id = UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID must be a UUID"
        )

    if db.get(Tenant, tenant_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )

    return tenant_id
