"""Database session factory and configuration.

Provides database connectivity and session management for the pipeline.
Includes the tenant-scoped session factory used by workers, which stamps
new rows with the session's tenant and rejects writes that cross tenants.
"""

from contextlib import contextmanager
from typing import Generator
from uuid import UUID

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from config import get_settings

DATABASE_URL = get_settings().DATABASE_URL

_engine_kwargs = {
    "pool_pre_ping": True,  # Verify connections before using
    "echo": False,  # Set to True for SQL query logging
}

if DATABASE_URL.startswith("sqlite"):
    _engine_kwargs["connect_args"] = {"check_same_thread": False}
    # In-memory databases must share one connection across sessions
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        _engine_kwargs["poolclass"] = StaticPool
else:
    _engine_kwargs["pool_size"] = 5
    _engine_kwargs["max_overflow"] = 10

engine = create_engine(DATABASE_URL, **_engine_kwargs)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


class TenantScopeError(RuntimeError):
    """Raised when a session scoped to one tenant writes another tenant's row."""


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.query(Tenant).all()

    Automatically commits on success, rolls back on exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI endpoints.

    Usage:
        @app.get("/review/messages")
        def list_queue(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def tenant_scoped_session(tenant_id: UUID) -> Session:
    """Create a database session scoped to a specific tenant.

    The tenant_id is stored in session.info["tenant_id"]. The before_flush
    hooks below use it to fill in missing tenant ids on new rows and to
    refuse flushing rows that belong to a different tenant.

    Args:
        tenant_id: Tenant UUID to scope this session to

    Returns:
        Session: SQLAlchemy session with tenant context
    """
    session = SessionLocal()
    session.info["tenant_id"] = tenant_id
    return session


@event.listens_for(Session, "before_flush")
def enforce_tenant_scope(session, flush_context, instances):
    """Populate tenant_id on new rows and reject cross-tenant writes.

    Only applies to models with a tenant_id attribute and only when the
    session carries a tenant in session.info.

    Raises:
        TenantScopeError: If a new or modified row belongs to another tenant
    """
    tenant_id = session.info.get("tenant_id")
    if not tenant_id:
        return

    for instance in session.new:
        if hasattr(instance, "tenant_id") and instance.tenant_id is None:
            instance.tenant_id = tenant_id

    for instance in list(session.new) + list(session.dirty):
        owner = getattr(instance, "tenant_id", None)
        if owner is not None and owner != tenant_id:
            raise TenantScopeError(
                f"{type(instance).__name__} belongs to tenant {owner}, "
                f"session is scoped to {tenant_id}"
            )
