"""Tenant SQLAlchemy model"""

from uuid import uuid4

from sqlalchemy import Column, Text, DateTime, Uuid

from .base import Base, utcnow


class Tenant(Base):
    """Tenant owning messages and the order graph built from them.

    Every tenant-scoped table carries a tenant_id referencing this table;
    rows never reference rows of another tenant.
    """
    __tablename__ = "tenant"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self):
        return f"<Tenant(id={self.id}, name={self.name})>"
