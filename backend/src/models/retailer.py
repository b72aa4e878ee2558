"""Retailer SQLAlchemy model - global retailer directory"""

from uuid import uuid4

from sqlalchemy import Column, Text, Integer, Boolean, DateTime, Uuid, Index

from .base import Base, PortableJSONB, utcnow


class Retailer(Base):
    """Known retailer, matched by sender domain or sender pattern rules.

    The directory is shared by all tenants and is read-only for the
    pipeline. normalized_name is the dedup key.
    """
    __tablename__ = "retailer"
    __table_args__ = (
        Index("ux_retailer_normalized_name", "normalized_name", unique=True),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(Text, nullable=False)
    normalized_name = Column(Text, nullable=False)

    # JSON list of domains, e.g. ["retailer.example", "mail.retailer.example"]
    sender_domains = Column(PortableJSONB, nullable=False, default=list)
    # JSON list of regular expressions matched against the full sender address
    sender_patterns = Column(PortableJSONB, nullable=False, default=list)

    website_url = Column(Text, nullable=True)
    return_policy_days = Column(Integer, nullable=True)
    return_policy_notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Retailer(id={self.id}, name={self.name})>"
