"""Pytest fixtures for pipeline testing.

Provides reusable test fixtures for:
- Database session on an in-memory SQLite database
- Test tenants and a retailer directory entry
- A scripted EmailIntelligencePort standing in for the model service
- Test client with the review service wired to the scripted fake

Usage:
    def test_shipment_creates_stub(db_session, tenant, intelligence, store_message):
        intelligence.script(classification=("SHIPMENT_CONFIRMATION", 0.95), ...)
"""

import sys
import os
from pathlib import Path

# Set environment variables BEFORE any imports to ensure they take effect
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from typing import Generator, List, Optional
from uuid import UUID, uuid4

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

from database import engine, SessionLocal, get_db as database_get_db
from domain.ai.email_intelligence import ClassificationResult, EmailIntelligencePort, ParseResult
from domain.cancellation import check_cancelled
from domain.messages.classification import ClassificationType
from models.base import Base
from models.tenant import Tenant
from models.retailer import Retailer
from models.inbound_message import InboundMessage
from pipeline.orchestrator import MessageProcessingOrchestrator
from pipeline.policy import ProcessingPolicy


class FakeEmailIntelligence(EmailIntelligencePort):
    """Scripted classifier/parser.

    Every call is recorded in `calls` as (method, subject, sender, kwargs).
    Results are configured per method; an Exception instance configured as
    a result is raised instead of returned, once.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.relevant = True
        self.classification = ClassificationResult(ClassificationType.ORDER_CONFIRMATION, 0.95)
        self.parse_results = {}
        self.errors = {}

    def script(self, relevant=True, classification=None, parse=None):
        """Configure the next run.

        Args:
            relevant: Relevance verdict
            classification: (type name, confidence) or ClassificationResult
            parse: Mapping of parser method name → ParseResult
        """
        self.relevant = relevant
        if isinstance(classification, tuple):
            ctype, confidence = classification
            classification = ClassificationResult(ClassificationType(ctype), confidence)
        if classification is not None:
            self.classification = classification
        self.parse_results = dict(parse or {})
        return self

    def fail_once(self, method: str, error: Exception):
        self.errors[method] = error
        return self

    def called(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    def _record(self, method, subject, sender, **kwargs):
        self.calls.append((method, subject, sender, kwargs))
        check_cancelled(kwargs.get("cancellation"))
        error = self.errors.pop(method, None)
        if error is not None:
            raise error

    def is_relevant(self, subject, body_preview, sender, cancellation=None):
        self._record("is_relevant", subject, sender, body_preview=body_preview, cancellation=cancellation)
        return self.relevant

    def classify(self, subject, body, sender, cancellation=None):
        self._record("classify", subject, sender, body=body, cancellation=cancellation)
        return self.classification

    def _parse(self, method, subject, body, sender, retailer_hint, cancellation):
        self._record(method, subject, sender, body=body, retailer_hint=retailer_hint, cancellation=cancellation)
        result = self.parse_results.get(method)
        if result is None:
            return ParseResult.unparseable(f"no scripted result for {method}")
        return result

    def parse_order(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_order", subject, body, sender, retailer_hint, cancellation)

    def parse_shipment(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_shipment", subject, body, sender, retailer_hint, cancellation)

    def parse_delivery(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_delivery", subject, body, sender, retailer_hint, cancellation)

    def parse_return(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_return", subject, body, sender, retailer_hint, cancellation)

    def parse_refund(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_refund", subject, body, sender, retailer_hint, cancellation)

    def parse_cancellation(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_cancellation", subject, body, sender, retailer_hint, cancellation)

    def parse_payment(self, subject, body, sender, retailer_hint=None, cancellation=None):
        return self._parse("parse_payment", subject, body, sender, retailer_hint, cancellation)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    Each test gets a clean database state.
    """
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def tenant(db_session: Session) -> Tenant:
    """Create a test tenant."""
    tenant = Tenant(name="Test Household")
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture(scope="function")
def other_tenant(db_session: Session) -> Tenant:
    """Create a second tenant for isolation tests."""
    tenant = Tenant(name="Other Household")
    db_session.add(tenant)
    db_session.commit()
    db_session.refresh(tenant)
    return tenant


@pytest.fixture(scope="function")
def retailer(db_session: Session) -> Retailer:
    """Create a retailer registered for retailer.example."""
    retailer = Retailer(
        name="Example Retail",
        normalized_name="example retail",
        sender_domains=["retailer.example"],
        sender_patterns=[],
    )
    db_session.add(retailer)
    db_session.commit()
    db_session.refresh(retailer)
    return retailer


@pytest.fixture(scope="function")
def intelligence() -> FakeEmailIntelligence:
    return FakeEmailIntelligence()


@pytest.fixture(scope="function")
def policy() -> ProcessingPolicy:
    return ProcessingPolicy()


@pytest.fixture(scope="function")
def orchestrator(db_session, tenant, intelligence, policy) -> MessageProcessingOrchestrator:
    return MessageProcessingOrchestrator(db_session, tenant.id, intelligence, policy=policy)


@pytest.fixture(scope="function")
def store_message(db_session: Session, tenant: Tenant):
    """Factory storing an InboundMessage for the test tenant."""

    def _store(
        subject: str = "Your order ORD-1 is confirmed",
        body: Optional[str] = "Thanks for your order ORD-1.",
        sender: str = "Example Retail <noreply@retailer.example>",
        tenant_id: Optional[UUID] = None,
        path: tuple = (),
        **fields,
    ) -> InboundMessage:
        """Store a message, then walk it through `path` (ProcessingStatus values)."""
        message = InboundMessage(
            tenant_id=tenant_id or tenant.id,
            transport_message_id=f"<{uuid4()}@mail.example>",
            sender_address=sender,
            subject=subject,
            body_text=body,
            body_preview=(body or "")[:500] or None,
            **fields,
        )
        for status in path:
            message.status = status
        db_session.add(message)
        db_session.commit()
        db_session.refresh(message)
        return message

    return _store


@pytest.fixture(scope="function")
def client(db_session: Session, intelligence: FakeEmailIntelligence):
    """Create a test client whose review endpoints use the scripted model service.

    The tenant is passed by the caller in the X-Tenant-ID header.
    """
    from main import app
    from review.router import get_review_service
    from review.service import ReviewService
    from tenancy.dependencies import get_tenant_id

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    def override_get_review_service(tenant_id: UUID = Depends(get_tenant_id)):
        orchestrator = MessageProcessingOrchestrator(db_session, tenant_id, intelligence)
        yield ReviewService(db_session, tenant_id, orchestrator)

    app.dependency_overrides[database_get_db] = override_get_db
    app.dependency_overrides[get_review_service] = override_get_review_service

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
