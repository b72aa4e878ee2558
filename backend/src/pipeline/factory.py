"""Wiring for the orchestrator from application settings"""

from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from config import Settings, get_settings
from domain.ai.email_intelligence import EmailIntelligencePort
from domain.reconciliation.line_matching import get_line_matcher
from domain.retailers.matcher import RetailerMatcher
from infrastructure.repositories.retailer_directory import SqlRetailerDirectory
from .orchestrator import MessageProcessingOrchestrator
from .policy import ProcessingPolicy


def build_orchestrator(
    db: Session,
    tenant_id: UUID,
    intelligence: Optional[EmailIntelligencePort] = None,
    settings: Optional[Settings] = None,
) -> MessageProcessingOrchestrator:
    """Build an orchestrator for one tenant.

    Args:
        db: Tenant-scoped session
        tenant_id: Tenant UUID
        intelligence: Classifier/parser capability (LLM-backed adapter if None)
        settings: Settings override (tests)
    """
    settings = settings or get_settings()
    if intelligence is None:
        from infrastructure.ai.factory import build_email_intelligence
        intelligence = build_email_intelligence(settings)

    return MessageProcessingOrchestrator(
        db,
        tenant_id,
        intelligence=intelligence,
        retailer_matcher=RetailerMatcher(SqlRetailerDirectory(db)),
        policy=ProcessingPolicy.from_settings(settings),
        line_matcher=get_line_matcher(settings.LINE_MATCHING_STRATEGY),
    )
