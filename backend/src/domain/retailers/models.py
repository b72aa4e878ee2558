"""Retailer matching domain models."""

from dataclasses import dataclass, field
from typing import Optional, Tuple
from uuid import UUID


class MatchMethod:
    """How a retailer was matched; exact-domain style matches win ties."""
    EXACT_DOMAIN = "exact_domain"
    SUBDOMAIN = "subdomain"
    PATTERN = "pattern"


# Confidence per match method
METHOD_CONFIDENCE = {
    MatchMethod.EXACT_DOMAIN: 1.0,
    MatchMethod.SUBDOMAIN: 0.9,
    MatchMethod.PATTERN: 0.75,
}

# Tie-break priority (lower wins)
METHOD_PRIORITY = {
    MatchMethod.EXACT_DOMAIN: 0,
    MatchMethod.SUBDOMAIN: 1,
    MatchMethod.PATTERN: 2,
}


@dataclass(frozen=True)
class RetailerProfile:
    """Read-only view of a retailer directory entry.

    Attributes:
        retailer_id: Retailer UUID
        name: Display name
        normalized_name: Dedup key (lower-case, punctuation removed)
        sender_domains: Registered sender domains, lower-case
        sender_patterns: Regular expressions evaluated against the full address
    """
    retailer_id: UUID
    name: str
    normalized_name: str
    sender_domains: Tuple[str, ...] = field(default_factory=tuple)
    sender_patterns: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class RetailerMatch:
    """Best-effort retailer resolution for a sender.

    Attributes:
        retailer_id: Matched retailer UUID
        retailer_name: Matched retailer display name
        method: MatchMethod value
        confidence: Match confidence (0.0-1.0)
        matched_on: Domain or address that produced the match
    """
    retailer_id: UUID
    retailer_name: str
    method: str
    confidence: float
    matched_on: str
    pattern: Optional[str] = None
