"""Retailer Matcher

Resolves a sender address to a known retailer. Matching is done on the
original sender when the message was forwarded, otherwise on the
transport sender:

1. Exact match of the sender domain against each retailer's domains
   (a subdomain of a registered domain also counts, at lower confidence)
2. Only when no domain matched, each retailer's pattern rules are
   evaluated against the full address
3. Highest confidence wins; ties prefer the domain match, then the
   retailer name for a stable result

An unresolved sender is a normal outcome and returns None.
"""

import logging
import re
import unicodedata
from typing import Dict, List, Optional

from domain.normalization.addresses import extract_email_address, extract_domain
from .models import (
    MatchMethod,
    METHOD_CONFIDENCE,
    METHOD_PRIORITY,
    RetailerMatch,
    RetailerProfile,
)
from .ports import RetailerDirectoryPort

logger = logging.getLogger(__name__)


def normalize_retailer_name(name: Optional[str]) -> str:
    """Build the dedup key for a retailer name.

    Example:
        >>> normalize_retailer_name("  Best-Buy, Inc. ")
        'best buy inc'
    """
    if not name:
        return ""
    text = unicodedata.normalize("NFKD", name)
    text = "".join(c for c in text if not unicodedata.combining(c)).lower()
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


class RetailerMatcher:
    """Matches sender addresses against the retailer directory."""

    def __init__(self, directory: RetailerDirectoryPort):
        """Initialize matcher.

        Args:
            directory: Read-only retailer directory
        """
        self.directory = directory
        self._compiled: Dict[str, Optional[re.Pattern]] = {}

    def match(
        self,
        sender_address: Optional[str],
        original_sender_address: Optional[str] = None,
    ) -> Optional[RetailerMatch]:
        """Resolve the effective sender to a retailer.

        Args:
            sender_address: Transport sender address
            original_sender_address: Sender recovered from a forwarding block

        Returns:
            RetailerMatch, or None when no retailer matches
        """
        address = extract_email_address(original_sender_address) or extract_email_address(sender_address)
        if not address:
            return None

        domain = extract_domain(address)
        profiles = self.directory.list_profiles()

        candidates = self._match_domain(domain, profiles) if domain else []
        if not candidates:
            candidates = self._match_patterns(address, profiles)

        if not candidates:
            logger.debug(f"No retailer match for sender domain {domain}")
            return None

        best = min(
            candidates,
            key=lambda m: (-m.confidence, METHOD_PRIORITY[m.method], m.retailer_name.lower()),
        )
        logger.debug(
            f"Matched sender {address} to retailer {best.retailer_name} "
            f"(method={best.method}, confidence={best.confidence})"
        )
        return best

    def _match_domain(self, domain: str, profiles: List[RetailerProfile]) -> List[RetailerMatch]:
        matches = []
        for profile in profiles:
            for registered in profile.sender_domains:
                registered = registered.strip().lower().lstrip("@")
                if not registered:
                    continue
                if domain == registered:
                    method = MatchMethod.EXACT_DOMAIN
                elif domain.endswith("." + registered):
                    method = MatchMethod.SUBDOMAIN
                else:
                    continue
                matches.append(RetailerMatch(
                    retailer_id=profile.retailer_id,
                    retailer_name=profile.name,
                    method=method,
                    confidence=METHOD_CONFIDENCE[method],
                    matched_on=registered,
                ))
        return matches

    def _match_patterns(self, address: str, profiles: List[RetailerProfile]) -> List[RetailerMatch]:
        matches = []
        for profile in profiles:
            for pattern in profile.sender_patterns:
                compiled = self._compile(pattern)
                if compiled is not None and compiled.search(address):
                    matches.append(RetailerMatch(
                        retailer_id=profile.retailer_id,
                        retailer_name=profile.name,
                        method=MatchMethod.PATTERN,
                        confidence=METHOD_CONFIDENCE[MatchMethod.PATTERN],
                        matched_on=address,
                        pattern=pattern,
                    ))
                    break
        return matches

    def _compile(self, pattern: str) -> Optional[re.Pattern]:
        if pattern not in self._compiled:
            try:
                self._compiled[pattern] = re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                logger.warning(f"Ignoring invalid retailer sender pattern {pattern!r}: {e}")
                self._compiled[pattern] = None
        return self._compiled[pattern]
