"""Product-to-order-line matching strategies.

Used when linking shipment, return and cancellation items to order
lines. Every strategy tries an exact SKU match first. The default
strategy then falls back to containment of normalized product names in
either direction; TokenOverlapMatcher instead scores shared words. An
item that no strategy can place stays unmatched.
"""

import re
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence
from uuid import UUID

# Shorter names match too many lines by containment
MIN_CONTAINMENT_LENGTH = 3

_STOPWORDS = frozenset({"the", "a", "an", "and", "of", "for", "with", "in", "x", "pack", "set"})


@dataclass(frozen=True)
class CandidateLine:
    """Order line as seen by a matching strategy."""
    line_id: UUID
    product_name: Optional[str] = None
    sku: Optional[str] = None
    line_number: Optional[int] = None


@dataclass(frozen=True)
class LineMatch:
    line_id: UUID
    method: str  # sku | name_containment | token_overlap
    score: float = 1.0


def normalize_product_name(name: Optional[str]) -> str:
    """Lower-case, strip accents and punctuation, collapse whitespace.

    Example:
        >>> normalize_product_name("  Sony WH-1000XM5 (Black) ")
        'sony wh 1000xm5 black'
    """
    if not name:
        return ""
    text = unicodedata.normalize("NFKD", name)
    text = "".join(c for c in text if not unicodedata.combining(c)).lower()
    text = re.sub(r"[^\w\s]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def normalize_sku(sku: Optional[str]) -> str:
    if not sku:
        return ""
    return re.sub(r"[\s\-_.]", "", sku).upper()


def _sort_key(line: CandidateLine):
    return (line.line_number is None, line.line_number or 0, str(line.line_id))


class LineMatcher(ABC):
    """Strategy interface for placing an item on an order line."""

    def match(
        self,
        product_name: Optional[str],
        sku: Optional[str],
        lines: Sequence[CandidateLine],
    ) -> Optional[LineMatch]:
        """Find the order line an item refers to.

        Args:
            product_name: Item product name as extracted
            sku: Item SKU as extracted
            lines: Candidate order lines

        Returns:
            LineMatch or None when the item cannot be placed
        """
        if not lines:
            return None

        wanted_sku = normalize_sku(sku)
        if wanted_sku:
            for line in sorted(lines, key=_sort_key):
                if normalize_sku(line.sku) == wanted_sku:
                    return LineMatch(line_id=line.line_id, method="sku")

        name = normalize_product_name(product_name)
        if not name:
            return None
        return self.match_name(name, sorted(lines, key=_sort_key))

    @abstractmethod
    def match_name(self, name: str, lines: Sequence[CandidateLine]) -> Optional[LineMatch]:
        """Match a normalized product name against sorted candidate lines."""
        pass


class ContainmentMatcher(LineMatcher):
    """Normalized substring match in either direction.

    When several lines match, the one whose name length is closest to the
    item name wins, then the lowest line number.
    """

    def match_name(self, name: str, lines: Sequence[CandidateLine]) -> Optional[LineMatch]:
        if len(name) < MIN_CONTAINMENT_LENGTH:
            return None

        best = None
        best_distance = None
        for line in lines:
            line_name = normalize_product_name(line.product_name)
            if len(line_name) < MIN_CONTAINMENT_LENGTH:
                continue
            if name == line_name:
                return LineMatch(line_id=line.line_id, method="name_containment")
            if name in line_name or line_name in name:
                distance = abs(len(line_name) - len(name))
                if best_distance is None or distance < best_distance:
                    best = line
                    best_distance = distance

        if best is None:
            return None
        return LineMatch(line_id=best.line_id, method="name_containment")


class TokenOverlapMatcher(LineMatcher):
    """Jaccard overlap of significant words between item and line names.

    Args:
        min_overlap: Minimum overlap score for a match (0.0-1.0)
    """

    def __init__(self, min_overlap: float = 0.6):
        self.min_overlap = min_overlap

    @staticmethod
    def _tokens(name: str) -> set:
        return {t for t in name.split() if t not in _STOPWORDS}

    def match_name(self, name: str, lines: Sequence[CandidateLine]) -> Optional[LineMatch]:
        item_tokens = self._tokens(name)
        if not item_tokens:
            return None

        best = None
        best_score = 0.0
        for line in lines:
            line_tokens = self._tokens(normalize_product_name(line.product_name))
            if not line_tokens:
                continue
            score = len(item_tokens & line_tokens) / len(item_tokens | line_tokens)
            if score > best_score:
                best = line
                best_score = score

        if best is None or best_score < self.min_overlap:
            return None
        return LineMatch(line_id=best.line_id, method="token_overlap", score=round(best_score, 3))


def get_line_matcher(strategy: str = "containment") -> LineMatcher:
    """Build the configured matching strategy.

    Raises:
        ValueError: If strategy name is unknown
    """
    if strategy == "containment":
        return ContainmentMatcher()
    if strategy == "token_overlap":
        return TokenOverlapMatcher()
    raise ValueError(f"Unknown line matching strategy: {strategy}")
