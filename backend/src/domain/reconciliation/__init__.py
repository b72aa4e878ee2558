"""Reconciliation - matching parsed items to order lines"""

from .line_matching import (
    CandidateLine,
    LineMatch,
    LineMatcher,
    ContainmentMatcher,
    TokenOverlapMatcher,
    get_line_matcher,
    normalize_product_name,
    normalize_sku,
)

__all__ = [
    "CandidateLine",
    "LineMatch",
    "LineMatcher",
    "ContainmentMatcher",
    "TokenOverlapMatcher",
    "get_line_matcher",
    "normalize_product_name",
    "normalize_sku",
]
