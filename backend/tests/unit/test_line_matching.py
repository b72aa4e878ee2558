"""Unit tests for item-to-order-line matching strategies"""

from uuid import uuid4

import pytest

from domain.reconciliation.line_matching import (
    CandidateLine,
    ContainmentMatcher,
    TokenOverlapMatcher,
    get_line_matcher,
    normalize_product_name,
    normalize_sku,
)


HEADPHONES = CandidateLine(line_id=uuid4(), product_name="Sony WH-1000XM5 Wireless Headphones (Black)", sku="SNY-1000", line_number=1)
CABLE = CandidateLine(line_id=uuid4(), product_name="USB-C Cable", sku=None, line_number=2)
CABLE_PACK = CandidateLine(line_id=uuid4(), product_name="USB-C Cable 3 Pack", sku="CBL-3", line_number=3)
LINES = [HEADPHONES, CABLE, CABLE_PACK]


class TestNormalization:

    def test_product_name(self):
        assert normalize_product_name("  Sony WH-1000XM5 (Black) ") == "sony wh 1000xm5 black"
        assert normalize_product_name(None) == ""

    def test_sku(self):
        assert normalize_sku("sny-1000") == "SNY1000"
        assert normalize_sku(" cbl_3 ") == "CBL3"
        assert normalize_sku(None) == ""


class TestContainmentMatcher:
    """Test SKU first, then normalized containment"""

    def test_sku_first(self):
        """SKU wins even when the name points elsewhere"""
        match = ContainmentMatcher().match("USB-C Cable", "sny 1000", LINES)

        assert match.line_id == HEADPHONES.line_id
        assert match.method == "sku"

    def test_name_contained_in_line(self):
        match = ContainmentMatcher().match("Sony WH-1000XM5", None, LINES)

        assert match.line_id == HEADPHONES.line_id
        assert match.method == "name_containment"

    def test_line_contained_in_name(self):
        match = ContainmentMatcher().match("Sony WH-1000XM5 Wireless Headphones (Black) - Renewed", None, LINES)
        assert match.line_id == HEADPHONES.line_id

    def test_exact_name_beats_longer_containment(self):
        match = ContainmentMatcher().match("USB-C cable", None, LINES)
        assert match.line_id == CABLE.line_id

    def test_closest_length_wins(self):
        match = ContainmentMatcher().match("USB-C Cable 3 Pack - Blue", None, LINES)
        assert match.line_id == CABLE_PACK.line_id

    def test_unmatched(self):
        assert ContainmentMatcher().match("Garden Hose", None, LINES) is None
        assert ContainmentMatcher().match(None, None, LINES) is None
        assert ContainmentMatcher().match("USB-C Cable", None, []) is None

    def test_short_names_do_not_match(self):
        assert ContainmentMatcher().match("US", None, LINES) is None


class TestTokenOverlapMatcher:
    """Test word-overlap matching"""

    def test_reordered_words(self):
        match = TokenOverlapMatcher().match("Black Wireless Headphones Sony WH-1000XM5", None, LINES)

        assert match.line_id == HEADPHONES.line_id
        assert match.method == "token_overlap"
        assert match.score == 1.0

    def test_below_threshold(self):
        assert TokenOverlapMatcher(min_overlap=0.6).match("Sony Speaker", None, LINES) is None


class TestStrategySelection:

    def test_known_strategies(self):
        assert isinstance(get_line_matcher("containment"), ContainmentMatcher)
        assert isinstance(get_line_matcher("token_overlap"), TokenOverlapMatcher)

    def test_unknown_strategy(self):
        with pytest.raises(ValueError):
            get_line_matcher("levenshtein")
