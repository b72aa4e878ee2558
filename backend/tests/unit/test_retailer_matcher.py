"""Unit tests for the retailer matcher"""

from uuid import uuid4

from domain.retailers.matcher import RetailerMatcher, normalize_retailer_name
from domain.retailers.models import MatchMethod, RetailerProfile
from domain.retailers.ports import StaticRetailerDirectory


EXAMPLE = RetailerProfile(
    retailer_id=uuid4(),
    name="Example Retail",
    normalized_name="example retail",
    sender_domains=("retailer.example",),
)
MEGASTORE = RetailerProfile(
    retailer_id=uuid4(),
    name="Megastore",
    normalized_name="megastore",
    sender_domains=("megastore.example", "mail.megastore.example"),
    sender_patterns=(r"^orders-.*@bulkmail\.example$",),
)


def _matcher(*profiles):
    return RetailerMatcher(StaticRetailerDirectory(list(profiles or (EXAMPLE, MEGASTORE))))


class TestRetailerMatcher:
    """Test domain, subdomain and pattern matching"""

    def test_exact_domain(self):
        match = _matcher().match("Example Retail <noreply@retailer.example>")

        assert match.retailer_id == EXAMPLE.retailer_id
        assert match.method == MatchMethod.EXACT_DOMAIN
        assert match.confidence == 1.0

    def test_subdomain(self):
        match = _matcher().match("shipping@track.retailer.example")

        assert match.retailer_id == EXAMPLE.retailer_id
        assert match.method == MatchMethod.SUBDOMAIN

    def test_exact_domain_beats_subdomain(self):
        """mail.megastore.example is registered itself, so it matches exactly"""
        match = _matcher().match("noreply@mail.megastore.example")

        assert match.retailer_id == MEGASTORE.retailer_id
        assert match.method == MatchMethod.EXACT_DOMAIN

    def test_pattern_fallback(self):
        match = _matcher().match("orders-eu@bulkmail.example")

        assert match.retailer_id == MEGASTORE.retailer_id
        assert match.method == MatchMethod.PATTERN
        assert match.pattern == MEGASTORE.sender_patterns[0]

    def test_original_sender_wins_over_transport_sender(self):
        """Forwarded messages are matched on the original sender"""
        match = _matcher().match("me@home.example", "noreply@retailer.example")

        assert match is not None
        assert match.matched_on == "retailer.example"

    def test_personal_sender_has_no_match(self):
        assert _matcher().match("me@home.example") is None

    def test_missing_sender(self):
        assert _matcher().match(None) is None
        assert _matcher().match("not an address") is None

    def test_invalid_pattern_is_ignored(self):
        broken = RetailerProfile(
            retailer_id=uuid4(),
            name="Broken",
            normalized_name="broken",
            sender_patterns=("([unclosed",),
        )
        assert _matcher(broken).match("anyone@elsewhere.example") is None

    def test_normalize_retailer_name(self):
        assert normalize_retailer_name("  Best-Buy, Inc. ") == "best buy inc"
        assert normalize_retailer_name("Café Olé") == "cafe ole"
        assert normalize_retailer_name(None) == ""
