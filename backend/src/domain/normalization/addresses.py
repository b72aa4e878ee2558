"""Email address helpers shared by the normalizer and the retailer matcher."""

import re
from email.utils import parseaddr
from typing import Optional

_ADDRESS_PATTERN = re.compile(r"[\w.!#$%&'*+/=?^`{|}~-]+@[\w-]+(?:\.[\w-]+)+")


def extract_email_address(value: Optional[str]) -> Optional[str]:
    """Extract and normalize an email address from header-style text.

    Examples:
        >>> extract_email_address("Retailer Orders <NoReply@Retailer.example>")
        'noreply@retailer.example'
        >>> extract_email_address("mailto:help@shop.example")
        'help@shop.example'
        >>> extract_email_address("no address here") is None
        True
    """
    if not value:
        return None

    _, address = parseaddr(value)
    if address and "@" in address and _ADDRESS_PATTERN.fullmatch(address.strip()):
        return address.strip().lower()

    match = _ADDRESS_PATTERN.search(value)
    if match:
        return match.group(0).lower()
    return None


def extract_display_name(value: Optional[str]) -> Optional[str]:
    """Return the display-name part of 'Name <addr>' text, if any."""
    if not value:
        return None
    name, _ = parseaddr(value)
    name = name.strip().strip('"').strip()
    return name or None


def extract_domain(address: Optional[str]) -> Optional[str]:
    """Extract the lower-cased domain of an email address.

    Examples:
        >>> extract_domain("noreply@Retailer.example")
        'retailer.example'
        >>> extract_domain("not-an-address") is None
        True
    """
    email_address = extract_email_address(address)
    if not email_address:
        return None
    return email_address.rsplit("@", 1)[1].rstrip(".")
