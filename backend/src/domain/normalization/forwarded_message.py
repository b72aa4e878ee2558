"""Forwarded-message normalizer.

Users forward purchase notifications from a personal mailbox, so the
transport sender is usually the user, not the retailer. This module
recovers the original sender from the forwarding block that mail
clients insert, removes forwarding prefixes from the subject, turns HTML
bodies into plain text and bounds the body length.

normalize_forwarded_message() never raises: when no forwarding pattern
matches, the original sender stays unset and the caller falls back to
the transport sender.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from .addresses import extract_email_address, extract_display_name

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_LENGTH = 20_000

# Fwd:, FW:, Fw:, WG: (German), TR: (French), possibly repeated
_SUBJECT_PREFIX = re.compile(r"^\s*(?:fwd?|fw|wg|tr)\s*:\s*", re.IGNORECASE)
_BRACKETED_FORWARD = re.compile(r"^\s*\[\s*fwd?\s*:\s*(.*?)\s*\]\s*$", re.IGNORECASE)

# (format name, marker) in the order they are tried
_FORWARD_MARKERS: List[Tuple[str, re.Pattern]] = [
    ("gmail", re.compile(r"-{5,}\s*Forwarded message\s*-{5,}", re.IGNORECASE)),
    ("outlook", re.compile(r"-{5,}\s*Original Message\s*-{5,}", re.IGNORECASE)),
    ("apple", re.compile(r"Begin forwarded message\s*:", re.IGNORECASE)),
    ("outlook_desktop", re.compile(r"^\s*_{10,}\s*$", re.MULTILINE)),
]

_HEADER_LINE = re.compile(
    r"^\s*(?:>\s*)*\**(From|Date|Sent|Subject|To|Cc|Reply-To)\**\s*:\s*(.*)$",
    re.IGNORECASE,
)
_QUOTE_PREFIX = re.compile(r"^\s*>\s?")
_ADDRESS_HEADERS = ("from", "to", "cc", "reply-to")

_HTML_HINT = re.compile(r"<\s*(html|body|div|p|br|table|span|td|a)\b[^>]*>", re.IGNORECASE)
_BLOCK_TAGS = ["p", "div", "tr", "li", "h1", "h2", "h3", "h4", "h5", "h6", "table", "blockquote"]
_NOISE_TAGS = ["script", "style", "head", "title", "meta", "noscript"]

# Inline forwards without a marker: header block must start within this many lines
_INLINE_HEADER_WINDOW = 40


@dataclass(frozen=True)
class NormalizedMessage:
    """Result of normalizing one inbound message.

    Attributes:
        subject: Subject with forwarding prefixes removed
        body: Plain-text body with the forwarding preamble removed, truncated
        original_sender: Address recovered from the forwarding block, if any
        original_sender_name: Display name recovered with the address
        forward_format: Mail-client format that matched (gmail, outlook, apple, ...)
        truncated: True when the body was cut to the maximum length
    """
    subject: str
    body: str
    original_sender: Optional[str] = None
    original_sender_name: Optional[str] = None
    forward_format: Optional[str] = None
    truncated: bool = False

    @property
    def was_forwarded(self) -> bool:
        return self.forward_format is not None

    def preview(self, length: int) -> str:
        """First `length` characters of the body, for cheap pre-filtering."""
        return self.body[:length]


def clean_subject(subject: Optional[str]) -> Tuple[str, bool]:
    """Strip forwarding prefixes from a subject line.

    Returns:
        Tuple of (cleaned subject, whether any prefix was removed)

    Example:
        >>> clean_subject("Fwd: FW: Your order #123 has shipped")
        ('Your order #123 has shipped', True)
    """
    if not subject:
        return "", False

    cleaned = subject.strip()
    stripped = False

    bracketed = _BRACKETED_FORWARD.match(cleaned)
    if bracketed:
        cleaned = bracketed.group(1)
        stripped = True

    while True:
        match = _SUBJECT_PREFIX.match(cleaned)
        if not match:
            break
        cleaned = cleaned[match.end():]
        stripped = True

    return cleaned.strip(), stripped


def html_to_text(html: str) -> str:
    """Convert an HTML email body to plain text.

    Block elements and <br> become line breaks so header lines such as
    "From: <b>Shop</b> &lt;noreply@shop.example&gt;" stay on one line.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(_NOISE_TAGS):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for tag in soup.find_all(_BLOCK_TAGS):
        tag.append("\n")

    return _collapse_whitespace(soup.get_text())


def looks_like_html(body: str) -> bool:
    return bool(body) and _HTML_HINT.search(body) is not None


def _collapse_whitespace(text: str) -> str:
    lines = [re.sub(r"[ \t ]+", " ", line).strip() for line in text.splitlines()]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _find_marker(body: str, subject_forwarded: bool) -> Optional[Tuple[str, int]]:
    """Locate the forwarding block.

    Returns:
        (format name, offset where the forwarded header block starts) or None
    """
    best = None
    for name, pattern in _FORWARD_MARKERS:
        match = pattern.search(body)
        if not match:
            continue
        if name == "outlook_desktop" and not _starts_with_header(body[match.end():]):
            continue
        if best is None or match.start() < best[2]:
            best = (name, match.end(), match.start())

    if best is not None:
        return best[0], best[1]

    if subject_forwarded:
        lines = body.splitlines(keepends=True)
        offset = 0
        for index, line in enumerate(lines[:_INLINE_HEADER_WINDOW]):
            header = _HEADER_LINE.match(line)
            if header and header.group(1).lower() == "from" and _starts_with_header("".join(lines[index + 1:index + 6])):
                return "inline", offset
            offset += len(line)

    return None


def _starts_with_header(text: str) -> bool:
    for line in text.splitlines():
        if not line.strip():
            continue
        return _HEADER_LINE.match(line) is not None
    return False


def _split_forward_block(text: str) -> Tuple[dict, str]:
    """Split text following a marker into (headers, remaining body)."""
    lines = text.splitlines()
    headers = {}
    current = None
    index = 0

    # Skip blank lines between the marker and the header block
    while index < len(lines) and not lines[index].strip():
        index += 1

    while index < len(lines):
        line = lines[index]
        stripped = _QUOTE_PREFIX.sub("", line).strip()
        header = _HEADER_LINE.match(line)
        if header:
            current = header.group(1).lower()
            headers.setdefault(current, header.group(2).strip())
        elif not stripped:
            if headers:
                index += 1
                break
        elif current in _ADDRESS_HEADERS and "@" not in headers[current]:
            # Wrapped header value ("From: Shop" / "<noreply@shop.example>")
            headers[current] = f"{headers[current]} {stripped}".strip()
        else:
            break
        index += 1

    remaining = lines[index:]
    if remaining and sum(1 for l in remaining if l.lstrip().startswith(">")) > len(remaining) / 2:
        remaining = [_QUOTE_PREFIX.sub("", l) for l in remaining]
    return headers, "\n".join(remaining)


def normalize_forwarded_message(
    subject: Optional[str],
    body: Optional[str],
    max_body_length: int = DEFAULT_MAX_BODY_LENGTH,
) -> NormalizedMessage:
    """Normalize a raw subject and body.

    Args:
        subject: Raw subject line
        body: Raw body, plain text or HTML
        max_body_length: Maximum length of the returned body

    Returns:
        NormalizedMessage with cleaned subject, body and optional original sender

    Example:
        >>> result = normalize_forwarded_message(
        ...     "Fwd: Your order shipped",
        ...     "---------- Forwarded message ---------\\n"
        ...     "From: Shop <noreply@shop.example>\\n"
        ...     "Subject: Your order shipped\\n\\n"
        ...     "Tracking: T123",
        ... )
        >>> result.original_sender, result.body
        ('noreply@shop.example', 'Tracking: T123')
    """
    cleaned_subject, subject_forwarded = clean_subject(subject)
    raw_body = body or ""

    try:
        text = html_to_text(raw_body) if looks_like_html(raw_body) else _collapse_whitespace(raw_body)
    except Exception as e:
        logger.warning(f"HTML conversion failed, using raw body: {e}")
        text = _collapse_whitespace(raw_body)

    original_sender = None
    original_name = None
    forward_format = None

    try:
        marker = _find_marker(text, subject_forwarded)
        if marker is not None:
            forward_format, offset = marker
            headers, forwarded_body = _split_forward_block(text[offset:])
            from_value = headers.get("from")
            original_sender = extract_email_address(from_value)
            original_name = extract_display_name(from_value) if original_sender else None
            if headers:
                text = _collapse_whitespace(forwarded_body)
            if not cleaned_subject and headers.get("subject"):
                cleaned_subject, _ = clean_subject(headers["subject"])
    except Exception as e:
        logger.warning(f"Forwarding block could not be parsed: {e}")
        original_sender = None
        original_name = None
        forward_format = None

    truncated = len(text) > max_body_length
    if truncated:
        text = text[:max_body_length]

    return NormalizedMessage(
        subject=cleaned_subject,
        body=text,
        original_sender=original_sender,
        original_sender_name=original_name,
        forward_format=forward_format,
        truncated=truncated,
    )
