"""Message normalization - forwarding preamble removal and address helpers"""

from .addresses import extract_email_address, extract_display_name, extract_domain
from .forwarded_message import (
    NormalizedMessage,
    normalize_forwarded_message,
    clean_subject,
    html_to_text,
    DEFAULT_MAX_BODY_LENGTH,
)

__all__ = [
    "extract_email_address",
    "extract_display_name",
    "extract_domain",
    "NormalizedMessage",
    "normalize_forwarded_message",
    "clean_subject",
    "html_to_text",
    "DEFAULT_MAX_BODY_LENGTH",
]
