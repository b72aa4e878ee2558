"""Retailer domain - directory port and sender matching"""

from .models import RetailerProfile, RetailerMatch, MatchMethod
from .ports import RetailerDirectoryPort, StaticRetailerDirectory
from .matcher import RetailerMatcher, normalize_retailer_name

__all__ = [
    "RetailerProfile",
    "RetailerMatch",
    "MatchMethod",
    "RetailerDirectoryPort",
    "StaticRetailerDirectory",
    "RetailerMatcher",
    "normalize_retailer_name",
]
