"""Retailer directory port."""

from abc import ABC, abstractmethod
from typing import List

from .models import RetailerProfile


class RetailerDirectoryPort(ABC):
    """Read-only access to the known retailers.

    Implementations may cache; the matcher never writes through this port.
    """

    @abstractmethod
    def list_profiles(self) -> List[RetailerProfile]:
        """Return all active retailer profiles."""
        pass


class StaticRetailerDirectory(RetailerDirectoryPort):
    """In-memory directory, used for fixed retailer lists and tests."""

    def __init__(self, profiles: List[RetailerProfile]):
        self._profiles = list(profiles)

    def list_profiles(self) -> List[RetailerProfile]:
        return list(self._profiles)
