"""Operator review - manual review queue and order actions"""

from .service import ReviewService, OrderNotFoundError
from .router import router

__all__ = ["ReviewService", "OrderNotFoundError", "router"]
