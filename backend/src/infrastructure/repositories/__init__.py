"""Repositories - persistence boundary for the pipeline"""

from .inbound_message_repository import InboundMessageRepository
from .order_repository import OrderRepository, normalize_order_reference
from .retailer_directory import SqlRetailerDirectory

__all__ = [
    "InboundMessageRepository",
    "OrderRepository",
    "normalize_order_reference",
    "SqlRetailerDirectory",
]
