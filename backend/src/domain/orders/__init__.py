"""Order domain - status enums, graph snapshots and status aggregation"""

from .enums import (
    OrderStatus,
    OrderLineStatus,
    ShipmentStatus,
    DeliveryStatus,
    DeliveryIssueType,
    ReturnStatus,
    ReturnMethod,
    parse_enum,
)
from .snapshots import (
    OrderGraph,
    OrderSnapshot,
    LineSnapshot,
    ItemQuantity,
    ShipmentSnapshot,
    DeliverySnapshot,
    ReturnSnapshot,
    RefundSnapshot,
)
from .status_aggregator import (
    recompute_order_status,
    recompute_from_graph,
    derive_line_status,
    derive_line_statuses,
)

__all__ = [
    "OrderStatus",
    "OrderLineStatus",
    "ShipmentStatus",
    "DeliveryStatus",
    "DeliveryIssueType",
    "ReturnStatus",
    "ReturnMethod",
    "parse_enum",
    "OrderGraph",
    "OrderSnapshot",
    "LineSnapshot",
    "ItemQuantity",
    "ShipmentSnapshot",
    "DeliverySnapshot",
    "ReturnSnapshot",
    "RefundSnapshot",
    "recompute_order_status",
    "recompute_from_graph",
    "derive_line_status",
    "derive_line_statuses",
]
