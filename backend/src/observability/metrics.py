"""Prometheus metrics for OrderPulse.

Defines and exposes operational metrics for monitoring and alerting.
"""

from prometheus_client import Counter, Histogram, Gauge

# Message processing metrics
messages_processed_total = Counter(
    "orderpulse_messages_processed_total",
    "Total number of inbound messages processed",
    ["outcome"]  # outcome: parsed|noise|manual_review|skipped|failed|cancelled
)

processing_duration_seconds = Histogram(
    "orderpulse_processing_duration_seconds",
    "Time spent processing one inbound message in seconds",
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

# Classification metrics
classification_outcomes_total = Counter(
    "orderpulse_classification_outcomes_total",
    "Classification results by type and gate decision",
    ["classification_type", "decision"]  # decision: parse|manual_review|noise
)

classification_confidence_histogram = Histogram(
    "orderpulse_classification_confidence",
    "Classification confidence score distribution",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

parse_confidence_histogram = Histogram(
    "orderpulse_parse_confidence",
    "Parser confidence score distribution",
    ["family"],
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0]
)

# AI call metrics
ai_calls_total = Counter(
    "orderpulse_ai_calls_total",
    "Total AI API calls",
    ["call_type", "provider", "status"]  # status: success|invalid|error
)

ai_latency_ms = Histogram(
    "orderpulse_ai_latency_ms",
    "AI API call latency in milliseconds",
    ["call_type", "provider"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000]
)

ai_tokens_total = Counter(
    "orderpulse_ai_tokens_total",
    "Total AI tokens consumed",
    ["call_type", "provider", "direction"]  # direction: input|output
)

# Merge metrics
merge_conflicts_total = Counter(
    "orderpulse_merge_conflicts_total",
    "Optimistic-concurrency conflicts while merging into an order",
    ["resolution"]  # resolution: retried|exhausted
)

orphaned_items_total = Counter(
    "orderpulse_orphaned_items_total",
    "Shipment/return item references left unmatched after reconciliation"
)

reconciled_items_total = Counter(
    "orderpulse_reconciled_items_total",
    "Orphaned item references placed on order lines"
)

inferred_orders_total = Counter(
    "orderpulse_inferred_orders_total",
    "Orders created as inferred stubs"
)

# Queue depth metrics
manual_review_queue_depth = Gauge(
    "orderpulse_manual_review_queue_depth",
    "Number of messages waiting for manual review"
)
