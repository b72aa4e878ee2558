"""Observability module for OrderPulse.

Provides structured logging, correlation ids, metrics and health checks.
"""

from .logging_config import configure_logging, CorrelationFilter, JSONFormatter
from .correlation import (
    bind_message_context,
    correlation_id_var,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)
from .health import HealthStatus, ComponentHealth
from .middleware import CorrelationIdMiddleware

__all__ = [
    # Logging
    "configure_logging",
    "CorrelationFilter",
    "JSONFormatter",
    # Correlation
    "bind_message_context",
    "correlation_id_var",
    "generate_correlation_id",
    "get_correlation_id",
    "set_correlation_id",
    # Health
    "HealthStatus",
    "ComponentHealth",
    # Middleware
    "CorrelationIdMiddleware",
]
