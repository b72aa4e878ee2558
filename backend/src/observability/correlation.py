"""Correlation context for request and message processing.

HTTP requests get a correlation id from the X-Request-ID header (or a new
one); workers bind the inbound message id for the duration of a message.
Log records pick the values up through CorrelationFilter.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional
from uuid import UUID

# Context variables (async-safe)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
tenant_id_var: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
inbound_message_id_var: ContextVar[Optional[str]] = ContextVar("inbound_message_id", default=None)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> str:
    """Get current correlation id, or "no-correlation-id" if not set."""
    return correlation_id_var.get() or "no-correlation-id"


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_var.set(correlation_id)


@contextmanager
def bind_message_context(tenant_id: UUID, inbound_message_id: UUID) -> Iterator[None]:
    """Bind tenant and message ids to the current context.

    The inbound message id doubles as correlation id while the block runs;
    previous values are restored on exit.

    Usage:
        with bind_message_context(tenant_uuid, message_uuid):
            orchestrator.process(message_uuid)
    """
    tokens = (
        correlation_id_var.set(str(inbound_message_id)),
        tenant_id_var.set(str(tenant_id)),
        inbound_message_id_var.set(str(inbound_message_id)),
    )
    try:
        yield
    finally:
        inbound_message_id_var.reset(tokens[2])
        tenant_id_var.reset(tokens[1])
        correlation_id_var.reset(tokens[0])
