"""Pipeline error taxonomy.

Only infrastructure and structural faults are raised. Low confidence,
unparseable output, an unmatched retailer and orphaned items are recorded
in domain state (manual review, inferred orders, pending items) instead.
"""

from uuid import UUID

from domain.cancellation import ProcessingCancelled


class PipelineError(Exception):
    """Base class for errors that fail a message."""


class TransientPipelineError(PipelineError):
    """External service timed out or was unavailable; safe to retry."""


class StructuralMergeError(PipelineError):
    """Merge could not resolve a referenced entity or hit an unexpected natural-key collision."""


class MergeConflictError(PipelineError):
    """Concurrent merges into the same order kept conflicting until retries ran out."""

    def __init__(self, message_id: UUID, attempts: int):
        self.message_id = message_id
        self.attempts = attempts
        super().__init__(
            f"Merge for message {message_id} conflicted {attempts} times"
        )


class MessageNotFoundError(PipelineError):
    """Inbound message does not exist for the tenant."""

    def __init__(self, message_id: UUID):
        self.message_id = message_id
        super().__init__(f"Inbound message {message_id} not found")


__all__ = [
    "PipelineError",
    "TransientPipelineError",
    "StructuralMergeError",
    "MergeConflictError",
    "MessageNotFoundError",
    "ProcessingCancelled",
]
