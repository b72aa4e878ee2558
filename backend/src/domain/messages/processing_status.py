"""ProcessingStatus state machine for inbound message processing.

State flow:
    PENDING → CLASSIFYING → CLASSIFIED → PARSING → PARSED
                   ↓                        ↓
             MANUAL_REVIEW ←────────────────┘
    MANUAL_REVIEW → PARSED | DISMISSED   (operator action only)
    any in-flight state → FAILED → PENDING (retry)

Processing only moves forward. The single exception is an explicit
reprocess request, which resets a message to PENDING from any state.
"""

from enum import Enum
from typing import Dict, List, Optional


class ProcessingStatus(str, Enum):
    """Inbound message processing status"""
    PENDING = "PENDING"              # Stored, waiting for the pipeline
    CLASSIFYING = "CLASSIFYING"      # Relevance filter / classifier running
    CLASSIFIED = "CLASSIFIED"        # Type known (terminal for noise)
    PARSING = "PARSING"              # Type parser and merge running
    PARSED = "PARSED"                # Merged into the order graph (terminal)
    FAILED = "FAILED"                # Unrecoverable error, eligible for retry
    MANUAL_REVIEW = "MANUAL_REVIEW"  # Waiting for an operator
    DISMISSED = "DISMISSED"          # Operator discarded the message (terminal)


class StateTransitionError(ValueError):
    """Raised when a processing status transition is not allowed."""

    def __init__(self, from_status: Optional[ProcessingStatus], to_status: ProcessingStatus):
        self.from_status = from_status
        self.to_status = to_status
        from_value = from_status.value if from_status else None
        super().__init__(
            f"Invalid processing status transition: {from_value} → {to_status.value}. "
            f"Allowed: {[s.value for s in get_allowed_transitions(from_status)]}"
        )


ALLOWED_TRANSITIONS: Dict[Optional[ProcessingStatus], List[ProcessingStatus]] = {
    None: [ProcessingStatus.PENDING],
    ProcessingStatus.PENDING: [ProcessingStatus.CLASSIFYING, ProcessingStatus.FAILED],
    ProcessingStatus.CLASSIFYING: [
        ProcessingStatus.CLASSIFIED,
        ProcessingStatus.MANUAL_REVIEW,
        ProcessingStatus.FAILED,
    ],
    ProcessingStatus.CLASSIFIED: [ProcessingStatus.PARSING, ProcessingStatus.FAILED],
    ProcessingStatus.PARSING: [
        ProcessingStatus.PARSED,
        ProcessingStatus.MANUAL_REVIEW,
        ProcessingStatus.FAILED,
    ],
    ProcessingStatus.PARSED: [],  # Terminal success state
    ProcessingStatus.FAILED: [ProcessingStatus.PENDING],  # Retry
    ProcessingStatus.MANUAL_REVIEW: [ProcessingStatus.PARSED, ProcessingStatus.DISMISSED],
    ProcessingStatus.DISMISSED: [],  # Terminal
}

# States whose outcome was committed by a finished run
SETTLED_STATES = frozenset({
    ProcessingStatus.PARSED,
    ProcessingStatus.MANUAL_REVIEW,
    ProcessingStatus.DISMISSED,
})

# States that only exist while a run holds the message
IN_FLIGHT_STATES = frozenset({
    ProcessingStatus.CLASSIFYING,
    ProcessingStatus.CLASSIFIED,
    ProcessingStatus.PARSING,
})


def can_transition(
    from_status: Optional[ProcessingStatus],
    to_status: ProcessingStatus,
    reprocess: bool = False,
) -> bool:
    """Validate if status transition is allowed

    Args:
        from_status: Current status (None for new messages)
        to_status: Target status
        reprocess: True for an explicit reprocess request

    Returns:
        True if transition is allowed, False otherwise

    Example:
        >>> can_transition(ProcessingStatus.PENDING, ProcessingStatus.CLASSIFYING)
        True
        >>> can_transition(ProcessingStatus.PARSED, ProcessingStatus.PENDING)
        False
        >>> can_transition(ProcessingStatus.PARSED, ProcessingStatus.PENDING, reprocess=True)
        True
    """
    if reprocess and from_status is not None and to_status == ProcessingStatus.PENDING:
        return True
    return to_status in ALLOWED_TRANSITIONS.get(from_status, [])


def validate_transition(
    from_status: Optional[ProcessingStatus],
    to_status: ProcessingStatus,
    reprocess: bool = False,
) -> None:
    """Raise StateTransitionError unless the transition is allowed."""
    if not can_transition(from_status, to_status, reprocess=reprocess):
        raise StateTransitionError(from_status, to_status)


def get_allowed_transitions(from_status: Optional[ProcessingStatus]) -> List[ProcessingStatus]:
    """Get list of allowed transitions from current status

    Example:
        >>> get_allowed_transitions(ProcessingStatus.CLASSIFIED)
        [ProcessingStatus.PARSING, ProcessingStatus.FAILED]
    """
    return ALLOWED_TRANSITIONS.get(from_status, [])
