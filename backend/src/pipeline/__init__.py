"""Processing pipeline - orchestration, merge and reconciliation"""

from .errors import (
    PipelineError,
    TransientPipelineError,
    StructuralMergeError,
    MergeConflictError,
    MessageNotFoundError,
    ProcessingCancelled,
)
from .policy import ProcessingPolicy
from .merger import EventType, MergeOutcome, OrderGraphMerger
from .orchestrator import (
    AnalysisResult,
    MessageProcessingOrchestrator,
    OutcomeKind,
    ProcessingOutcome,
)

__all__ = [
    "PipelineError",
    "TransientPipelineError",
    "StructuralMergeError",
    "MergeConflictError",
    "MessageNotFoundError",
    "ProcessingCancelled",
    "ProcessingPolicy",
    "EventType",
    "MergeOutcome",
    "OrderGraphMerger",
    "AnalysisResult",
    "MessageProcessingOrchestrator",
    "OutcomeKind",
    "ProcessingOutcome",
]
