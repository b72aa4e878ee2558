"""Processing policy constants.

The defaults are named here so the gating and retry behaviour can be
tested on its own; deployments override them through settings.
"""

from dataclasses import dataclass

from domain.ai.email_intelligence import DEFAULT_PARSER_CONFIDENCE_THRESHOLD

DEFAULT_CLASSIFICATION_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_MAX_PROCESSING_ATTEMPTS = 5
DEFAULT_MERGE_CONFLICT_RETRIES = 3
DEFAULT_MAX_BODY_LENGTH = 20_000
DEFAULT_BODY_PREVIEW_LENGTH = 500
DEFAULT_ORDER_REFERENCE_MIN_PARTIAL_LENGTH = 5


@dataclass(frozen=True)
class ProcessingPolicy:
    """Thresholds and limits applied by the orchestrator.

    Attributes:
        classification_threshold: Classifications below this go to manual review
        parser_threshold: Parse results below this go to manual review
        max_attempts: Failed messages with this many attempts are not retried
        merge_conflict_retries: Whole-merge retries on optimistic-lock conflicts
        max_body_length: Body characters handed to the classifier and parsers
        body_preview_length: Characters handed to the relevance pre-filter
        min_partial_reference_length: Shortest order reference used for containment lookup
    """
    classification_threshold: float = DEFAULT_CLASSIFICATION_CONFIDENCE_THRESHOLD
    parser_threshold: float = DEFAULT_PARSER_CONFIDENCE_THRESHOLD
    max_attempts: int = DEFAULT_MAX_PROCESSING_ATTEMPTS
    merge_conflict_retries: int = DEFAULT_MERGE_CONFLICT_RETRIES
    max_body_length: int = DEFAULT_MAX_BODY_LENGTH
    body_preview_length: int = DEFAULT_BODY_PREVIEW_LENGTH
    min_partial_reference_length: int = DEFAULT_ORDER_REFERENCE_MIN_PARTIAL_LENGTH

    def __post_init__(self):
        if not 0.0 <= self.classification_threshold <= 1.0:
            raise ValueError("classification_threshold must be between 0 and 1")
        if not 0.0 <= self.parser_threshold <= 1.0:
            raise ValueError("parser_threshold must be between 0 and 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.merge_conflict_retries < 1:
            raise ValueError("merge_conflict_retries must be at least 1")

    def is_confident_classification(self, confidence: float) -> bool:
        return confidence >= self.classification_threshold

    def can_retry(self, retry_count: int) -> bool:
        """True while a failed message is below the attempt ceiling."""
        return retry_count < self.max_attempts

    @classmethod
    def from_settings(cls, settings=None) -> "ProcessingPolicy":
        """Build the policy from application settings."""
        if settings is None:
            from config import get_settings
            settings = get_settings()
        return cls(
            classification_threshold=settings.CLASSIFICATION_CONFIDENCE_THRESHOLD,
            parser_threshold=settings.PARSER_CONFIDENCE_THRESHOLD,
            max_attempts=settings.MAX_PROCESSING_ATTEMPTS,
            merge_conflict_retries=settings.MERGE_CONFLICT_RETRIES,
            max_body_length=settings.MAX_BODY_LENGTH,
            body_preview_length=settings.BODY_PREVIEW_LENGTH,
            min_partial_reference_length=settings.ORDER_REFERENCE_MIN_PARTIAL_LENGTH,
        )
