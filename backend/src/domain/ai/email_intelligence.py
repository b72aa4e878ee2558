"""
Email Intelligence Port - classifier and parser capabilities.

One method per classifier/parser role. The orchestrator only talks to
this port, so the model service can be swapped, or stubbed in tests,
without touching orchestration logic. Implementations never mutate
pipeline state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from domain.cancellation import CancellationToken
from domain.messages.classification import ClassificationType
from domain.parsing.results import (
    OrderEmailData,
    ShipmentData,
    DeliveryData,
    ReturnData,
    RefundData,
    CancellationData,
    PaymentData,
)

T = TypeVar("T")

# Shared by ParseResult, the LLM adapter and ProcessingPolicy
DEFAULT_PARSER_CONFIDENCE_THRESHOLD = 0.7


@dataclass
class ClassificationResult:
    """
    Full classification of one message.

    Attributes:
        classification_type: Detected type, None when the label was unusable
        confidence: Classifier confidence (0.0-1.0)
        secondary_type: Optional runner-up type
        error: Error string when the response could not be used
    """
    classification_type: Optional[ClassificationType]
    confidence: float
    secondary_type: Optional[ClassificationType] = None
    error: Optional[str] = None


@dataclass
class ParseResult(Generic[T]):
    """
    Typed parser output.

    A parser that cannot extract enough structure returns data=None with
    needs_review=True. That is a normal outcome, not an error.

    Attributes:
        data: Family-specific parsed structure, or None
        confidence: Parser confidence (0.0-1.0)
        needs_review: True when the result must not be merged automatically
        error: Optional error string describing why data is missing
    """
    data: Optional[T]
    confidence: float
    needs_review: bool
    error: Optional[str] = None

    @classmethod
    def from_data(
        cls,
        data: Optional[T],
        confidence: float,
        threshold: float = DEFAULT_PARSER_CONFIDENCE_THRESHOLD,
        error: Optional[str] = None,
    ) -> "ParseResult[T]":
        """Build a result, flagging review for missing data or low confidence."""
        return cls(
            data=data,
            confidence=confidence,
            needs_review=data is None or confidence < threshold,
            error=error,
        )

    @classmethod
    def unparseable(cls, error: str) -> "ParseResult[T]":
        return cls(data=None, confidence=0.0, needs_review=True, error=error)


class EmailIntelligencePort(ABC):
    """
    Classification and extraction contract consumed by the orchestrator.

    Every method takes (subject, body, sender) plus an optional retailer
    hint for parsers and an optional cancellation token.

    Raises (all methods):
        LLMTimeoutError, LLMRateLimitError, LLMServiceError: transient service faults
        LLMAuthError: credentials rejected
    Unusable model output is reported through the result, never raised.
    """

    @abstractmethod
    def is_relevant(
        self,
        subject: str,
        body_preview: str,
        sender: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> bool:
        """Cheap pre-filter: could this message be about a purchase at all?"""
        pass

    @abstractmethod
    def classify(
        self,
        subject: str,
        body: str,
        sender: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> ClassificationResult:
        """Classify the message into one ClassificationType with a confidence."""
        pass

    @abstractmethod
    def parse_order(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[OrderEmailData]:
        pass

    @abstractmethod
    def parse_shipment(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[ShipmentData]:
        pass

    @abstractmethod
    def parse_delivery(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[DeliveryData]:
        pass

    @abstractmethod
    def parse_return(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[ReturnData]:
        pass

    @abstractmethod
    def parse_refund(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[RefundData]:
        pass

    @abstractmethod
    def parse_cancellation(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[CancellationData]:
        pass

    @abstractmethod
    def parse_payment(
        self,
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ParseResult[PaymentData]:
        pass
