"""
LLM-backed EmailIntelligencePort.

The relevance pre-filter runs on the cheap classifier model with only a
body preview; classification and parsing run on the parser model with the
full normalized body. Provider faults (timeouts, rate limits, auth) are
raised to the caller. Output that cannot be used is absorbed into the
result instead: relevance defaults to True, an unusable classification
has no type and zero confidence, and an unusable parse has no data.
"""

import logging
from typing import Optional, Type

from pydantic import BaseModel, ValidationError

from domain.ai.email_intelligence import (
    DEFAULT_PARSER_CONFIDENCE_THRESHOLD,
    ClassificationResult,
    EmailIntelligencePort,
    ParseResult,
)
from domain.ai.models import AICallType
from domain.ai.ports import LLMCompletion, LLMError, LLMProviderPort
from domain.cancellation import CancellationToken, check_cancelled
from domain.messages.classification import parse_classification_type
from domain.parsing.results import (
    CancellationData,
    DeliveryData,
    OrderEmailData,
    PaymentData,
    RefundData,
    ReturnData,
    ShipmentData,
)
from observability import metrics
from .prompts import SYSTEM_PROMPTS, build_message_prompt, build_relevance_prompt

logger = logging.getLogger(__name__)


def _clamp_confidence(value) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


class LLMEmailIntelligence(EmailIntelligencePort):
    """
    EmailIntelligencePort implementation on top of an LLMProviderPort.

    Args:
        provider: LLM provider adapter
        classifier_model: Model for the relevance pre-filter
        parser_model: Model for classification and parsing
        timeout: Per-call timeout in seconds
        parse_threshold: Parser confidence below which results need review
    """

    def __init__(
        self,
        provider: LLMProviderPort,
        classifier_model: str,
        parser_model: str,
        timeout: Optional[float] = None,
        parse_threshold: float = DEFAULT_PARSER_CONFIDENCE_THRESHOLD,
    ):
        self.provider = provider
        self.classifier_model = classifier_model
        self.parser_model = parser_model
        self.timeout = timeout
        self.parse_threshold = parse_threshold

    def is_relevant(
        self,
        subject: str,
        body_preview: str,
        sender: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> bool:
        completion = self._complete(
            AICallType.RELEVANCE_FILTER,
            self.classifier_model,
            build_relevance_prompt(subject, body_preview, sender),
            cancellation,
        )
        payload = completion.parsed_json
        if payload is None or not isinstance(payload.get("is_order_related"), bool):
            logger.warning(f"Unusable relevance response, treating as relevant: {subject[:80]}")
            return True
        return payload["is_order_related"]

    def classify(
        self,
        subject: str,
        body: str,
        sender: str,
        cancellation: Optional[CancellationToken] = None,
    ) -> ClassificationResult:
        completion = self._complete(
            AICallType.CLASSIFY,
            self.parser_model,
            build_message_prompt(subject, body, sender),
            cancellation,
        )
        payload = completion.parsed_json
        if payload is None:
            return ClassificationResult(
                classification_type=None,
                confidence=0.0,
                error="; ".join(completion.warnings) or "empty response",
            )

        raw_type = payload.get("type")
        classification_type = parse_classification_type(raw_type)
        if classification_type is None:
            logger.warning(f"Unknown classification label {raw_type!r} for: {subject[:80]}")
            return ClassificationResult(
                classification_type=None,
                confidence=0.0,
                error=f"unknown classification type {raw_type!r}",
            )

        confidence = _clamp_confidence(payload.get("confidence"))
        logger.info(f"Classified message as {classification_type.value} ({confidence:.2f}): {subject[:80]}")
        return ClassificationResult(
            classification_type=classification_type,
            confidence=confidence,
            secondary_type=parse_classification_type(payload.get("secondary_type")),
        )

    def parse_order(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[OrderEmailData]:
        return self._parse(AICallType.PARSE_ORDER, OrderEmailData, subject, body, sender, retailer_hint, cancellation)

    def parse_shipment(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[ShipmentData]:
        return self._parse(AICallType.PARSE_SHIPMENT, ShipmentData, subject, body, sender, retailer_hint, cancellation)

    def parse_delivery(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[DeliveryData]:
        return self._parse(AICallType.PARSE_DELIVERY, DeliveryData, subject, body, sender, retailer_hint, cancellation)

    def parse_return(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[ReturnData]:
        return self._parse(AICallType.PARSE_RETURN, ReturnData, subject, body, sender, retailer_hint, cancellation)

    def parse_refund(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[RefundData]:
        return self._parse(AICallType.PARSE_REFUND, RefundData, subject, body, sender, retailer_hint, cancellation)

    def parse_cancellation(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[CancellationData]:
        return self._parse(
            AICallType.PARSE_CANCELLATION, CancellationData, subject, body, sender, retailer_hint, cancellation
        )

    def parse_payment(self, subject, body, sender, retailer_hint=None, cancellation=None) -> ParseResult[PaymentData]:
        return self._parse(AICallType.PARSE_PAYMENT, PaymentData, subject, body, sender, retailer_hint, cancellation)

    def _parse(
        self,
        call_type: AICallType,
        model_cls: Type[BaseModel],
        subject: str,
        body: str,
        sender: str,
        retailer_hint: Optional[str],
        cancellation: Optional[CancellationToken],
    ) -> ParseResult:
        completion = self._complete(
            call_type,
            self.parser_model,
            build_message_prompt(subject, body, sender, retailer_hint),
            cancellation,
        )
        payload = completion.parsed_json
        if payload is None:
            return ParseResult.unparseable("; ".join(completion.warnings) or "empty response")

        payload = dict(payload)
        confidence = _clamp_confidence(payload.pop("confidence", None))
        if model_cls is OrderEmailData and "orders" not in payload and "external_order_number" in payload:
            # Single order returned without the list wrapper
            payload = {"orders": [payload]}

        try:
            data = model_cls.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"{call_type.value} output failed validation: {e.error_count()} error(s)")
            metrics.ai_calls_total.labels(
                call_type=call_type.value, provider=completion.provider, status="invalid"
            ).inc()
            return ParseResult.unparseable(f"invalid {call_type.value} output: {e.errors()[0]['msg']}")

        return ParseResult.from_data(data, confidence, threshold=self.parse_threshold)

    def _complete(
        self,
        call_type: AICallType,
        model: str,
        user_prompt: str,
        cancellation: Optional[CancellationToken],
    ) -> LLMCompletion:
        check_cancelled(cancellation)
        timeout = self.timeout
        if cancellation is not None:
            timeout = cancellation.remaining(default=timeout)

        provider = self.provider.provider_name
        try:
            completion = self.provider.complete_json(
                SYSTEM_PROMPTS[call_type], user_prompt, model, timeout=timeout
            )
        except LLMError:
            metrics.ai_calls_total.labels(call_type=call_type.value, provider=provider, status="error").inc()
            raise

        status = "success" if completion.parsed_json is not None else "invalid"
        metrics.ai_calls_total.labels(call_type=call_type.value, provider=provider, status=status).inc()
        metrics.ai_latency_ms.labels(call_type=call_type.value, provider=provider).observe(completion.latency_ms)
        if completion.tokens_in:
            metrics.ai_tokens_total.labels(
                call_type=call_type.value, provider=provider, direction="input"
            ).inc(completion.tokens_in)
        if completion.tokens_out:
            metrics.ai_tokens_total.labels(
                call_type=call_type.value, provider=provider, direction="output"
            ).inc(completion.tokens_out)
        for warning in completion.warnings:
            logger.warning(f"{call_type.value} via {provider}/{model}: {warning}")
        return completion
