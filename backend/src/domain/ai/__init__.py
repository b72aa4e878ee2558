"""AI domain layer - Ports and domain models for the LLM-backed classifier and parsers"""

from .ports import (
    LLMProviderPort,
    LLMCompletion,
    LLMError,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMAuthError,
    LLMServiceError,
    LLMInvalidResponseError,
    TRANSIENT_LLM_ERRORS,
)
from .models import AICallType
from .email_intelligence import (
    EmailIntelligencePort,
    ClassificationResult,
    ParseResult,
)

__all__ = [
    "LLMProviderPort",
    "LLMCompletion",
    "LLMError",
    "LLMTimeoutError",
    "LLMRateLimitError",
    "LLMAuthError",
    "LLMServiceError",
    "LLMInvalidResponseError",
    "TRANSIENT_LLM_ERRORS",
    "AICallType",
    "EmailIntelligencePort",
    "ClassificationResult",
    "ParseResult",
]
