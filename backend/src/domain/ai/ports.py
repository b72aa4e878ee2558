"""
LLM Provider Port - Abstract interface for LLM providers.

Hexagonal Architecture: This is a domain port that infrastructure adapters implement.
The email intelligence adapter depends on this port, not on concrete
implementations (OpenAI, Anthropic).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class LLMCompletion:
    """
    Result from a JSON-mode completion call.

    Contains both raw output and parsed result, plus metadata for logging/metrics.

    Attributes:
        raw_output: Raw string response from LLM
        parsed_json: Parsed JSON dict if successful, None if parsing failed
        provider: Provider name (e.g., 'openai', 'anthropic')
        model: Model name (e.g., 'gpt-4o-mini')
        tokens_in: Input tokens used (None if provider doesn't report)
        tokens_out: Output tokens used (None if provider doesn't report)
        latency_ms: Latency in milliseconds
        warnings: List of non-critical warnings
    """
    raw_output: str
    parsed_json: Optional[dict]
    provider: str
    model: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    latency_ms: int = 0
    warnings: list[str] = field(default_factory=list)


class LLMProviderPort(ABC):
    """
    Abstract interface for LLM providers.

    Implementations must handle:
    - API authentication
    - Request formatting for provider
    - Response parsing (JSON object output)
    - Error handling (timeouts, rate limits, invalid responses)
    """

    provider_name: str = "unknown"

    @abstractmethod
    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        timeout: Optional[float] = None,
    ) -> LLMCompletion:
        """
        Run a completion that must answer with a single JSON object.

        Args:
            system_prompt: Instructions describing the expected JSON shape
            user_prompt: Message content to analyze
            model: Model name
            timeout: Per-call timeout in seconds (provider default if None)

        Returns:
            LLMCompletion with raw and parsed output

        Raises:
            LLMTimeoutError: Request timed out
            LLMRateLimitError: Rate limit exceeded
            LLMAuthError: Authentication failed
            LLMServiceError: Provider service unavailable
        """
        pass


# Custom exceptions for LLM operations
class LLMError(Exception):
    """Base exception for LLM operations"""
    pass


class LLMTimeoutError(LLMError):
    """LLM request timed out"""
    pass


class LLMRateLimitError(LLMError):
    """Rate limit exceeded"""
    pass


class LLMAuthError(LLMError):
    """Authentication failed"""
    pass


class LLMServiceError(LLMError):
    """Provider service unavailable or returned error"""
    pass


class LLMInvalidResponseError(LLMError):
    """Provider returned invalid/unexpected response"""
    pass


# Errors worth retrying with the message's retry counter
TRANSIENT_LLM_ERRORS = (LLMTimeoutError, LLMRateLimitError, LLMServiceError)
