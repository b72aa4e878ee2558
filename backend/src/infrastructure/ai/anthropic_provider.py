"""
Anthropic Provider - Concrete implementation of LLMProviderPort for Anthropic Claude.

Claude has no JSON response mode, so the system prompt asks for a bare
JSON object and the reply is unwrapped from a Markdown code fence when
the model adds one anyway.
"""

import os
import time
import json
from typing import Optional

from anthropic import (
    Anthropic,
    APIError,
    APIConnectionError,
    APITimeoutError,
    AuthenticationError,
    RateLimitError,
)

from domain.ai.ports import (
    LLMProviderPort,
    LLMCompletion,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMAuthError,
    LLMServiceError,
)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_TOKENS = 4096


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence if present."""
    stripped = text.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline != -1 else stripped[3:]
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


class AnthropicProvider(LLMProviderPort):
    """
    Anthropic Claude implementation of LLMProviderPort.

    Uses the Messages API; text blocks of the reply are concatenated and
    parsed as one JSON object.
    """

    provider_name = "anthropic"

    def __init__(self, api_key: Optional[str] = None, client: Optional[Anthropic] = None):
        """
        Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            client: Preconfigured client (tests)

        Raises:
            ValueError: If API key is not provided
        """
        if client is not None:
            self.client = client
            return

        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("Anthropic API key not provided. Set ANTHROPIC_API_KEY environment variable.")

        self.client = Anthropic(api_key=self.api_key)

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        timeout: Optional[float] = None,
    ) -> LLMCompletion:
        start_time = time.perf_counter()
        warnings = []

        try:
            response = self.client.messages.create(
                model=model,
                system=system_prompt + "\n\nRespond with a single JSON object and nothing else.",
                messages=[{"role": "user", "content": user_prompt}],
                max_tokens=DEFAULT_MAX_TOKENS,
                temperature=0.0,
                timeout=timeout or DEFAULT_TIMEOUT_SECONDS,
            )
        except APITimeoutError as e:
            raise LLMTimeoutError(f"Anthropic API timeout: {str(e)}")

        except RateLimitError as e:
            raise LLMRateLimitError(f"Anthropic rate limit exceeded: {str(e)}")

        except AuthenticationError as e:
            raise LLMAuthError(f"Anthropic authentication failed: {str(e)}")

        except (APIConnectionError, APIError) as e:
            raise LLMServiceError(f"Anthropic service error: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        raw_output = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )

        parsed_json = None
        try:
            parsed_json = json.loads(strip_code_fence(raw_output))
        except json.JSONDecodeError as e:
            warnings.append(f"Failed to parse LLM JSON output: {str(e)}")
        if parsed_json is not None and not isinstance(parsed_json, dict):
            warnings.append("LLM output is not a JSON object")
            parsed_json = None

        usage = response.usage
        return LLMCompletion(
            raw_output=raw_output,
            parsed_json=parsed_json,
            provider=self.provider_name,
            model=model,
            tokens_in=usage.input_tokens if usage else None,
            tokens_out=usage.output_tokens if usage else None,
            latency_ms=latency_ms,
            warnings=warnings,
        )
