"""
OpenAI Provider - Concrete implementation of LLMProviderPort for OpenAI.

Runs JSON-mode chat completions against OpenAI's GPT models (gpt-4o-mini
for the relevance pre-filter, gpt-4o for classification and parsing).
"""

import os
import time
import json
from typing import Optional

from openai import OpenAI, APIError, RateLimitError, APIConnectionError, APITimeoutError, AuthenticationError

from domain.ai.ports import (
    LLMProviderPort,
    LLMCompletion,
    LLMTimeoutError,
    LLMRateLimitError,
    LLMAuthError,
    LLMServiceError,
)

DEFAULT_TIMEOUT_SECONDS = 30.0


class OpenAIProvider(LLMProviderPort):
    """
    OpenAI implementation of LLMProviderPort.

    Uses OpenAI Python SDK (v1.x+) with structured output (JSON mode).
    Handles authentication, request formatting, response parsing, error handling.
    """

    provider_name = "openai"

    def __init__(self, api_key: Optional[str] = None, client: Optional[OpenAI] = None):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key (defaults to OPENAI_API_KEY env var)
            client: Preconfigured client (tests)

        Raises:
            ValueError: If API key is not provided
        """
        if client is not None:
            self.client = client
            return

        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key not provided. Set OPENAI_API_KEY environment variable.")

        self.client = OpenAI(api_key=self.api_key)

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        timeout: Optional[float] = None,
    ) -> LLMCompletion:
        """
        Make a JSON-mode completion call with error handling.

        Raises:
            LLMTimeoutError, LLMRateLimitError, LLMAuthError, LLMServiceError
        """
        start_time = time.perf_counter()
        warnings = []
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt}
        ]

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                response_format={"type": "json_object"},
                temperature=0.0,  # Deterministic for classification
                timeout=timeout or DEFAULT_TIMEOUT_SECONDS
            )
        except APITimeoutError as e:
            raise LLMTimeoutError(f"OpenAI API timeout: {str(e)}")

        except RateLimitError as e:
            raise LLMRateLimitError(f"OpenAI rate limit exceeded: {str(e)}")

        except AuthenticationError as e:
            raise LLMAuthError(f"OpenAI authentication failed: {str(e)}")

        except (APIConnectionError, APIError) as e:
            raise LLMServiceError(f"OpenAI service error: {str(e)}")

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        raw_output = response.choices[0].message.content or ""

        parsed_json = None
        try:
            parsed_json = json.loads(raw_output)
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
            tokens_in=usage.prompt_tokens if usage else None,
            tokens_out=usage.completion_tokens if usage else None,
            latency_ms=latency_ms,
            warnings=warnings
        )
