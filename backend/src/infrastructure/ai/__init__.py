"""AI Infrastructure - Adapters for LLM providers.

This module contains concrete implementations of AI domain ports.
"""

from .openai_provider import OpenAIProvider
from .anthropic_provider import AnthropicProvider
from .email_intelligence import LLMEmailIntelligence
from .factory import get_llm_provider, build_email_intelligence

__all__ = [
    "OpenAIProvider",
    "AnthropicProvider",
    "LLMEmailIntelligence",
    "get_llm_provider",
    "build_email_intelligence",
]
