"""Provider selection for the email intelligence adapter"""

import logging
from typing import Optional

from config import Settings, get_settings
from domain.ai.ports import LLMProviderPort
from .anthropic_provider import AnthropicProvider
from .email_intelligence import LLMEmailIntelligence
from .openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    "openai": lambda s: OpenAIProvider(api_key=s.OPENAI_API_KEY),
    "anthropic": lambda s: AnthropicProvider(api_key=s.ANTHROPIC_API_KEY),
}


def get_llm_provider(settings: Optional[Settings] = None) -> LLMProviderPort:
    """Build the provider named by LLM_PROVIDER.

    Raises:
        ValueError: Unknown provider name or missing API key
    """
    settings = settings or get_settings()
    name = settings.LLM_PROVIDER.strip().lower()
    if name not in PROVIDERS:
        raise ValueError(f"Unknown LLM_PROVIDER '{settings.LLM_PROVIDER}'. Expected one of: {sorted(PROVIDERS)}")
    logger.debug(f"Using LLM provider: {name}")
    return PROVIDERS[name](settings)


def build_email_intelligence(
    settings: Optional[Settings] = None,
    provider: Optional[LLMProviderPort] = None,
) -> LLMEmailIntelligence:
    settings = settings or get_settings()
    return LLMEmailIntelligence(
        provider=provider or get_llm_provider(settings),
        classifier_model=settings.CLASSIFIER_MODEL,
        parser_model=settings.PARSER_MODEL,
        timeout=settings.LLM_TIMEOUT_SECONDS,
        parse_threshold=settings.PARSER_CONFIDENCE_THRESHOLD,
    )
