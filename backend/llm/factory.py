"""
LLM provider factory module.
Creates a fresh provider instance per request from configuration.
"""

import logging
from typing import Dict, List, Optional

import httpx

from config import Settings, get_settings
from llm.base import LLMProvider
from llm.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

# ============================================================
# Provider Registry
# ============================================================
PROVIDERS: Dict[str, type] = {
    "openai": OpenAIProvider,
}


def create_provider(
    settings: Optional[Settings] = None,
    provider_name: str = "openai",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LLMProvider:
    """
    Create a provider instance with credentials injected from settings.

    Args:
        settings: Application settings (defaults to the cached settings)
        provider_name: Registered provider name
        transport: Optional httpx transport (tests use MockTransport)

    Raises:
        ValueError: If the provider name is not registered
    """
    settings = settings or get_settings()
    provider_class = PROVIDERS.get(provider_name.lower())

    if not provider_class:
        logger.error(f"Unknown provider: {provider_name}")
        raise ValueError(f"Unknown provider: {provider_name}")

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; provider calls will be rejected upstream")

    return provider_class(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.provider_timeout_seconds,
        transport=transport,
    )


def get_available_providers() -> List[str]:
    """Get list of all supported provider names."""
    return list(PROVIDERS.keys())
