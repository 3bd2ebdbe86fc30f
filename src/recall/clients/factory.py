"""Factory for creating LLM clients."""

from typing import Optional

from .base import BaseLLMClient
from ..config import config


def get_provider(model: str) -> str:
    """Guess provider from model name."""
    if model.startswith("claude"):
        return "anthropic"
    return "openai_compat"


def create_client(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    api_base: Optional[str] = None,
    api_key: Optional[str] = None,
) -> BaseLLMClient:
    """
    Create an LLM client.

    Args:
        provider: "anthropic" or "openai_compat" (defaults from config/model)
        model: Model name or shortcut
        api_base: Endpoint for OpenAI-compatible providers
        api_key: Provider API key (uses config/env if not provided)

    Returns:
        Configured LLM client
    """
    model = model or config.models.model
    provider = provider or config.models.provider or get_provider(model)

    if provider == "anthropic":
        from .anthropic_client import AnthropicClient
        return AnthropicClient(
            api_key=api_key or config.api.anthropic_api_key,
            model=model,
        )

    if provider == "openai_compat":
        from .openai_compat_client import OpenAICompatibleClient
        return OpenAICompatibleClient(
            model=model,
            api_base=api_base or config.models.api_base,
            api_key=api_key or config.api.openai_compat_api_key,
        )

    raise ValueError(f"Unknown LLM provider: {provider}")
