"""LLM client implementations."""

from .base import BaseLLMClient, LLMResponse
from .factory import create_client, get_provider
from .exceptions import LLMError, RateLimitError

__all__ = [
    "BaseLLMClient",
    "LLMResponse",
    "create_client",
    "get_provider",
    "LLMError",
    "RateLimitError",
]
