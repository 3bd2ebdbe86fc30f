"""Anthropic Claude client implementation."""

from typing import Optional
from anthropic import AsyncAnthropic, APIError, RateLimitError as AnthropicRateLimitError

from .base import BaseLLMClient, LLMResponse
from .exceptions import LLMError, RateLimitError


class AnthropicClient(BaseLLMClient):
    """Client for Anthropic Claude models."""

    provider = "anthropic"

    # Shortcuts
    MODELS = {
        "claude-sonnet": "claude-sonnet-4-5-20250929",
        "claude-haiku": "claude-haiku-4-5-20251001",
        "claude-opus": "claude-opus-4-20250514",
    }

    def __init__(self, api_key: Optional[str] = None, model: str = "claude-haiku"):
        self.client = AsyncAnthropic(api_key=api_key) if api_key else AsyncAnthropic()
        self.model = self.MODELS.get(model, model)

    async def chat(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Chat completion via the Messages API."""
        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": messages,
        }

        if system:
            kwargs["system"] = system

        if temperature is not None:
            kwargs["temperature"] = temperature

        try:
            response = await self.client.messages.create(**kwargs)
        except AnthropicRateLimitError as e:
            raise RateLimitError(
                provider="anthropic",
                model=self.model,
                message=str(e),
            ) from e
        except APIError as e:
            raise LLMError(f"Anthropic request failed: {e}") from e

        # Extract text content
        content = ""
        for block in response.content:
            if hasattr(block, "text"):
                content += block.text

        return LLMResponse(
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=self.model,
            stop_reason=response.stop_reason,
        )

    def get_model_name(self) -> str:
        return self.model

    async def aclose(self):
        await self.client.close()
