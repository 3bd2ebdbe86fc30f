"""OpenAI-compatible chat completions client (SiliconFlow, Ollama, OpenRouter)."""

from typing import Optional
import os
import httpx

from .base import BaseLLMClient, LLMResponse
from .exceptions import LLMError, RateLimitError


class OpenAICompatibleClient(BaseLLMClient):
    """
    Client for any endpoint speaking the ``/chat/completions`` protocol.

    Works with hosted aggregators and with a local Ollama server
    (``http://localhost:11434/v1``, no key required).
    """

    provider = "openai_compat"

    def __init__(
        self,
        model: str,
        api_base: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or os.getenv("OPENAI_COMPAT_API_KEY")
        self.api_base = api_base.rstrip("/")
        self.model = model
        self.client = httpx.AsyncClient(timeout=timeout, transport=transport)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def chat(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Chat completion."""
        formatted_messages = []

        if system:
            formatted_messages.append({
                "role": "system",
                "content": system,
            })

        formatted_messages.extend(messages)

        payload = {
            "model": self.model,
            "messages": formatted_messages,
            "max_tokens": max_tokens,
        }

        if temperature is not None:
            payload["temperature"] = temperature

        try:
            response = await self.client.post(
                f"{self.api_base}/chat/completions",
                headers=self._headers(),
                json=payload,
            )
        except httpx.HTTPError as e:
            raise LLMError(f"Request to {self.api_base} failed: {e}") from e

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            raise RateLimitError(
                provider=self.provider,
                model=self.model,
                message=response.text[:200],
                retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
            )

        try:
            response.raise_for_status()
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (httpx.HTTPStatusError, ValueError, KeyError, IndexError) as e:
            raise LLMError(f"Unexpected response from {self.api_base}: {e}") from e

        usage = data.get("usage") or {}

        return LLMResponse(
            content=content,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            model=self.model,
            stop_reason=data["choices"][0].get("finish_reason"),
        )

    def get_model_name(self) -> str:
        return self.model

    async def aclose(self):
        await self.client.aclose()
