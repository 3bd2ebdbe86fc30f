"""Base LLM client abstraction."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class LLMResponse:
    """Unified response from LLM."""
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    stop_reason: Optional[str] = None


class BaseLLMClient(ABC):
    """
    Abstract base class for LLM clients.

    The memory engine only needs ``generate(prompt) -> text``; providers
    implement ``chat`` and inherit ``generate``.
    """

    provider: str = "base"

    @abstractmethod
    async def chat(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Chat completion."""
        pass

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 4096,
        temperature: Optional[float] = None,
    ) -> str:
        """Single-turn completion returning raw text."""
        response = await self.chat(
            [{"role": "user", "content": prompt}],
            system=system,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.content

    @abstractmethod
    def get_model_name(self) -> str:
        """Get the current model name."""
        pass

    def set_model(self, model: str):
        """Set the model to use."""
        self.model = model

    async def aclose(self):
        """Release network resources."""
        return None
