from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

import pytest

from recall.clients.base import BaseLLMClient, LLMResponse
from recall.memory.store import MemoryStore
from recall.memory.types import Memory, MemoryType
from recall.storage.audit import AuditLog
from recall.storage.prompts import PromptLibrary


class FakeLLMClient(BaseLLMClient):
    """Returns canned responses in order, repeating the last one."""

    provider = "fake"

    def __init__(self, *responses: Union[str, Exception, Callable[[str], str]]):
        self.responses = list(responses) or ['{"evaluations": []}']
        self.prompts: list[str] = []
        self.settings: list[dict] = []
        self.model = "fake-model"

    async def chat(self, messages, system=None, max_tokens=4096, temperature=None):
        prompt = messages[-1]["content"]
        self.prompts.append(prompt)
        self.settings.append({"max_tokens": max_tokens, "temperature": temperature})
        index = min(len(self.prompts) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(prompt)
        return LLMResponse(content=response, model=self.model)

    def get_model_name(self) -> str:
        return self.model


class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path, clock):
    return MemoryStore(tmp_path / "memories.db", clock=clock)


@pytest.fixture
def audit_log(tmp_path):
    return AuditLog(tmp_path / "audit")


@pytest.fixture
def prompts():
    return PromptLibrary()


def make_memory(
    clock: Optional[FixedClock] = None,
    content: str = "Use pytest for python testing",
    keywords: str = "python,testing",
    importance: float = 0.5,
    memory_type: MemoryType = MemoryType.FACTUAL,
    age_days: float = 0,
    **kwargs,
) -> Memory:
    created = (clock() if clock else datetime.now(timezone.utc)) - timedelta(days=age_days)
    return Memory(
        content=content,
        keywords=keywords,
        importance=importance,
        memory_type=memory_type,
        created_at=created,
        **kwargs,
    )
