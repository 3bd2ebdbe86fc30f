"""Memory retrieval: candidate fetch, relevance ranking and compression."""

import logging
import re
from datetime import datetime
from typing import Callable, Optional

import aiosqlite

from .exceptions import StoreError
from .gate import RetrievalGate
from .scoring import RelevanceScorer, tokenize
from .store import MemoryStore
from .strength import with_strength
from .types import Memory, utcnow
from ..config import config

logger = logging.getLogger(__name__)

# Upper bound on tokens turned into LIKE clauses for the candidate query
MAX_QUERY_TERMS = 24

COMPRESS_TOP_N = 3
COMPRESS_MAX_CHARS = 80

FILLER_PREFIXES = [
    re.compile(r"^(用户|我|你|系统)\s*[:：]?\s*"),
    re.compile(r"^(记住|需要记住|应该记住)\s*[:：]?\s*"),
    re.compile(r"^(the )?user (said|says|mentioned|stated)( that)?\s*[:：]?\s*", re.IGNORECASE),
    re.compile(r"^(please )?remember( that)?\s*[:：]?\s*", re.IGNORECASE),
]

LOCATION_KEYWORDS = [
    "地址", "位置", "城市", "地区", "住址", "家", "公司", "办公室",
    "成都", "北京", "上海", "广州", "深圳", "杭州", "南京", "武汉",
    "经度", "纬度", "坐标", "区域", "街道", "小区", "社区", "所在地",
    "address", "location", "city", "home", "office", "live in", "located",
]


def _rank_score(memory: Memory) -> float:
    return memory.relevance_score * 0.7 + memory.importance * 0.3


def _compress_score(memory: Memory) -> float:
    relevance = memory.relevance_score if memory.relevance_score is not None else 0.5
    importance = memory.importance if memory.importance is not None else 0.5
    return relevance * 0.6 + importance * 0.4


def strip_filler(content: str) -> str:
    for pattern in FILLER_PREFIXES:
        content = pattern.sub("", content, count=1)
    return content


class MemoryRetriever:
    """
    Retrieves relevant memories for an incoming utterance.

    Flow: gate -> candidate fetch -> relevance scoring -> ranking ->
    compression into a short bulleted excerpt for the prompt assembler.
    """

    def __init__(
        self,
        store: MemoryStore,
        scorer: Optional[RelevanceScorer] = None,
        gate: Optional[RetrievalGate] = None,
        clock: Callable[[], datetime] = utcnow,
        threshold: Optional[float] = None,
        max_count: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.scorer = scorer or RelevanceScorer(clock)
        self.gate = gate or RetrievalGate()
        self.threshold = threshold if threshold is not None else config.memory.retrieval_threshold
        self.max_count = max_count if max_count is not None else config.memory.retrieval_max_count

    async def get_relevant_memories(
        self,
        query: str,
        threshold: float = 0.6,
        max_count: int = 5,
    ) -> list[Memory]:
        """
        Score candidates and keep the relevant ones.

        Core memories are always kept and sorted first, whatever their
        score. Other memories need ``relevance_score >= threshold``. Within
        each group the order is 0.7 * relevance + 0.3 * importance. At least
        ``max_count`` entries are returned when available, and never fewer
        than the number of core memories.

        Args:
            query: Text to match against
            threshold: Minimum relevance for non-core memories
            max_count: Result size floor guarantee for non-core results

        Returns:
            Memories with ``relevance_score`` and ``strength`` filled in
        """
        terms = tokenize(query)[:MAX_QUERY_TERMS]
        candidates = await self.store.find_related_memories(
            query, limit=max_count * 2, terms=terms
        )
        if not candidates:
            return []

        now = self.clock()
        seen = set()
        core, other = [], []
        for memory in candidates:
            if memory.id in seen:
                continue
            seen.add(memory.id)
            memory.relevance_score = self.scorer.score(query, memory, now)
            if memory.is_core:
                core.append(memory)
            elif memory.relevance_score >= threshold:
                other.append(memory)

        core.sort(key=_rank_score, reverse=True)
        other.sort(key=_rank_score, reverse=True)

        selected = (core + other)[:max(max_count, len(core))]
        logger.debug(
            "Retrieved %d core and %d relevant memories, returning %d",
            len(core), len(other), len(selected),
        )
        return with_strength(selected, now)

    def compress_memory_content(self, memories: list[Memory]) -> str:
        """
        Render the best memories as a short bulleted list.

        Returns an empty string for no memories, meaning there is no
        memory context to inject.
        """
        if not memories:
            return ""

        top = sorted(memories, key=_compress_score, reverse=True)[:COMPRESS_TOP_N]

        lines = []
        for memory in top:
            content = strip_filler(memory.content.strip())
            if len(content) > COMPRESS_MAX_CHARS:
                content = content[:COMPRESS_MAX_CHARS - 3] + "..."
            lines.append(f"• {content}")

        return "Relevant memories:\n" + "\n".join(lines)

    async def get_location_relevant_memories(self, utterance: str) -> list[Memory]:
        """Prefer memories about places for weather/transit style queries."""
        found: dict[int, Memory] = {}
        for keyword in LOCATION_KEYWORDS:
            for memory in await self.get_relevant_memories(
                keyword,
                config.memory.location_threshold,
                config.memory.location_max_count,
            ):
                found.setdefault(memory.id, memory)

        if not found:
            logger.debug("No location memories, falling back to general retrieval")
            return await self.get_relevant_memories(utterance, self.threshold, self.max_count)

        def location_hits(memory: Memory) -> int:
            content = memory.content.lower()
            return sum(1 for keyword in LOCATION_KEYWORDS if keyword in content)

        ranked = sorted(found.values(), key=location_hits, reverse=True)
        return ranked[:self.max_count]

    async def smart_retrieve(self, utterance: str) -> str:
        """
        Full retrieval path for one conversational turn.

        Returns the compressed excerpt, or "" when retrieval is not needed,
        nothing relevant is stored, or the store fails.
        """
        if not self.gate.should_retrieve_memory(utterance):
            logger.debug("Skipping memory retrieval for simple utterance")
            return ""

        try:
            if self.gate.is_location_dependent(utterance):
                memories = await self.get_location_relevant_memories(utterance)
            else:
                memories = await self.get_relevant_memories(
                    utterance, self.threshold, self.max_count
                )
        except (StoreError, aiosqlite.Error) as e:
            logger.error("Memory retrieval failed, continuing without memories: %s", e)
            return ""

        if not memories:
            logger.debug("No relevant memories found")
            return ""

        compressed = self.compress_memory_content(memories)
        logger.info("Retrieved %d memories (%d chars after compression)",
                    len(memories), len(compressed))
        return compressed
