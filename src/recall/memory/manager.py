"""Memory manager for orchestrating memory operations."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Union

import aiosqlite

from .consolidator import ConsolidationEngine
from .exceptions import StoreError
from .gate import RetrievalGate
from .parsing import decode_generated_memories
from .retriever import MemoryRetriever
from .reviewer import MemoryReviewer
from .scheduler import ConsolidationScheduler
from .scoring import RelevanceScorer
from .store import MemoryStore, validate_memory_id
from .strength import calculate_strength, with_strength
from .types import (
    ImportanceLevel,
    Memory,
    MemoryQuery,
    MemorySubType,
    MemoryType,
    OrganizationResult,
    ReviewResult,
    ReviewSession,
    TriggerType,
    clamp_importance,
    utcnow,
)
from ..clients.base import BaseLLMClient
from ..clients.exceptions import LLMError
from ..clients.factory import create_client
from ..config import config
from ..storage.audit import AuditLog
from ..storage.prompts import PromptLibrary

logger = logging.getLogger(__name__)


def _as_enum(enum_cls, value, default=None):
    if value is None or isinstance(value, enum_cls):
        return value if value is not None else default
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return default


class MemoryManager:
    """
    High-level manager for the memory lifecycle engine.

    Provides unified API for:
    - Creating memories (explicitly or generated from a conversation)
    - Retrieving relevant memories for a turn
    - Reviewing and consolidating the stored corpus
    - Running the periodic review scheduler
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        llm: Optional[BaseLLMClient] = None,
        audit_log: Optional[AuditLog] = None,
        prompts: Optional[PromptLibrary] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.clock = clock
        self.llm = llm or create_client()
        self.prompts = prompts or PromptLibrary()
        self.store = MemoryStore(db_path, clock=clock)
        self.gate = RetrievalGate()
        self.retriever = MemoryRetriever(
            self.store, scorer=RelevanceScorer(clock), gate=self.gate, clock=clock
        )
        self.reviewer = MemoryReviewer(self.store, self.llm, self.prompts, clock)
        self.consolidator = ConsolidationEngine(
            self.store, self.llm, audit_log or AuditLog(), self.prompts, clock
        )
        self.scheduler = ConsolidationScheduler(self.reviewer, self.consolidator)
        self._initialized = False

    async def initialize(self):
        """Initialize the memory system."""
        if self._initialized:
            return
        await self.store.initialize()
        self._initialized = True

    async def start(self):
        """Initialize storage and start the review scheduler."""
        await self.initialize()
        await self.scheduler.start()

    async def close(self):
        """Stop the scheduler and release the LLM client."""
        await self.scheduler.stop()
        await self.llm.aclose()

    # ==================== Create ====================

    async def create_memory(
        self,
        content: str,
        keywords: str = "",
        context: str = "",
        importance: float = 0.5,
        memory_type: Union[MemoryType, str] = MemoryType.FACTUAL,
        memory_subtype: Union[MemorySubType, str, None] = None,
        is_pinned: bool = False,
        importance_level: Union[ImportanceLevel, str, None] = None,
        related_ids: Optional[list[int]] = None,
    ) -> Memory:
        """
        Store a new memory and count it towards consolidation.

        Args:
            content: Memory body
            keywords: Comma-joined search terms
            context: Where the memory came from
            importance: Clamped into [0.1, 1.0]
            memory_type: core or factual
            memory_subtype: Optional finer classification
            is_pinned: Pin the memory
            importance_level: Derived from importance when omitted
            related_ids: Existing memories to link to

        Returns:
            Created memory with its id
        """
        await self.initialize()

        if not content or not content.strip():
            raise ValueError("Memory content must not be empty")

        memory = Memory(
            content=content.strip(),
            keywords=keywords or "",
            context=context or "",
            importance=clamp_importance(float(importance)),
            importance_level=_as_enum(ImportanceLevel, importance_level),
            memory_type=_as_enum(MemoryType, memory_type, MemoryType.FACTUAL),
            memory_subtype=_as_enum(MemorySubType, memory_subtype),
            is_pinned=bool(is_pinned),
            created_at=self.clock(),
        )

        links = []
        for related_id in related_ids or []:
            if await self.store.exists(validate_memory_id(related_id)):
                links.append(related_id)
            else:
                logger.warning("Not linking to missing memory %s", related_id)

        memory = await self.store.add(memory, links)
        logger.info("Created %s memory %s", memory.memory_type.value, memory.id)

        try:
            await self.consolidator.increment_memory_counter()
        except (StoreError, aiosqlite.Error) as e:
            logger.error("Memory counter update failed after creating %s: %s", memory.id, e)

        return memory

    async def generate_memories(self, conversation: str) -> list[Memory]:
        """
        Extract memories from a conversation with the LLM and store them.

        Malformed output creates nothing; a failing item does not stop the rest.
        """
        prompt = self.prompts.memory_generation(conversation)
        try:
            response = await self.llm.generate(
                prompt,
                max_tokens=config.models.max_tokens,
                temperature=config.models.temperature,
            )
        except LLMError as e:
            logger.error("Memory generation unavailable: %s", e)
            return []

        created = []
        for item in decode_generated_memories(response):
            try:
                importance = float(item.get("importance", 0.5))
            except (TypeError, ValueError):
                importance = 0.5
            try:
                created.append(await self.create_memory(
                    content=item["content"],
                    keywords=str(item.get("keywords") or ""),
                    context=str(item.get("context") or conversation[:200]),
                    importance=importance,
                    memory_type=item.get("memory_type") or MemoryType.FACTUAL,
                    memory_subtype=item.get("memory_subtype"),
                    is_pinned=bool(item.get("is_pinned", False)),
                ))
            except (StoreError, aiosqlite.Error) as e:
                logger.error("Failed to store generated memory: %s", e)

        logger.info("Generated %d memories from conversation", len(created))
        return created

    # ==================== Read ====================

    async def get_memory(self, memory_id: int) -> Optional[tuple[Memory, list[Memory]]]:
        """
        Fetch a memory with its related memories and mark it accessed.

        Returns:
            (memory, related) or None if it does not exist
        """
        await self.initialize()
        validate_memory_id(memory_id)

        memory = await self.store.get(memory_id)
        if memory is None:
            return None

        now = self.clock()
        await self.store.touch(memory_id)
        memory.last_accessed = now
        memory.strength = calculate_strength(memory, now)
        related = with_strength(await self.store.get_related_memories(memory_id), now)
        return memory, related

    async def search(
        self,
        query: str = "*",
        memory_type: Optional[MemoryType] = None,
        memory_subtype: Optional[MemorySubType] = None,
        importance_level: Optional[ImportanceLevel] = None,
        limit: int = 10,
    ) -> list[Memory]:
        await self.initialize()
        return await self.store.search(MemoryQuery(
            text=query,
            memory_type=memory_type,
            memory_subtype=memory_subtype,
            importance_level=importance_level,
            limit=limit,
        ))

    async def list_memories(
        self,
        memory_type: Optional[MemoryType] = None,
        limit: int = 20,
    ) -> list[Memory]:
        """List newest memories, optionally of one type."""
        return await self.search("*", memory_type=memory_type, limit=limit)

    async def get_relevant_memories(
        self,
        query: str,
        threshold: float = 0.6,
        max_count: int = 5,
    ) -> list[Memory]:
        await self.initialize()
        return await self.retriever.get_relevant_memories(query, threshold, max_count)

    async def smart_retrieve(self, utterance: str) -> str:
        """Compressed memory context for a turn, or "" for none."""
        await self.initialize()
        return await self.retriever.smart_retrieve(utterance)

    def should_create_memory(self, utterance: str) -> bool:
        return self.gate.should_create_memory(utterance)

    # ==================== Update / delete ====================

    async def update_memory(self, memory_id: int, **fields) -> Memory:
        """
        Update fields of a memory.

        A new importance is clamped and, unless a level is given too,
        re-derives ``importance_level``.
        """
        await self.initialize()
        validate_memory_id(memory_id)

        if "importance" in fields:
            fields["importance"] = clamp_importance(float(fields["importance"]))
            if fields.get("importance_level") is None:
                fields["importance_level"] = ImportanceLevel.from_value(fields["importance"])
        return await self.store.update(memory_id, **fields)

    async def delete_memory(self, memory_id: int) -> bool:
        await self.initialize()
        validate_memory_id(memory_id)
        deleted = await self.store.delete(memory_id)
        if deleted:
            logger.info("Deleted memory %s", memory_id)
        return deleted

    async def reinforce_memory(self, memory_id: int) -> None:
        """Record a review event for a memory."""
        await self.initialize()
        await self.store.record_review(memory_id)

    # ==================== Relations ====================

    async def add_relation(self, memory_id: int, related_memory_id: int, strength: float = 1.0) -> bool:
        await self.initialize()
        return await self.store.add_relation(
            validate_memory_id(memory_id), validate_memory_id(related_memory_id), strength
        )

    async def delete_relation(self, memory_id: int, related_memory_id: int) -> bool:
        await self.initialize()
        return await self.store.delete_relation(memory_id, related_memory_id)

    async def get_related_memories(self, memory_id: int) -> list[Memory]:
        await self.initialize()
        return await self.store.get_related_memories(memory_id)

    # ==================== Review / consolidation ====================

    async def review_memories(
        self,
        trigger_type: Union[TriggerType, str] = TriggerType.MANUAL,
    ) -> ReviewResult:
        await self.initialize()
        return await self.scheduler.run_review(trigger_type)

    async def organize_memories(self) -> OrganizationResult:
        await self.initialize()
        return await self.consolidator.trigger_memory_organization()

    async def reset_memory_counter(self) -> bool:
        await self.initialize()
        return await self.consolidator.reset_memory_counter()

    async def get_organization_status(self) -> dict[str, Any]:
        await self.initialize()
        return await self.consolidator.get_organization_status()

    async def get_review_history(self, limit: int = 20) -> list[ReviewSession]:
        await self.initialize()
        return await self.store.get_review_sessions(limit)

    async def get_stats(self) -> dict:
        """
        Get memory statistics.

        Returns:
            Statistics dictionary
        """
        await self.initialize()

        return {
            "total": await self.store.count(),
            "core": await self.store.count(MemoryType.CORE),
            "factual": await self.store.count(MemoryType.FACTUAL),
            "by_level": await self.store.count_by_level(),
            "due_for_review": len(await self.store.get_memories_to_review(self.clock())),
            "memory_counter": await self.store.get_counter(),
        }

    def __repr__(self) -> str:
        return f"MemoryManager(initialized={self._initialized})"
