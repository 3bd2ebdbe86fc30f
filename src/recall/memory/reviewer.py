"""Spaced review of stored memories: reinforce, downgrade or forget."""

import logging
from datetime import datetime
from typing import Callable, Optional, Union

import aiosqlite

from .exceptions import StoreError
from .parsing import all_unchanged, decode_evaluations
from .store import MemoryStore
from .types import (
    ForgetStrategy,
    ImportanceLevel,
    Memory,
    MemoryEvaluation,
    MIN_IMPORTANCE,
    ReviewAction,
    ReviewResult,
    ReviewSession,
    TriggerType,
    utcnow,
)
from ..clients.base import BaseLLMClient
from ..clients.exceptions import LLMError
from ..config import config
from ..storage.prompts import PromptLibrary

logger = logging.getLogger(__name__)

DOWNGRADE_STEP = 0.2
CONTEXT_CORE_LIMIT = 5
CONTEXT_RECENT_LIMIT = 5


class MemoryReviewer:
    """
    Runs one review pass over the memories that are due.

    collect candidates -> evaluate via LLM -> apply decisions -> persist session.

    A response that cannot be decoded leaves every candidate unchanged, so a
    malformed model answer never deletes anything.
    """

    def __init__(
        self,
        store: MemoryStore,
        llm: BaseLLMClient,
        prompts: Optional[PromptLibrary] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.llm = llm
        self.prompts = prompts or PromptLibrary()
        self.clock = clock

    async def perform_review(
        self,
        memories: Optional[list[Memory]] = None,
        trigger_type: Union[TriggerType, str] = TriggerType.AUTO,
    ) -> ReviewResult:
        """
        Review ``memories`` (or whatever is due) and record a session.

        Args:
            memories: Explicit candidates; defaults to the due-for-review query
            trigger_type: What started this run

        Returns:
            Aggregate counts and the per-item decisions
        """
        trigger = TriggerType(trigger_type).value if isinstance(trigger_type, str) else trigger_type.value
        now = self.clock()

        if memories is None:
            try:
                memories = await self.store.get_memories_to_review(now)
            except (StoreError, aiosqlite.Error) as e:
                logger.error("Could not load memories due for review: %s", e)
                return ReviewResult()

        if not memories:
            logger.info("No memories due for review")
            return ReviewResult()

        logger.info("Reviewing %d memories (trigger: %s)", len(memories), trigger)

        batch = await self._evaluate(memories)
        if batch.dropped:
            logger.warning("Dropped %d evaluations with invalid ids", batch.dropped)

        result = await self._apply(batch.evaluations, memories)

        session = ReviewSession(
            timestamp=now,
            reviewed_count=result.reviewed,
            forgotten_count=result.forgotten,
            unchanged_count=result.unchanged,
            details=result.details,
            trigger_type=trigger,
        )
        try:
            await self.store.add_review_session(session)
        except (StoreError, aiosqlite.Error) as e:
            logger.error("Could not record review session: %s", e)

        logger.info(
            "Review finished: %d reinforced, %d forgotten, %d unchanged",
            result.reviewed, result.forgotten, result.unchanged,
        )
        return result

    async def _build_context(self) -> str:
        lines = []
        try:
            core = (await self.store.get_core_memories())[:CONTEXT_CORE_LIMIT]
            recent = await self.store.get_recently_reviewed(limit=CONTEXT_RECENT_LIMIT)
        except (StoreError, aiosqlite.Error) as e:
            logger.warning("Review context unavailable: %s", e)
            return "(none)"

        if core:
            lines.append("Standing instructions:")
            lines.extend(f"- {m.content}" for m in core)
        if recent:
            lines.append("Recently reinforced:")
            lines.extend(f"- {m.content}" for m in recent)
        return "\n".join(lines) if lines else "(none)"

    async def _evaluate(self, memories: list[Memory]):
        prompt = self.prompts.memory_review(
            [m.to_review_payload() for m in memories],
            await self._build_context(),
        )
        try:
            response = await self.llm.generate(
                prompt,
                max_tokens=config.models.max_tokens,
                temperature=config.models.temperature,
            )
        except LLMError as e:
            logger.error("Memory evaluator unavailable, keeping memories unchanged: %s", e)
            return all_unchanged(memories, "evaluator unavailable, kept unchanged")

        return decode_evaluations(response, memories)

    async def _apply(
        self,
        evaluations: list[MemoryEvaluation],
        candidates: list[Memory],
    ) -> ReviewResult:
        by_id = {m.id: m for m in candidates}
        result = ReviewResult()

        for evaluation in evaluations:
            memory = by_id.get(evaluation.memory_id)
            try:
                if memory is None:
                    memory = await self.store.get(evaluation.memory_id)
                if memory is None:
                    logger.warning("Evaluation for unknown memory %s ignored", evaluation.memory_id)
                    continue

                if evaluation.action == ReviewAction.REVIEW:
                    await self.store.record_review(memory.id)
                    result.reviewed += 1
                elif evaluation.action == ReviewAction.FORGET:
                    await self._forget(memory, evaluation.forget_strategy)
                    result.forgotten += 1
                else:
                    result.unchanged += 1
            except (StoreError, aiosqlite.Error) as e:
                logger.error("Failed to apply %s to memory %s: %s",
                             evaluation.action.value, evaluation.memory_id, e)
                continue

            result.details.append(evaluation.to_dict())

        return result

    async def _forget(self, memory: Memory, strategy: Optional[ForgetStrategy]) -> None:
        if strategy == ForgetStrategy.DELETE:
            await self.store.delete(memory.id)
            logger.info("Forgot memory %s (deleted)", memory.id)
            return

        importance = max(MIN_IMPORTANCE, memory.importance - DOWNGRADE_STEP)
        await self.store.update(
            memory.id,
            importance=importance,
            importance_level=ImportanceLevel.UNIMPORTANT,
        )
        logger.info("Downgraded memory %s to importance %.2f", memory.id, importance)
