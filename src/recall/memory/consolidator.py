"""Memory consolidation: counter/time triggered conflict resolution."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import aiosqlite

from .exceptions import StoreError
from .parsing import decode_conflicts
from .store import MemoryStore
from .types import ConflictGroup, Memory, OrganizationResult, utcnow
from ..clients.base import BaseLLMClient
from ..clients.exceptions import LLMError
from ..config import config
from ..storage.audit import AuditEntry, AuditLog
from ..storage.prompts import PromptLibrary

logger = logging.getLogger(__name__)


class ConsolidationEngine:
    """
    Detects and resolves conflicting memories across the whole corpus.

    Triggers:
    - Counter: every creation increments ``memory_counter``; reaching the
      threshold runs consolidation and resets the counter
    - Time: when the last run is older than the interval (checked at startup)
    - Manual: ``trigger_memory_organization``

    Each resolved conflict is written to the audit log before any deletion.
    """

    def __init__(
        self,
        store: MemoryStore,
        llm: BaseLLMClient,
        audit_log: Optional[AuditLog] = None,
        prompts: Optional[PromptLibrary] = None,
        clock: Callable[[], datetime] = utcnow,
        threshold: Optional[int] = None,
        interval: Optional[timedelta] = None,
    ):
        self.store = store
        self.llm = llm
        self.audit_log = audit_log or AuditLog()
        self.prompts = prompts or PromptLibrary()
        self.clock = clock
        self.threshold = threshold if threshold is not None else config.memory.organization_threshold
        self.interval = interval or timedelta(days=config.memory.organization_interval_days)
        # Serializes increment -> compare -> organize -> reset
        self._lock = asyncio.Lock()

    # ==================== Triggers ====================

    async def increment_memory_counter(self) -> bool:
        """
        Count one memory creation.

        Returns:
            True if this creation triggered a consolidation run
        """
        async with self._lock:
            count = await self.store.increment_counter()
            logger.debug("Memory counter now %d/%d", count, self.threshold)
            if count < self.threshold:
                return False

            logger.info("Memory counter reached %d, organizing memories", count)
            await self._organize_and_reset()
            return True

    async def check_time_based_organization(self) -> bool:
        """
        Run consolidation if the last run is older than the interval.

        Nothing happens on an empty store. A store that was never organized
        counts as overdue.
        """
        async with self._lock:
            if await self.store.count() == 0:
                return False

            last = await self.store.get_timestamp()
            if last is not None and self.clock() - last <= self.interval:
                return False

            logger.info("Last organization at %s is overdue, organizing memories", last)
            await self._organize_and_reset()
            return True

    async def trigger_memory_organization(self) -> OrganizationResult:
        """Manual run; the counter is reset when the run succeeds."""
        async with self._lock:
            return await self._organize_and_reset()

    async def reset_memory_counter(self) -> bool:
        """Set the counter back to zero without organizing."""
        try:
            await self.store.set_counter(0)
        except (StoreError, aiosqlite.Error) as e:
            logger.error("Failed to reset memory counter: %s", e)
            return False
        logger.info("Memory counter reset")
        return True

    async def _organize_and_reset(self) -> OrganizationResult:
        result = await self.organize_memories()
        if result.success:
            await self.reset_memory_counter()
        return result

    # ==================== Organization ====================

    async def organize_memories(self) -> OrganizationResult:
        """
        Find conflict groups with the LLM and delete all but the survivor.

        A malformed or failed LLM answer means no conflicts. The
        ``last_memory_organization`` timestamp is updated on every completed
        run, conflicts or not. A failing single-shot store query aborts the
        run with ``success=False``.
        """
        try:
            return await self._organize()
        except (StoreError, aiosqlite.Error) as e:
            logger.error("Memory organization failed: %s", e)
            return OrganizationResult(success=False, message=f"Memory organization failed: {e}")

    async def _organize(self) -> OrganizationResult:
        memories = await self.store.get_all()
        if not memories:
            await self.store.set_timestamp(self.clock())
            return OrganizationResult(success=True, message="No memories to organize")

        conflicts = await self._find_conflicts(memories)

        deleted: list[int] = []
        for group in conflicts:
            deleted.extend(await self._resolve(group))

        await self.store.set_timestamp(self.clock())

        message = (
            f"Found {len(conflicts)} conflict groups, deleted {len(deleted)} memories"
            if conflicts else "No conflicts found"
        )
        logger.info("Memory organization complete: %s", message)
        return OrganizationResult(
            success=True,
            message=message,
            conflicts_found=len(conflicts),
            deleted_ids=deleted,
        )

    async def _find_conflicts(self, memories: list[Memory]) -> list[ConflictGroup]:
        prompt = self.prompts.conflict_analysis(
            [m.to_organization_payload() for m in memories]
        )
        try:
            response = await self.llm.generate(
                prompt,
                max_tokens=config.models.max_tokens,
                temperature=config.models.organization_temperature,
            )
        except LLMError as e:
            logger.error("Conflict analysis unavailable, assuming no conflicts: %s", e)
            return []
        return decode_conflicts(response)

    async def _resolve(self, group: ConflictGroup) -> list[int]:
        """Audit then delete one conflict group; returns the ids removed."""
        try:
            keep = await self.store.get(group.keep_id)
        except (StoreError, aiosqlite.Error) as e:
            logger.error("Could not load kept memory %s: %s", group.keep_id, e)
            return []
        if keep is None:
            logger.warning("Skipping conflict group, kept memory %s does not exist", group.keep_id)
            return []

        to_delete = [i for i in group.conflicting_ids if i != group.keep_id]
        if not to_delete:
            return []

        entry = AuditEntry.for_organization(self.clock(), {
            "description": group.description,
            "kept_memory": keep.to_dict(),
            "conflicting_ids": group.conflicting_ids,
            "deleted_ids": to_delete,
            "reason": group.reason,
        })
        try:
            await self.audit_log.append(entry)
        except OSError as e:
            logger.error("Audit write failed, keeping conflict group %s intact: %s",
                         group.conflicting_ids, e)
            return []

        try:
            removed = await self.store.delete_many(to_delete)
        except StoreError as e:
            logger.error("Failed to delete conflicting memories %s: %s", to_delete, e)
            return []

        logger.info("Resolved conflict (%s): kept %s, deleted %s",
                    group.description, group.keep_id, removed)
        return removed

    # ==================== Status ====================

    async def get_organization_status(self) -> dict[str, Any]:
        """Counter progress and time until the time trigger fires."""
        counter = await self.store.get_counter()
        last = await self.store.get_timestamp()

        if last is None:
            next_in = timedelta(0)
        else:
            next_in = max(timedelta(0), self.interval - (self.clock() - last))

        return {
            "current_counter": counter,
            "threshold": self.threshold,
            "last_organization_time": last.isoformat() if last else None,
            "next_organization_in_seconds": int(next_in.total_seconds()),
            "time_based_threshold_seconds": int(self.interval.total_seconds()),
        }
