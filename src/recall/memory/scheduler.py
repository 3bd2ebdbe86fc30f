"""Recurring review timer and startup consolidation check."""

import asyncio
import logging
from datetime import timedelta
from typing import Optional, Union

from .consolidator import ConsolidationEngine
from .reviewer import MemoryReviewer
from .types import ReviewResult, TriggerType
from ..config import config

logger = logging.getLogger(__name__)


class ConsolidationScheduler:
    """
    Owns the periodic review task for one memory store.

    ``start()`` runs the time-based consolidation check and a startup
    review, then reviews every ``interval`` until ``stop()``.
    """

    def __init__(
        self,
        reviewer: MemoryReviewer,
        consolidator: ConsolidationEngine,
        interval: Optional[timedelta] = None,
    ):
        self.reviewer = reviewer
        self.consolidator = consolidator
        self.interval = interval or timedelta(minutes=config.memory.review_interval_minutes)
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return

        await self.consolidator.check_time_based_organization()
        await self.run_review(TriggerType.STARTUP)

        self._task = asyncio.create_task(self._loop())
        logger.info("Memory review scheduled every %s", self.interval)

    async def stop(self) -> None:
        """Cancel the timer and wait for it; safe to call more than once."""
        task, self._task = self._task, None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Memory review scheduler stopped")

    async def run_review(
        self,
        trigger_type: Union[TriggerType, str] = TriggerType.MANUAL,
    ) -> ReviewResult:
        """Review whatever is due right now."""
        return await self.reviewer.perform_review(trigger_type=trigger_type)

    async def _loop(self) -> None:
        seconds = self.interval.total_seconds()
        while True:
            try:
                await asyncio.sleep(seconds)
                await self.run_review(TriggerType.PERIODIC)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic memory review failed")
