import asyncio
from datetime import timedelta

import pytest

from conftest import FakeLLMClient, make_memory
from recall.memory.consolidator import ConsolidationEngine
from recall.memory.reviewer import MemoryReviewer
from recall.memory.scheduler import ConsolidationScheduler
from recall.memory.types import TriggerType


def _scheduler(store, clock, audit_log, prompts, interval):
    # Unparsable for both consumers: reviews keep everything, organization finds nothing
    llm = FakeLLMClient("no opinion")
    reviewer = MemoryReviewer(store, llm, prompts, clock)
    consolidator = ConsolidationEngine(
        store, llm, audit_log, prompts, clock, threshold=20, interval=timedelta(days=7)
    )
    return ConsolidationScheduler(reviewer, consolidator, interval=interval), llm


@pytest.mark.asyncio
async def test_start_runs_startup_work_and_stop_cancels(store, clock, audit_log, prompts):
    await store.add(make_memory(clock, age_days=2))
    scheduler, llm = _scheduler(store, clock, audit_log, prompts, timedelta(minutes=30))

    await scheduler.start()
    try:
        assert scheduler.running is True
        # Time-based organization (never run before) and the startup review
        assert await store.get_timestamp() == clock()
        sessions = await store.get_review_sessions()
        assert [s.trigger_type for s in sessions] == ["startup"]
        assert len(llm.prompts) == 2
    finally:
        await scheduler.stop()

    assert scheduler.running is False
    await scheduler.stop()


@pytest.mark.asyncio
async def test_periodic_reviews(store, clock, audit_log, prompts):
    await store.add(make_memory(clock, age_days=2))
    scheduler, _ = _scheduler(store, clock, audit_log, prompts, timedelta(milliseconds=20))

    await scheduler.start()
    await asyncio.sleep(0.3)
    await scheduler.stop()

    triggers = [s.trigger_type for s in await store.get_review_sessions(limit=100)]
    assert triggers[-1] == "startup"
    assert "periodic" in triggers

    count = len(triggers)
    await asyncio.sleep(0.1)
    assert len(await store.get_review_sessions(limit=100)) == count


@pytest.mark.asyncio
async def test_periodic_loop_survives_a_failing_run(store, clock, audit_log, prompts, monkeypatch):
    scheduler, _ = _scheduler(store, clock, audit_log, prompts, timedelta(milliseconds=10))
    perform_review = scheduler.reviewer.perform_review
    calls = []

    async def flaky_review(trigger_type=TriggerType.AUTO):
        calls.append(trigger_type)
        if len(calls) == 2:
            raise RuntimeError("review exploded")
        return await perform_review(trigger_type=trigger_type)

    monkeypatch.setattr(scheduler.reviewer, "perform_review", flaky_review)

    await scheduler.start()
    await asyncio.sleep(0.2)
    assert scheduler.running is True
    assert len(calls) > 2

    await scheduler.stop()
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task(store, clock, audit_log, prompts):
    scheduler, _ = _scheduler(store, clock, audit_log, prompts, timedelta(minutes=30))

    await scheduler.start()
    task = scheduler._task
    await scheduler.start()

    assert scheduler._task is task
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_without_start(store, clock, audit_log, prompts):
    scheduler, _ = _scheduler(store, clock, audit_log, prompts, timedelta(minutes=30))
    await scheduler.stop()
    assert scheduler.running is False


@pytest.mark.asyncio
async def test_manual_review(store, clock, audit_log, prompts):
    await store.add(make_memory(clock, age_days=2))
    scheduler, _ = _scheduler(store, clock, audit_log, prompts, timedelta(minutes=30))

    result = await scheduler.run_review()

    assert result.unchanged == 1
    sessions = await store.get_review_sessions()
    assert sessions[0].trigger_type == TriggerType.MANUAL.value
