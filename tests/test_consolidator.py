import asyncio
import json
from datetime import timedelta

import pytest

from conftest import FakeLLMClient, make_memory
from recall.clients.exceptions import LLMError
from recall.config import config
from recall.memory.consolidator import ConsolidationEngine
from recall.memory.exceptions import StoreError

NO_CONFLICTS = '{"conflicts": []}'


def _engine(store, clock, audit_log, prompts, *responses, threshold=20):
    llm = FakeLLMClient(*responses)
    engine = ConsolidationEngine(
        store, llm, audit_log, prompts, clock,
        threshold=threshold, interval=timedelta(days=7),
    )
    return engine, llm


@pytest.mark.asyncio
async def test_counter_trigger_runs_at_threshold(store, clock, audit_log, prompts):
    await store.add(make_memory(clock))
    engine, llm = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    for expected in range(1, 20):
        assert await engine.increment_memory_counter() is False
        assert await store.get_counter() == expected
    assert llm.prompts == []

    assert await engine.increment_memory_counter() is True
    assert await store.get_counter() == 0
    assert len(llm.prompts) == 1
    assert await store.get_timestamp() == clock()


@pytest.mark.asyncio
async def test_concurrent_increments_organize_once(store, clock, audit_log, prompts):
    await store.add(make_memory(clock))
    engine, llm = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    triggered = await asyncio.gather(*(engine.increment_memory_counter() for _ in range(25)))

    assert triggered.count(True) == 1
    assert len(llm.prompts) == 1
    assert await store.get_counter() == 5


@pytest.mark.asyncio
async def test_zero_conflicts_deletes_nothing_but_stamps_time(store, clock, audit_log, prompts):
    for i in range(3):
        await store.add(make_memory(clock, content=f"M{i}"))
    engine, _ = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    result = await engine.organize_memories()

    assert result.success is True
    assert result.conflicts_found == 0
    assert result.deleted_ids == []
    assert len(await store.get_all()) == 3
    assert await store.get_timestamp() == clock()


@pytest.mark.asyncio
async def test_malformed_response_means_no_conflicts(store, clock, audit_log, prompts):
    await store.add(make_memory(clock))
    engine, _ = _engine(store, clock, audit_log, prompts, "<think>hmm</think> I found some [1, 2")

    result = await engine.organize_memories()

    assert result.success is True
    assert result.deleted_ids == []
    assert len(await store.get_all()) == 1
    assert await store.get_timestamp() == clock()


@pytest.mark.asyncio
async def test_llm_failure_means_no_conflicts(store, clock, audit_log, prompts):
    await store.add(make_memory(clock))
    engine, _ = _engine(store, clock, audit_log, prompts, LLMError("timeout"))

    result = await engine.organize_memories()

    assert result.success is True
    assert len(await store.get_all()) == 1


@pytest.mark.asyncio
async def test_conflict_resolution_audits_then_deletes(store, clock, audit_log, prompts):
    old = await store.add(make_memory(clock, content="Lives in Beijing", keywords="city"))
    new = await store.add(make_memory(clock, content="Lives in Chengdu", keywords="city"))
    other = await store.add(make_memory(clock, content="Likes tea", keywords="drink"))
    await store.add_relation(other.id, old.id)

    response = json.dumps({"conflicts": [{
        "description": "city changed",
        "conflicting_ids": [old.id, new.id],
        "keep_id": new.id,
        "reason": "newer",
    }]})
    engine, llm = _engine(store, clock, audit_log, prompts, response)

    result = await engine.organize_memories()

    assert result.conflicts_found == 1
    assert result.deleted_ids == [old.id]
    assert await store.get(old.id) is None
    assert await store.get(new.id) is not None
    assert await store.get(other.id) is not None
    assert await store.get_relations(other.id) == []
    assert "Lives in Beijing" in llm.prompts[0]

    entries = await audit_log.read_entries(clock().date())
    assert len(entries) == 1
    assert entries[0].operation_type == "memory_organization"
    assert entries[0].details["kept_memory"]["content"] == "Lives in Chengdu"
    assert entries[0].details["deleted_ids"] == [old.id]
    assert entries[0].details["reason"] == "newer"


@pytest.mark.asyncio
async def test_missing_keep_id_skips_group(store, clock, audit_log, prompts):
    a = await store.add(make_memory(clock, content="A"))
    b = await store.add(make_memory(clock, content="B"))
    response = json.dumps({"conflicts": [
        {"description": "ghost", "conflicting_ids": [a.id, b.id], "keep_id": 999},
    ]})
    engine, _ = _engine(store, clock, audit_log, prompts, response)

    result = await engine.organize_memories()

    assert result.success is True
    assert result.deleted_ids == []
    assert len(await store.get_all()) == 2
    assert await audit_log.read_entries(clock().date()) == []


@pytest.mark.asyncio
async def test_empty_store_skips_llm(store, clock, audit_log, prompts):
    engine, llm = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    result = await engine.organize_memories()

    assert result.success is True
    assert llm.prompts == []
    assert await store.get_timestamp() == clock()


@pytest.mark.asyncio
async def test_store_failure_fails_run(store, clock, audit_log, prompts, monkeypatch):
    engine, _ = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    async def broken():
        raise StoreError("locked")

    monkeypatch.setattr(store, "get_all", broken)

    result = await engine.organize_memories()

    assert result.success is False
    assert "locked" in result.message
    assert await store.get_timestamp() is None


@pytest.mark.asyncio
async def test_time_trigger(store, clock, audit_log, prompts):
    engine, llm = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    # Nothing stored yet
    assert await engine.check_time_based_organization() is False

    await store.add(make_memory(clock))
    await store.set_counter(5)

    # Never organized counts as overdue
    assert await engine.check_time_based_organization() is True
    assert await store.get_counter() == 0

    clock.advance(days=3)
    assert await engine.check_time_based_organization() is False

    clock.advance(days=5)
    assert await engine.check_time_based_organization() is True
    assert await store.get_timestamp() == clock()
    assert len(llm.prompts) == 2


@pytest.mark.asyncio
async def test_manual_trigger_resets_counter(store, clock, audit_log, prompts):
    await store.add(make_memory(clock))
    await store.set_counter(11)
    engine, _ = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    result = await engine.trigger_memory_organization()

    assert result.success is True
    assert await store.get_counter() == 0


@pytest.mark.asyncio
async def test_reset_counter_is_idempotent(store, clock, audit_log, prompts):
    engine, llm = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)
    await store.set_counter(4)

    assert await engine.reset_memory_counter() is True
    assert await engine.reset_memory_counter() is True
    assert await store.get_counter() == 0
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_organization_status(store, clock, audit_log, prompts):
    engine, _ = _engine(store, clock, audit_log, prompts, NO_CONFLICTS, threshold=20)
    await store.set_counter(3)

    status = await engine.get_organization_status()
    assert status["current_counter"] == 3
    assert status["threshold"] == 20
    assert status["last_organization_time"] is None
    assert status["next_organization_in_seconds"] == 0

    await store.set_timestamp(clock())
    clock.advance(days=2)
    status = await engine.get_organization_status()
    assert status["last_organization_time"] is not None
    assert status["next_organization_in_seconds"] == 5 * 24 * 3600
    assert status["time_based_threshold_seconds"] == 7 * 24 * 3600


@pytest.mark.asyncio
async def test_conflict_analysis_uses_organization_temperature(store, clock, audit_log, prompts, monkeypatch):
    monkeypatch.setattr(config.models, "organization_temperature", 0.05)
    await store.add(make_memory(clock))
    engine, llm = _engine(store, clock, audit_log, prompts, NO_CONFLICTS)

    await engine.organize_memories()

    assert llm.settings[0]["temperature"] == 0.05
    assert llm.settings[0]["max_tokens"] == config.models.max_tokens
