import json

import pytest

from conftest import FakeLLMClient, make_memory
from recall.clients.exceptions import LLMError
from recall.config import config
from recall.memory.reviewer import MemoryReviewer
from recall.memory.types import ImportanceLevel, TriggerType


def _reviewer(store, clock, prompts, *responses):
    llm = FakeLLMClient(*responses)
    return MemoryReviewer(store, llm, prompts, clock), llm


@pytest.mark.asyncio
async def test_malformed_response_keeps_everything(store, clock, prompts):
    memories = [await store.add(make_memory(clock, content=f"M{i}")) for i in range(3)]
    reviewer, llm = _reviewer(store, clock, prompts, "```json\n{\"evaluations\": [{\"memoryId\": 1,")

    result = await reviewer.perform_review(memories, TriggerType.MANUAL)

    assert (result.reviewed, result.forgotten, result.unchanged) == (0, 0, 3)
    assert len(await store.get_all()) == 3
    sessions = await store.get_review_sessions()
    assert len(sessions) == 1
    assert sessions[0].unchanged_count == 3
    assert sessions[0].trigger_type == "manual"
    assert len(llm.prompts) == 1


@pytest.mark.asyncio
async def test_apply_decisions(store, clock, prompts):
    keep = await store.add(make_memory(clock, content="reinforce me"))
    gone = await store.add(make_memory(clock, content="delete me"))
    low = await store.add(make_memory(clock, content="downgrade me", importance=0.25))
    mid = await store.add(make_memory(clock, content="downgrade me too", importance=0.8))
    same = await store.add(make_memory(clock, content="leave me"))
    await store.add_relation(keep.id, gone.id)

    response = json.dumps({"evaluations": [
        {"memoryId": keep.id, "action": "review", "reason": "useful"},
        {"memoryId": gone.id, "action": "forget", "forgetStrategy": "delete"},
        {"memoryId": low.id, "action": "forget", "forgetStrategy": "downgrade"},
        {"memoryId": mid.id, "action": "forget", "forgetStrategy": "downgrade"},
        {"memoryId": same.id, "action": "unchanged"},
        {"memoryId": "abc", "action": "forget", "forgetStrategy": "delete"},
        {"memoryId": 0, "action": "forget", "forgetStrategy": "delete"},
    ]})
    reviewer, _ = _reviewer(store, clock, prompts, response)

    result = await reviewer.perform_review(
        [keep, gone, low, mid, same], trigger_type="periodic"
    )

    assert (result.reviewed, result.forgotten, result.unchanged) == (1, 3, 1)
    assert await store.review_count(keep.id) == 1
    assert await store.get(gone.id) is None
    assert await store.get_relations(keep.id) == []

    downgraded = await store.get(low.id)
    assert downgraded.importance == pytest.approx(0.1)
    assert downgraded.importance_level == ImportanceLevel.UNIMPORTANT

    lowered = await store.get(mid.id)
    assert lowered.importance == pytest.approx(0.6)
    assert lowered.importance_level == ImportanceLevel.UNIMPORTANT

    assert (await store.get(same.id)).importance == 0.5

    session = (await store.get_review_sessions())[0]
    assert session.trigger_type == "periodic"
    assert [d["id"] for d in session.details] == [keep.id, gone.id, low.id, mid.id, same.id]


@pytest.mark.asyncio
async def test_unknown_memory_is_skipped(store, clock, prompts):
    memory = await store.add(make_memory(clock))
    response = json.dumps({"evaluations": [
        {"memoryId": 999, "action": "forget", "forgetStrategy": "delete"},
        {"memoryId": memory.id, "action": "review"},
    ]})
    reviewer, _ = _reviewer(store, clock, prompts, response)

    result = await reviewer.perform_review([memory])

    assert (result.reviewed, result.forgotten, result.unchanged) == (1, 0, 0)


@pytest.mark.asyncio
async def test_no_candidates_skips_llm(store, clock, prompts):
    reviewer, llm = _reviewer(store, clock, prompts, '{"evaluations": []}')

    result = await reviewer.perform_review()

    assert result.total == 0
    assert llm.prompts == []
    assert await store.get_review_sessions() == []


@pytest.mark.asyncio
async def test_llm_failure_keeps_everything(store, clock, prompts):
    memories = [await store.add(make_memory(clock, content=f"M{i}")) for i in range(2)]
    reviewer, _ = _reviewer(store, clock, prompts, LLMError("provider down"))

    result = await reviewer.perform_review(memories)

    assert result.unchanged == 2
    assert len(await store.get_all()) == 2


@pytest.mark.asyncio
async def test_reviews_due_memories_by_default(store, clock, prompts):
    due = await store.add(make_memory(clock, content="old"))
    clock.advance(days=2)
    await store.add(make_memory(clock, content="new"))

    def respond(prompt):
        assert "old" in prompt
        return json.dumps({"evaluations": [{"memoryId": due.id, "action": "review"}]})

    reviewer, llm = _reviewer(store, clock, prompts, respond)

    result = await reviewer.perform_review(trigger_type=TriggerType.STARTUP)

    assert result.reviewed == 1
    assert len(llm.prompts) == 1
    assert '"content": "new"' not in llm.prompts[0]
    assert (await store.get_review_sessions())[0].trigger_type == "startup"


@pytest.mark.asyncio
async def test_evaluator_uses_configured_model_settings(store, clock, prompts, monkeypatch):
    monkeypatch.setattr(config.models, "temperature", 0.55)
    monkeypatch.setattr(config.models, "max_tokens", 1024)
    memories = [await store.add(make_memory(clock))]
    reviewer, llm = _reviewer(store, clock, prompts, '{"evaluations": []}')

    await reviewer.perform_review(memories)

    assert llm.settings == [{"max_tokens": 1024, "temperature": 0.55}]
