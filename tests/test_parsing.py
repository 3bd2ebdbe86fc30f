from conftest import make_memory
from recall.memory.parsing import (
    JsonError,
    JsonOk,
    decode_conflicts,
    decode_evaluations,
    decode_generated_memories,
    parse_model_json,
)
from recall.memory.types import ForgetStrategy, ReviewAction


def _candidates(*ids):
    memories = []
    for memory_id in ids:
        memory = make_memory()
        memory.id = memory_id
        memories.append(memory)
    return memories


def test_parse_plain_json():
    assert parse_model_json('{"a": 1}') == JsonOk({"a": 1})


def test_parse_strips_fences_and_think_blocks():
    text = '<think>let me see {not json}</think>\n```json\n{"conflicts": []}\n```'
    assert parse_model_json(text) == JsonOk({"conflicts": []})


def test_parse_finds_embedded_object():
    result = parse_model_json('Sure! Here it is: {"a": [1, 2]} hope that helps')
    assert result == JsonOk({"a": [1, 2]})


def test_parse_prefers_object_over_array():
    result = parse_model_json('See item [1] below: {"ok": true}')
    assert result == JsonOk({"ok": True})


def test_parse_repairs_shell_escape():
    result = parse_model_json(r'{"cmd": "find . -exec rm {} \;"}')
    assert isinstance(result, JsonOk)
    assert result.value["cmd"].endswith(";")


def test_parse_failures_are_tagged():
    assert isinstance(parse_model_json(""), JsonError)
    assert isinstance(parse_model_json(None), JsonError)
    assert isinstance(parse_model_json("no json here"), JsonError)
    assert isinstance(parse_model_json('{"truncated": [1, 2'), JsonError)


def test_malformed_evaluations_keep_everything_unchanged():
    candidates = _candidates(1, 2, 3)
    batch = decode_evaluations("I could not decide", candidates)

    assert batch.fallback is True
    assert [e.memory_id for e in batch.evaluations] == [1, 2, 3]
    assert all(e.action == ReviewAction.UNCHANGED for e in batch.evaluations)


def test_missing_evaluations_list_keeps_everything_unchanged():
    batch = decode_evaluations('{"result": "ok"}', _candidates(7))
    assert batch.fallback is True
    assert batch.evaluations[0].action == ReviewAction.UNCHANGED


def test_decode_evaluations_validates_items():
    text = """
    {"evaluations": [
        {"memoryId": 1, "action": "review", "reason": "useful"},
        {"memoryId": "2", "action": "forget", "forgetStrategy": "delete"},
        {"memoryId": -3, "action": "forget"},
        {"action": "review"},
        {"memoryId": 4, "action": "forget"},
        {"memoryId": 5, "action": "archive"},
        {"memory_id": 6, "action": "FORGET", "forget_strategy": "delete"},
        "junk"
    ]}
    """
    batch = decode_evaluations(text, _candidates(1, 4, 5, 6))

    assert batch.fallback is False
    assert batch.dropped == 4
    decisions = {e.memory_id: e for e in batch.evaluations}
    assert set(decisions) == {1, 4, 5, 6}
    assert decisions[1].action == ReviewAction.REVIEW
    assert decisions[1].reason == "useful"
    assert decisions[4].action == ReviewAction.FORGET
    assert decisions[4].forget_strategy == ForgetStrategy.DOWNGRADE
    assert decisions[5].action == ReviewAction.UNCHANGED
    assert decisions[6].forget_strategy == ForgetStrategy.DELETE


def test_decode_conflicts():
    text = """```json
    {"conflicts": [
        {"description": "city changed", "conflicting_ids": [1, 2, 2], "keep_id": 2, "reason": "newer"},
        {"description": "no survivor", "conflicting_ids": [3, 4]},
        {"description": "bad ids", "conflicting_ids": "3,4", "keep_id": 4}
    ]}
    ```"""
    groups = decode_conflicts(text)

    assert len(groups) == 1
    assert groups[0].conflicting_ids == [1, 2]
    assert groups[0].keep_id == 2
    assert groups[0].reason == "newer"


def test_decode_conflicts_defaults_to_none():
    assert decode_conflicts("nothing conflicts") == []
    assert decode_conflicts('{"conflicts": "none"}') == []
    assert decode_conflicts(None) == []


def test_decode_generated_memories():
    text = '{"memories": [{"content": "Prefers tabs"}, {"content": "  "}, {"keywords": "x"}, 5]}'
    assert decode_generated_memories(text) == [{"content": "Prefers tabs"}]
    assert decode_generated_memories("oops") == []
