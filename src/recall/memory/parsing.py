"""Decoding of noisy LLM output into typed results.

Models wrap JSON in code fences, prepend <think> blocks or get truncated.
``parse_model_json`` returns a tagged result instead of raising, and each
consumer has exactly one decoder that owns its safe default.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .types import (
    ConflictGroup,
    ForgetStrategy,
    Memory,
    MemoryEvaluation,
    ReviewAction,
)

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>[\s\S]*?</think>", re.IGNORECASE)
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
# Shell-style "\;" inside strings is not a valid JSON escape
_BAD_ESCAPE = re.compile(r"\\;")


@dataclass
class JsonOk:
    value: Any


@dataclass
class JsonError:
    reason: str
    raw: str = ""


JsonResult = Union[JsonOk, JsonError]


def clean_model_response(text: str) -> str:
    """Remove <think> blocks and markdown fences."""
    cleaned = _THINK_BLOCK.sub("", text)
    cleaned = _CODE_FENCE.sub("", cleaned)
    return cleaned.strip()


def parse_model_json(text: Optional[str]) -> JsonResult:
    """
    Extract the first JSON object or array from model output.

    Tries the whole (cleaned) text first, then every ``{`` / ``[`` position
    in order until one decodes.
    """
    if not text or not text.strip():
        return JsonError("empty response")

    cleaned = clean_model_response(text)
    variants = [cleaned]
    repaired = _BAD_ESCAPE.sub(r"\\\\;", cleaned)
    if repaired != cleaned:
        variants.append(repaired)

    for variant in variants:
        try:
            return JsonOk(json.loads(variant))
        except json.JSONDecodeError:
            pass

    # Objects before arrays, so a stray "[1]" in prose does not win
    decoder = json.JSONDecoder()
    for opener in ("{", "["):
        for variant in variants:
            start = variant.find(opener)
            while start != -1:
                try:
                    value, _ = decoder.raw_decode(variant, start)
                except json.JSONDecodeError:
                    start = variant.find(opener, start + 1)
                    continue
                return JsonOk(value)

    return JsonError("no JSON value found", raw=cleaned[:200])


def _list_field(value: Any, key: str) -> Optional[list]:
    """``value[key]`` if it is a list, or ``value`` itself when it is a bare list."""
    if isinstance(value, dict):
        items = value.get(key)
        return items if isinstance(items, list) else None
    if isinstance(value, list):
        return value
    return None


def _valid_id(value: Any) -> Optional[int]:
    """Positive JSON integers only; booleans and strings are rejected."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return None


# ==================== Review evaluations ====================

@dataclass
class EvaluationBatch:
    """Decoded evaluator output; ``fallback`` marks the safe default."""

    evaluations: list[MemoryEvaluation] = field(default_factory=list)
    fallback: bool = False
    dropped: int = 0


def all_unchanged(candidates: list[Memory], reason: str) -> EvaluationBatch:
    return EvaluationBatch(
        evaluations=[
            MemoryEvaluation(memory_id=m.id, action=ReviewAction.UNCHANGED, reason=reason)
            for m in candidates
        ],
        fallback=True,
    )


def decode_evaluations(text: Optional[str], candidates: list[Memory]) -> EvaluationBatch:
    """
    Decode ``{"evaluations": [...]}``.

    Unparsable output leaves every candidate unchanged, so a bad response
    can never delete anything. Items with a missing, non-numeric or
    non-positive ``memoryId`` are dropped individually.
    """
    result = parse_model_json(text)
    if isinstance(result, JsonError):
        logger.warning("Review response unparsable (%s); keeping all memories unchanged", result.reason)
        return all_unchanged(candidates, "evaluation failed, kept unchanged")

    items = _list_field(result.value, "evaluations")
    if items is None:
        logger.warning("Review response has no evaluations list; keeping all memories unchanged")
        return all_unchanged(candidates, "evaluation failed, kept unchanged")

    batch = EvaluationBatch()
    for item in items:
        if not isinstance(item, dict):
            logger.error("Dropping non-object evaluation item: %r", item)
            batch.dropped += 1
            continue

        raw_id = item.get("memoryId", item.get("memory_id"))
        memory_id = _valid_id(raw_id)
        if memory_id is None:
            logger.error("Dropping evaluation with invalid memory id: %r", raw_id)
            batch.dropped += 1
            continue

        try:
            action = ReviewAction(str(item.get("action", "unchanged")).lower())
        except ValueError:
            logger.warning("Unknown review action %r for memory %s, treating as unchanged",
                           item.get("action"), memory_id)
            action = ReviewAction.UNCHANGED

        strategy = None
        if action == ReviewAction.FORGET:
            raw_strategy = item.get("forgetStrategy", item.get("forget_strategy"))
            try:
                strategy = ForgetStrategy(str(raw_strategy).lower())
            except ValueError:
                # Downgrade is the reversible choice
                strategy = ForgetStrategy.DOWNGRADE

        batch.evaluations.append(MemoryEvaluation(
            memory_id=memory_id,
            action=action,
            forget_strategy=strategy,
            reason=str(item.get("reason", "")),
        ))

    return batch


# ==================== Conflict analysis ====================

def decode_conflicts(text: Optional[str]) -> list[ConflictGroup]:
    """Decode ``{"conflicts": [...]}``; anything malformed means no conflicts."""
    result = parse_model_json(text)
    if isinstance(result, JsonError):
        logger.info("Conflict analysis unparsable (%s); assuming no conflicts", result.reason)
        return []

    items = _list_field(result.value, "conflicts")
    if items is None:
        logger.info("Conflict analysis has no conflicts list; assuming no conflicts")
        return []

    groups = []
    for item in items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object conflict group: %r", item)
            continue

        keep_id = _valid_id(item.get("keep_id"))
        raw_ids = item.get("conflicting_ids")
        if keep_id is None or not isinstance(raw_ids, list):
            logger.warning("Skipping conflict group with invalid ids: %r", item)
            continue

        conflicting_ids = []
        for raw in raw_ids:
            memory_id = _valid_id(raw)
            if memory_id is None:
                logger.warning("Ignoring invalid conflicting id %r", raw)
                continue
            if memory_id not in conflicting_ids:
                conflicting_ids.append(memory_id)

        groups.append(ConflictGroup(
            description=str(item.get("description", "")),
            conflicting_ids=conflicting_ids,
            keep_id=keep_id,
            reason=str(item.get("reason", "")),
        ))

    return groups


# ==================== Memory generation ====================

def decode_generated_memories(text: Optional[str]) -> list[dict]:
    """Decode ``{"memories": [...]}``; malformed output yields no memories."""
    result = parse_model_json(text)
    if isinstance(result, JsonError):
        logger.info("Memory generation response unparsable (%s)", result.reason)
        return []

    items = _list_field(result.value, "memories")
    if items is None:
        return []

    return [
        item for item in items
        if isinstance(item, dict) and isinstance(item.get("content"), str) and item["content"].strip()
    ]
