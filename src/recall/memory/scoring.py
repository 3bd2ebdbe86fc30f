"""Relevance scoring for (query, memory) pairs."""

import re
from datetime import datetime
from typing import Callable, Optional

from .types import ImportanceLevel, Memory, MemorySubType, utcnow

KEYWORD_WEIGHT = 0.35
CONTENT_WEIGHT = 0.25
TYPE_WEIGHT = 0.25
RECENCY_WEIGHT = 0.15

KEYWORD_PARTIAL_CREDIT = 0.5
# Content matches are noisier than curated keywords
CONTENT_PARTIAL_CREDIT = 0.3

LEVEL_BONUS = {
    ImportanceLevel.IMPORTANT: 0.20,
    ImportanceLevel.MODERATE: 0.15,
    ImportanceLevel.UNIMPORTANT: 0.10,
}

SUBTYPE_BONUS = {
    MemorySubType.INSTRUCTION: 0.05,
    MemorySubType.PREFERENCE: 0.03,
    MemorySubType.PROJECT_INFO: 0.03,
    MemorySubType.SOLUTION: 0.02,
}

_NON_WORD = re.compile(r"[^\u4e00-\u9fa5a-zA-Z0-9\s]")
_LATIN_RUN = re.compile(r"[a-zA-Z0-9]+")
_LATIN_OR_SPACE = re.compile(r"[a-zA-Z0-9\s]")


def tokenize(text: str) -> list[str]:
    """
    Split mixed Latin/CJK text into match tokens.

    Latin and digit runs of two or more characters are kept whole. CJK text
    has every contiguous 2-, 3- and 4-character substring emitted, which
    favours recall over precision for short keyword lists.
    """
    clean = _NON_WORD.sub(" ", text.lower())

    words = [w for w in _LATIN_RUN.findall(clean) if len(w) > 1]

    cjk = _LATIN_OR_SPACE.sub("", clean)
    for i in range(len(cjk)):
        for size in (2, 3, 4):
            if i + size <= len(cjk):
                words.append(cjk[i:i + size])

    # Deduplicate preserving order
    return [w for w in dict.fromkeys(words) if len(w) >= 2]


def overlap_score(query_tokens: list[str], target_tokens: list[str], partial_credit: float) -> float:
    """Exact matches count 1.0, substring matches count ``partial_credit``."""
    if not query_tokens or not target_tokens:
        return 0.0

    target_set = set(target_tokens)
    exact = 0
    partial = 0
    for token in query_tokens:
        if token in target_set:
            exact += 1
        elif any(token in other or other in token for other in target_tokens):
            partial += 1

    return (exact + partial * partial_credit) / len(query_tokens)


class RelevanceScorer:
    """
    Scores how pertinent a stored memory is to a query.

    Weighted sum of keyword overlap, content overlap, a type/importance
    bonus and a time-decay term; the result is capped at 1.0.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock

    def score(self, query: str, memory: Memory, now: Optional[datetime] = None) -> float:
        query_tokens = tokenize(query)

        keyword_score = overlap_score(
            query_tokens, tokenize(memory.keywords or ""), KEYWORD_PARTIAL_CREDIT
        )
        content_score = overlap_score(
            query_tokens, tokenize(memory.content or ""), CONTENT_PARTIAL_CREDIT
        )

        score = keyword_score * KEYWORD_WEIGHT
        score += content_score * CONTENT_WEIGHT
        score += self.type_bonus(memory)
        score += self.time_decay(memory, now) * RECENCY_WEIGHT

        return min(1.0, score)

    def type_bonus(self, memory: Memory) -> float:
        """Flat bonus for core memories, level + subtype bonus otherwise."""
        if memory.is_core:
            return TYPE_WEIGHT

        bonus = LEVEL_BONUS.get(memory.importance_level, LEVEL_BONUS[ImportanceLevel.UNIMPORTANT])
        if memory.memory_subtype:
            bonus += SUBTYPE_BONUS.get(memory.memory_subtype, 0.0)
        return bonus

    def time_decay(self, memory: Memory, now: Optional[datetime] = None) -> float:
        """1.0 for a week, then linear to 0.7 at 30 days and 0.3 at 90 days."""
        if memory.is_core:
            return 1.0

        now = now or self.clock()
        days = (now - memory.created_at).total_seconds() / (24 * 60 * 60)

        if days <= 7:
            return 1.0
        if days <= 30:
            return 1.0 - (days - 7) / 23 * 0.3
        if days <= 90:
            return 0.3 + (90 - days) / 60 * 0.4
        return 0.3
