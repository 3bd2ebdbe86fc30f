"""Memory strength estimation."""

from datetime import datetime
from typing import Optional

from .types import Memory, utcnow

SECONDS_PER_DAY = 24 * 60 * 60

# Age decay saturates after a year and removes at most 30%.
AGE_DECAY_DAYS = 365
MAX_AGE_DECAY = 0.3
# Access within the last 30 days boosts by up to 50%.
ACCESS_BOOST_DAYS = 30
MAX_ACCESS_BOOST = 0.5
CORE_MULTIPLIER = 1.2
PINNED_MULTIPLIER = 1.3


def calculate_strength(memory: Memory, now: Optional[datetime] = None) -> float:
    """
    Estimate how alive a memory currently is, in [0, 1].

    Combines importance with age decay, a recency-of-access boost and
    multipliers for core and pinned memories.
    """
    now = now or utcnow()
    age_days = max(0.0, (now - memory.created_at).total_seconds() / SECONDS_PER_DAY)
    last_accessed = memory.last_accessed or memory.created_at
    idle_days = max(0.0, (now - last_accessed).total_seconds() / SECONDS_PER_DAY)

    strength = memory.importance

    age_decay = min(1.0, age_days / AGE_DECAY_DAYS)
    strength *= 1 - age_decay * MAX_AGE_DECAY

    access_boost = max(0.0, 1 - idle_days / ACCESS_BOOST_DAYS)
    strength *= 1 + access_boost * MAX_ACCESS_BOOST

    if memory.is_core:
        strength *= CORE_MULTIPLIER

    if memory.is_pinned:
        strength *= PINNED_MULTIPLIER

    return max(0.0, min(1.0, strength))


def with_strength(memories: list[Memory], now: Optional[datetime] = None) -> list[Memory]:
    """Fill the derived ``strength`` field in place and return the list."""
    for memory in memories:
        memory.strength = calculate_strength(memory, now)
    return memories
