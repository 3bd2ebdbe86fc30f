from datetime import timedelta

import pytest

from conftest import make_memory
from recall.memory.strength import calculate_strength, with_strength
from recall.memory.types import MemoryType


def test_old_never_accessed_memory(clock):
    memory = make_memory(clock, importance=0.8, age_days=400)
    assert calculate_strength(memory, clock()) == pytest.approx(0.56)


def test_fresh_memory_gets_full_access_boost(clock):
    memory = make_memory(clock, importance=0.5)
    assert calculate_strength(memory, clock()) == pytest.approx(0.75)


def test_recent_access_boosts_old_memory(clock):
    memory = make_memory(clock, importance=0.8, age_days=400)
    memory.last_accessed = clock() - timedelta(days=15)
    # 0.8 * 0.7 * 1.25
    assert calculate_strength(memory, clock()) == pytest.approx(0.7)


def test_core_and_pinned_multipliers(clock):
    core = make_memory(clock, importance=0.5, memory_type=MemoryType.CORE)
    assert calculate_strength(core, clock()) == pytest.approx(0.9)

    pinned = make_memory(clock, importance=0.5, memory_type=MemoryType.CORE, is_pinned=True)
    assert calculate_strength(pinned, clock()) == 1.0


def test_strength_is_bounded(clock):
    for importance in [0.1, 0.5, 1.0]:
        for age in [0, 100, 1000]:
            for pinned in [False, True]:
                memory = make_memory(
                    clock, importance=importance, age_days=age,
                    memory_type=MemoryType.CORE, is_pinned=pinned,
                )
                assert 0.0 <= calculate_strength(memory, clock()) <= 1.0


def test_strength_is_monotonic_in_importance(clock):
    strengths = [
        calculate_strength(make_memory(clock, importance=i / 10, age_days=50), clock())
        for i in range(1, 11)
    ]
    assert all(a <= b for a, b in zip(strengths, strengths[1:]))


def test_with_strength_fills_field(clock):
    memories = [make_memory(clock), make_memory(clock, importance=0.9)]
    assert all(m.strength is None for m in memories)

    with_strength(memories, clock())
    assert all(m.strength is not None for m in memories)
