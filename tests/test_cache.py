"""Tests for the TTL cache."""

import pytest
from hypothesis import given, strategies as st

from goldberg_manager.services.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entry_expires_after_ttl() -> None:
    clock = FakeClock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("a", 1)

    clock.now = 9.9
    assert cache.get("a") == 1

    clock.now = 10.0
    assert cache.get("a") is None
    assert "a" not in cache


def test_reading_does_not_extend_lifetime() -> None:
    clock = FakeClock()
    cache = TTLCache(default_ttl=10, clock=clock)
    cache.set("a", 1)

    for t in (3, 6, 9):
        clock.now = t
        assert cache.get("a") == 1

    clock.now = 10
    assert cache.get("a") is None


def test_get_or_create_caches_none() -> None:
    cache = TTLCache()
    calls = []

    def factory() -> None:
        calls.append(1)
        return None

    assert cache.get_or_create("missing", factory) is None
    assert cache.get_or_create("missing", factory) is None
    assert len(calls) == 1


def test_compaction_removes_a_quarter_of_the_oldest_entries() -> None:
    clock = FakeClock()
    cache = TTLCache(size_limit=8, compaction_percentage=0.25, default_ttl=100, clock=clock)
    for i in range(8):
        cache.set(i, i)

    cache.set("new", "value")

    assert len(cache) == 7
    assert 0 not in cache
    assert 1 not in cache
    assert all(i in cache for i in range(2, 8))
    assert cache.get("new") == "value"


def test_compaction_drops_expired_entries_first() -> None:
    clock = FakeClock()
    cache = TTLCache(size_limit=4, default_ttl=100, clock=clock)
    cache.set("keep-1", 1)
    cache.set("short", 2, ttl=1)
    cache.set("keep-2", 3)
    cache.set("keep-3", 4)

    clock.now = 5
    cache.set("new", 5)

    assert "short" not in cache
    assert all(k in cache for k in ("keep-1", "keep-2", "keep-3", "new"))


def test_overwriting_a_key_does_not_compact() -> None:
    cache = TTLCache(size_limit=2)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("a", 3)

    assert len(cache) == 2
    assert cache.get("a") == 3


def test_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        TTLCache(size_limit=0)
    with pytest.raises(ValueError):
        TTLCache(compaction_percentage=0)


@given(st.lists(st.integers(), max_size=200), st.integers(min_value=1, max_value=50))
def test_size_never_exceeds_limit(keys: list[int], limit: int) -> None:
    cache = TTLCache(size_limit=limit)
    for key in keys:
        cache.set(key, key)
        assert len(cache) <= limit
