"""Tests for the bounded node cache."""

import pytest

from notetree.core.store.cache import NodeCache
from tests.unit.fakes import doc


def test_cache_evicts_oldest_write_past_bound() -> None:
    cache = NodeCache(max_entries=2)
    cache.put(doc("a", 1))
    cache.put(doc("b", 1))
    cache.put(doc("a", 2))
    cache.put(doc("c", 1))
    assert "b" not in cache
    assert [n.id for n in cache.values()] == ["a", "c"]
    node = cache.get("a")
    assert node is not None and node.sort_order == 2


def test_cache_evict_and_clear() -> None:
    cache = NodeCache()
    cache.put_many([doc("a", 1), doc("b", 1)])
    cache.evict("a")
    cache.evict("missing")
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_cache_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError, match="max_entries"):
        NodeCache(max_entries=0)
