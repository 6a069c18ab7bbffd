"""Tests for the catalog TTL cache."""

import time

from pcbuilder_mcp.cache import TTLCache


class TestTTLCache:
    """Tests for TTLCache."""

    def test_get_set(self):
        cache = TTLCache(ttl=60)
        cache.set("component:a", 1)
        assert cache.get("component:a") == 1
        assert cache.get("component:b") is None
        assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}

    def test_expiry(self, monkeypatch):
        cache = TTLCache(ttl=10)
        cache.set("k", "v")
        now = time.time()
        monkeypatch.setattr(time, "time", lambda: now + 11)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_get_many(self):
        cache = TTLCache(ttl=60)
        cache.set(TTLCache.key("component", "a"), "A")
        found, missing = cache.get_many("component", ["a", "b", "c", "b"])
        assert found == {"a": "A"}
        assert missing == ["b", "c"]

    def test_invalidate_namespace(self):
        cache = TTLCache(ttl=60)
        cache.set("rules:cpu,motherboard", [])
        cache.set("component:a", 1)
        assert cache.invalidate("rules:") == 1
        assert cache.get("component:a") == 1
        assert cache.invalidate() == 1
        assert len(cache) == 0

    def test_evicts_oldest(self):
        cache = TTLCache(ttl=60, max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)  # refreshed, now newest
        cache.set("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 10
        assert cache.get("c") == 3
