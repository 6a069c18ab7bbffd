"""TTL cache for remote catalog data (components, rules, category listings)."""

import time
from typing import Any


class TTLCache:
    """Namespaced TTL cache with oldest-first eviction.

    Keys are "namespace:id" strings so a whole namespace can be invalidated
    after an administrator edits rules or specifications.
    Not locked: callers run on one asyncio loop with no await between get and set.
    """

    def __init__(self, ttl: float, max_size: int = 5000):
        self._ttl = ttl
        self._max_size = max_size
        self._data: dict[str, tuple[float, Any]] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(namespace: str, ident: str) -> str:
        return f"{namespace}:{ident}"

    def _fresh(self, key: str, now: float) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        if now - entry[0] >= self._ttl:
            del self._data[key]
            return False
        return True

    def get(self, key: str) -> Any | None:
        """Cached value, or None if missing or expired."""
        if self._fresh(key, time.time()):
            self.hits += 1
            return self._data[key][1]
        self.misses += 1
        return None

    def get_many(self, namespace: str, idents: list[str]) -> tuple[dict[str, Any], list[str]]:
        """Split idents into (cached values by ident, idents still to fetch), keeping order."""
        now = time.time()
        found: dict[str, Any] = {}
        missing: list[str] = []
        for ident in idents:
            key = self.key(namespace, ident)
            if self._fresh(key, now):
                found[ident] = self._data[key][1]
            elif ident not in missing:
                missing.append(ident)
        self.hits += len(found)
        self.misses += len(missing)
        return found, missing

    def set(self, key: str, value: Any) -> None:
        self._data.pop(key, None)
        self._data[key] = (time.time(), value)
        if len(self._data) > self._max_size:
            self._evict()

    def invalidate(self, prefix: str = "") -> int:
        """Drop entries whose key starts with prefix (everything by default). Returns the count dropped."""
        stale = [k for k in self._data if k.startswith(prefix)]
        for key in stale:
            del self._data[key]
        return len(stale)

    def _evict(self) -> None:
        now = time.time()
        for key in [k for k, (ts, _) in self._data.items() if now - ts >= self._ttl]:
            del self._data[key]
        overflow = len(self._data) - self._max_size
        if overflow > 0:
            # set() re-inserts, so insertion order is age order
            for key in list(self._data)[:overflow]:
                del self._data[key]

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._data), "hits": self.hits, "misses": self.misses}

    def __len__(self) -> int:
        return len(self._data)
