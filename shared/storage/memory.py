"""In-process implementation of the backend capability set.

Used for local development (``DISTMOD_CACHE_BACKEND=memory``) and tests.
It is shared only within one process, so it does not coordinate instances.
"""

import fnmatch
import time
from typing import Callable, Dict, List, Optional, Tuple


class MemoryClient:
    """
    Dictionary-backed stand-in for ``RedisClient``.

    TTLs are evaluated lazily against ``clock`` (seconds), which tests can
    replace to move time forward without sleeping.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._sorted_sets: Dict[str, Dict[str, float]] = {}
        self.is_connected: bool = False

    async def connect(self) -> None:
        self.is_connected = True

    async def close(self) -> None:
        self.is_connected = False

    def _expires_at(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self.clock() + ttl

    def _live(self, key: str) -> Optional[str]:
        entry = self._values.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._values[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        self._values[key] = (value, self._expires_at(ttl))

    async def set_nx(self, key: str, value: str, ttl: Optional[float] = None) -> bool:
        if self._live(key) is not None or key in self._sorted_sets:
            return False
        self._values[key] = (value, self._expires_at(ttl))
        return True

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(key) is not None:
                del self._values[key]
                deleted += 1
            elif self._sorted_sets.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def keys(self, pattern: str) -> List[str]:
        live = [key for key in list(self._values) if self._live(key) is not None]
        return [key for key in live + list(self._sorted_sets) if fnmatch.fnmatchcase(key, pattern)]

    async def incr(self, key: str) -> int:
        current = self._live(key)
        value = int(current) + 1 if current is not None else 1
        expires_at = self._values[key][1] if current is not None else None
        self._values[key] = (str(value), expires_at)
        return value

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int:
        members = self._sorted_sets.setdefault(key, {})
        added = sum(1 for member in mapping if member not in members)
        members.update({member: float(score) for member, score in mapping.items()})
        return added

    def _ordered(self, key: str) -> List[Tuple[str, float]]:
        members = self._sorted_sets.get(key, {})
        return sorted(members.items(), key=lambda item: (item[1], item[0]))

    async def zpopmin(self, key: str, count: int = 1) -> List[Tuple[str, float]]:
        popped = self._ordered(key)[:count]
        members = self._sorted_sets.get(key, {})
        for member, _ in popped:
            members.pop(member, None)
        if key in self._sorted_sets and not members:
            del self._sorted_sets[key]
        return popped

    async def zrangebyscore(
        self, key: str, min_score: float, max_score: float, limit: Optional[int] = None
    ) -> List[str]:
        matching = [member for member, score in self._ordered(key) if min_score <= score <= max_score]
        return matching if limit is None else matching[:limit]

    async def zrem(self, key: str, *members: str) -> int:
        existing = self._sorted_sets.get(key, {})
        removed = sum(1 for member in members if existing.pop(member, None) is not None)
        if key in self._sorted_sets and not existing:
            del self._sorted_sets[key]
        return removed

    async def zcard(self, key: str) -> int:
        return len(self._sorted_sets.get(key, {}))

    async def health_check(self) -> bool:
        return True
