"""Capability set shared by the key/value backends."""

from typing import Dict, List, Optional, Protocol, Tuple, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """
    Minimal async key/value + sorted-set interface.

    ``RedisClient`` and ``MemoryClient`` both implement it. Implementations
    raise on backend failure; callers decide whether to degrade.
    """

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: Optional[float] = None) -> None: ...

    async def set_nx(self, key: str, value: str, ttl: Optional[float] = None) -> bool: ...

    async def delete(self, *keys: str) -> int: ...

    async def keys(self, pattern: str) -> List[str]: ...

    async def incr(self, key: str) -> int: ...

    async def zadd(self, key: str, mapping: Dict[str, float]) -> int: ...

    async def zpopmin(self, key: str, count: int = 1) -> List[Tuple[str, float]]: ...

    async def zrangebyscore(
        self, key: str, min_score: float, max_score: float, limit: Optional[int] = None
    ) -> List[str]: ...

    async def zrem(self, key: str, *members: str) -> int: ...

    async def zcard(self, key: str) -> int: ...

    async def health_check(self) -> bool: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...
