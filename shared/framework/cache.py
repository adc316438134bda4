"""Caching framework for low-latency projection access."""

import asyncio
import inspect
import json
from typing import Dict, Any, Optional, Callable, Mapping

import structlog

from ..storage.base import CacheBackend
from ..utils.identifiers import encode_parameters

logger = structlog.get_logger()

STALE_SUFFIX = ":stale"


class CacheKey:
    """Cache key conventions shared by every instance of the service."""

    @staticmethod
    def distribution(scope_id: str, scenario_id: Optional[str] = None) -> str:
        """Session-level key, or the scenario-scoped variant."""
        if scenario_id:
            return f"distribution:{scope_id}:scenario:{scenario_id}"
        return f"distribution:{scope_id}:session"

    @staticmethod
    def projection(scope_id: str, parameters: Mapping[str, Any]) -> str:
        """Memoization key for a projection over ``parameters``."""
        return f"projection:{scope_id}:{encode_parameters(parameters)}"

    @staticmethod
    def stale(key: str) -> str:
        return f"{key}{STALE_SUFFIX}"

    @staticmethod
    def session_parameters(session_id: str, scenario_id: str) -> str:
        return f"session:{session_id}:scenario:{scenario_id}:params"

    @staticmethod
    def view_refresh(view_name: str) -> str:
        return f"view_refresh:{view_name}"

    @staticmethod
    def view_last_refresh(view_name: str) -> str:
        return f"view_last_refresh:{view_name}"

    @staticmethod
    def campaign_summary(campaign_id: str) -> str:
        return f"campaign_summary:{campaign_id}"

    @staticmethod
    def scenario_performance(session_id: str) -> str:
        return f"scenario_performance:{session_id}"

    @staticmethod
    def user_activity(user_id: str) -> str:
        return f"user_activity:{user_id}"

    @staticmethod
    def change_patterns(field: Optional[str] = None) -> str:
        return f"change_patterns:{field or 'all'}"

    @staticmethod
    def performance_metrics() -> str:
        return "performance_metrics"

    @staticmethod
    def slow_operation(operation: str, timestamp_ms: int) -> str:
        return f"slow_operation:{operation}:{timestamp_ms}"


async def _resolve(compute: Callable[[], Any]) -> Any:
    result = compute()
    if inspect.isawaitable(result):
        result = await result
    return result


class KeyValueCache:
    """
    Best-effort JSON cache over a ``CacheBackend``.

    Backend failures are logged and reported as a miss or a no-op, so a
    cache outage never fails the caller.
    """

    def __init__(self, backend: CacheBackend, default_ttl: int = 300):
        self.backend = backend
        self.default_ttl = default_ttl
        self.logger = structlog.get_logger("cache")
        self.cache_stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "errors": 0,
        }

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        try:
            raw = await self.backend.get(key)
            if raw is None:
                self.cache_stats["misses"] += 1
                return None

            value = json.loads(raw)
            self.cache_stats["hits"] += 1
            return value

        except Exception as e:
            self.logger.error("Cache get error", key=key, error=str(e))
            self.cache_stats["errors"] += 1
            self.cache_stats["misses"] += 1
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """Set value in cache."""
        try:
            ttl = self.default_ttl if ttl is None else ttl
            await self.backend.set(key, json.dumps(value, default=str), ttl)
            self.cache_stats["sets"] += 1
            return True

        except Exception as e:
            self.logger.error("Cache set error", key=key, error=str(e))
            self.cache_stats["errors"] += 1
            return False

    async def set_if_absent(self, key: str, value: Any, ttl: Optional[float] = None) -> Optional[bool]:
        """
        Atomically set ``key`` only when it does not exist.

        Returns True when written, False when the key was already present
        and None when the backend could not be reached.
        """
        try:
            ttl = self.default_ttl if ttl is None else ttl
            written = await self.backend.set_nx(key, json.dumps(value, default=str), ttl)
            if written:
                self.cache_stats["sets"] += 1
            return written

        except Exception as e:
            self.logger.error("Cache set_if_absent error", key=key, error=str(e))
            self.cache_stats["errors"] += 1
            return None

    async def delete(self, key: str) -> bool:
        """Delete value from cache."""
        try:
            await self.backend.delete(key)
            self.cache_stats["deletes"] += 1
            return True

        except Exception as e:
            self.logger.error("Cache delete error", key=key, error=str(e))
            self.cache_stats["errors"] += 1
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
        try:
            keys = await self.backend.keys(pattern)
            if not keys:
                return 0

            deleted = await self.backend.delete(*keys)
            self.cache_stats["deletes"] += deleted
            return deleted

        except Exception as e:
            self.logger.error("Cache pattern delete error", pattern=pattern, error=str(e))
            self.cache_stats["errors"] += 1
            return 0

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self.cache_stats["hits"] + self.cache_stats["misses"]
        hit_rate = (self.cache_stats["hits"] / total_requests * 100) if total_requests > 0 else 0

        return {
            **self.cache_stats,
            "hit_rate": hit_rate,
        }


class RevalidatingCache:
    """
    Cache-aside and stale-while-revalidate reads over ``KeyValueCache``.

    Each revalidating key has a fresh entry and a ``<key>:stale`` companion
    that outlives it by ``stale_ttl`` seconds. Once the fresh entry expires
    the companion is served immediately while a detached task recomputes.
    """

    def __init__(self, cache: KeyValueCache, default_ttl: int = 300, default_stale_ttl: int = 60):
        self.cache = cache
        self.default_ttl = default_ttl
        self.default_stale_ttl = default_stale_ttl
        self.logger = structlog.get_logger("revalidating-cache")
        self._revalidations: Dict[str, asyncio.Task] = {}

    async def get_or_set(self, key: str, compute: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Get value from cache or compute and store it."""
        cached = await self.cache.get(key)
        if cached is not None:
            return cached

        value = await _resolve(compute)
        # None reads back as a miss, so it is not stored
        if value is not None:
            await self.cache.set(key, value, self.default_ttl if ttl is None else ttl)
        return value

    async def get_or_revalidate(
        self,
        key: str,
        compute: Callable[[], Any],
        stale_ttl: Optional[float] = None,
        fresh_ttl: Optional[float] = None,
    ) -> Any:
        """Serve fresh, else stale with a background refresh, else compute inline."""
        stale_ttl = self.default_stale_ttl if stale_ttl is None else stale_ttl
        fresh_ttl = self.default_ttl if fresh_ttl is None else fresh_ttl

        fresh = await self.cache.get(key)
        if fresh is not None:
            return fresh

        stale = await self.cache.get(CacheKey.stale(key))
        if stale is not None:
            self._schedule_revalidation(key, compute, stale_ttl, fresh_ttl)
            return stale

        value = await _resolve(compute)
        await self._write_tiers(key, value, stale_ttl, fresh_ttl)
        return value

    async def _write_tiers(self, key: str, value: Any, stale_ttl: float, fresh_ttl: float) -> None:
        if value is None:
            return
        await asyncio.gather(
            self.cache.set(key, value, fresh_ttl),
            self.cache.set(CacheKey.stale(key), value, fresh_ttl + stale_ttl),
        )

    def _schedule_revalidation(
        self, key: str, compute: Callable[[], Any], stale_ttl: float, fresh_ttl: float
    ) -> None:
        if key in self._revalidations:
            return

        task = asyncio.create_task(self._revalidate(key, compute, stale_ttl, fresh_ttl))
        self._revalidations[key] = task

        def _forget(done: asyncio.Task) -> None:
            if self._revalidations.get(key) is done:
                del self._revalidations[key]

        task.add_done_callback(_forget)

    async def _revalidate(
        self, key: str, compute: Callable[[], Any], stale_ttl: float, fresh_ttl: float
    ) -> None:
        try:
            value = await _resolve(compute)
            await self._write_tiers(key, value, stale_ttl, fresh_ttl)
            self.logger.debug("Background cache refresh complete", key=key)
        except Exception as e:
            self.logger.error("Background cache refresh failed", key=key, error=str(e))

    @property
    def pending_revalidations(self) -> int:
        return len(self._revalidations)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding background refreshes."""
        tasks = list(self._revalidations.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
