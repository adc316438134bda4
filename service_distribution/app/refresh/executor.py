"""Refresh execution for materialized views."""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

import structlog

from shared.framework.cache import CacheKey, KeyValueCache
from shared.storage.postgres import PostgresClient
from shared.utils.errors import ViewNotFoundError
from shared.utils.tracing import trace_async_function

from .views import DEFAULT_VIEWS, ViewDescriptor, index_views


logger = structlog.get_logger(__name__)

REFRESH_IN_PROGRESS = "Refresh already in progress"


@dataclass
class RefreshResult:
    """Outcome of one refresh attempt."""
    success: bool
    duration_ms: float
    error: Optional[str] = None

    @property
    def conflicted(self) -> bool:
        return not self.success and self.error == REFRESH_IN_PROGRESS

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "duration": round(self.duration_ms, 2)}
        if self.error is not None:
            result["error"] = self.error
        return result


class ViewRefresher(Protocol):
    """The operation that actually rebuilds a view."""

    async def refresh(self, view_name: str, filters: Optional[Dict[str, Any]] = None) -> None:
        ...


class PostgresViewRefresher:
    """Rebuilds views with ``REFRESH MATERIALIZED VIEW CONCURRENTLY``."""

    def __init__(self, client: PostgresClient, concurrently: bool = True):
        self.client = client
        self.concurrently = concurrently

    async def refresh(self, view_name: str, filters: Optional[Dict[str, Any]] = None) -> None:
        # materialized views are always rebuilt whole
        await self.client.refresh_materialized_view(view_name, concurrently=self.concurrently)


class RefreshExecutor:
    """
    Runs view refreshes guarded by a shared in-progress flag.

    The flag (``view_refresh:<name>``) is taken with an atomic set-if-absent,
    so at most one refresh of a view runs across all instances. A losing
    caller gets a conflict result instead of running the refresh. When the
    backend cannot be reached the refresh proceeds without the flag.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        refresher: ViewRefresher,
        views: Iterable[ViewDescriptor] = DEFAULT_VIEWS,
        flag_ttl: int = 300,
        last_refresh_ttl: int = 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.cache = cache
        self.refresher = refresher
        self.views: Dict[str, ViewDescriptor] = index_views(views)
        self.flag_ttl = flag_ttl
        self.last_refresh_ttl = last_refresh_ttl
        self.clock = clock
        self.logger = structlog.get_logger("refresh-executor")

    def get_view(self, view_name: str) -> ViewDescriptor:
        view = self.views.get(view_name)
        if view is None:
            raise ViewNotFoundError(view_name)
        return view

    async def refresh_view(self, view_name: str, filters: Optional[Dict[str, Any]] = None) -> RefreshResult:
        """Refresh one view unless another refresh of it is already running."""
        self.get_view(view_name)
        flag_key = CacheKey.view_refresh(view_name)
        log = self.logger.bind(view_name=view_name)

        acquired = await self.cache.set_if_absent(
            flag_key,
            {"status": "refreshing", "since": int(self.clock() * 1000)},
            self.flag_ttl,
        )
        if acquired is False:
            log.info("View refresh skipped, already in progress")
            return RefreshResult(success=False, duration_ms=0.0, error=REFRESH_IN_PROGRESS)
        if acquired is None:
            log.warning("Refresh flag unavailable, refreshing without it")

        started = time.perf_counter()
        try:
            async with trace_async_function("view.refresh", {"view.name": view_name}):
                await self.refresher.refresh(view_name, filters)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            if acquired:
                await self.cache.delete(flag_key)
            log.error("View refresh failed", error=str(e), duration_ms=round(duration_ms, 2))
            return RefreshResult(success=False, duration_ms=duration_ms, error=str(e) or e.__class__.__name__)

        duration_ms = (time.perf_counter() - started) * 1000
        if acquired:
            await self.cache.delete(flag_key)

        await self.cache.set(
            CacheKey.view_last_refresh(view_name),
            {"timestamp": int(self.clock() * 1000), "durationMs": round(duration_ms, 2)},
            self.last_refresh_ttl,
        )
        log.info("View refreshed", duration_ms=round(duration_ms, 2))
        return RefreshResult(success=True, duration_ms=duration_ms)

    async def get_last_refresh(self, view_name: str) -> Optional[Dict[str, Any]]:
        """Last successful refresh record ``{timestamp (epoch ms), durationMs}``, if any."""
        record = await self.cache.get(CacheKey.view_last_refresh(view_name))
        if not isinstance(record, dict) or record.get("timestamp") is None:
            return None
        return record


def format_timestamp(timestamp_ms: Optional[float]) -> Optional[str]:
    """ISO-8601 rendering of an epoch-millisecond timestamp."""
    if timestamp_ms is None:
        return None
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).isoformat()
