"""Refresh scheduling for materialized views."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import structlog

from shared.framework.queue import JobHandle, JobQueue, QueueClass
from shared.utils.errors import QueueUnavailableError

from .executor import RefreshExecutor, format_timestamp
from .views import ViewDescriptor, by_priority

logger = structlog.get_logger(__name__)

REFRESH_OPERATION = "refresh-view"
CRITICAL_PRIORITY = 8
URGENT_PRIORITY = 9


class RefreshScheduler:
    """
    Decides when materialized views are rebuilt.

    Refreshes are enqueued as ``maintenance/refresh-view`` jobs, never run
    inline, except for ``refresh_all_views`` which drives the executor
    directly for initial setup and emergencies.
    """

    def __init__(
        self,
        queue: JobQueue,
        executor: RefreshExecutor,
        clock: Callable[[], float] = time.time,
    ):
        self.queue = queue
        self.executor = executor
        self.views: Dict[str, ViewDescriptor] = executor.views
        self.clock = clock
        self.scheduled_refreshes: Dict[str, asyncio.Task] = {}
        self.is_running = False
        self.logger = structlog.get_logger("refresh-scheduler")

    async def start(self, periodic: bool = True, refresh_critical: bool = False) -> None:
        """Start periodic refresh loops and optionally queue the critical views now."""
        self.is_running = True

        if periodic:
            for view in self.views.values():
                self.schedule_periodic_refresh(view)

        if refresh_critical:
            await self.refresh_critical_views()

        self.logger.info("Refresh scheduler started", views=len(self.views), periodic=periodic)

    async def stop(self) -> None:
        """Stop the refresh scheduler."""
        self.is_running = False

        for task in self.scheduled_refreshes.values():
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self.scheduled_refreshes.clear()
        self.logger.info("Refresh scheduler stopped")

    def schedule_periodic_refresh(self, view: ViewDescriptor) -> None:
        """Queue a refresh of ``view`` every ``refresh_interval`` seconds."""
        refresh_id = f"periodic_{view.name}"
        if refresh_id in self.scheduled_refreshes:
            self.logger.warning("Periodic refresh already scheduled", view_name=view.name)
            return

        async def run_periodic_refresh():
            while self.is_running:
                await asyncio.sleep(view.refresh_interval)
                try:
                    await self.request_refresh(view.name)
                except Exception as e:
                    self.logger.error("Error in periodic refresh", view_name=view.name, error=str(e))

        self.scheduled_refreshes[refresh_id] = asyncio.create_task(run_periodic_refresh())
        self.logger.debug("Scheduled periodic refresh", view_name=view.name, interval=view.refresh_interval)

    async def request_refresh(self, view_name: str, filters: Optional[Dict[str, Any]] = None) -> JobHandle:
        """Enqueue a refresh job at the view's priority."""
        view = self.executor.get_view(view_name)
        payload: Dict[str, Any] = {"viewName": view.name}
        if filters:
            payload["filters"] = filters
        return await self.queue.enqueue(QueueClass.MAINTENANCE, REFRESH_OPERATION, payload, priority=view.priority)

    async def on_table_changed(self, table_name: str) -> List[str]:
        """
        Queue refreshes for views fed by ``table_name``.

        A view is queued when it has never been refreshed, when a quarter of
        its interval has passed since the last refresh, or when its priority
        is urgent. Returns the queued view names, highest priority first.
        """
        queued: List[str] = []
        now_ms = self.clock() * 1000

        affected = by_priority(view for view in self.views.values() if view.depends_on(table_name))
        for view in affected:
            last = await self.executor.get_last_refresh(view.name)
            since_ms = now_ms - last["timestamp"] if last else None

            if since_ms is not None and since_ms <= view.refresh_interval_ms / 4 and view.priority < URGENT_PRIORITY:
                continue

            try:
                await self.request_refresh(view.name)
            except QueueUnavailableError as e:
                self.logger.error("Could not queue view refresh", view_name=view.name, table=table_name, error=str(e))
                continue
            queued.append(view.name)

        self.logger.info("Table change processed", table=table_name, queued=queued)
        return queued

    async def refresh_critical_views(self) -> List[str]:
        """Queue an immediate refresh of every view with priority 8 or more."""
        queued: List[str] = []
        for view in by_priority(self.views.values()):
            if view.priority < CRITICAL_PRIORITY:
                continue
            try:
                await self.request_refresh(view.name)
            except QueueUnavailableError as e:
                self.logger.error("Could not queue critical view refresh", view_name=view.name, error=str(e))
                continue
            queued.append(view.name)
        return queued

    async def refresh_all_views(self) -> Dict[str, Any]:
        """Refresh every view inline, highest priority first."""
        success = 0
        failed = 0
        errors: List[str] = []

        for view in by_priority(self.views.values()):
            try:
                result = await self.executor.refresh_view(view.name)
            except Exception as e:
                failed += 1
                errors.append(f"{view.name}: {e}")
                continue

            if result.success:
                success += 1
            else:
                failed += 1
                if result.error:
                    errors.append(f"{view.name}: {result.error}")

        self.logger.info("Refreshed all views", success=success, failed=failed)
        return {"success": success, "failed": failed, "errors": errors}

    async def get_view_stats(self) -> List[Dict[str, Any]]:
        """Refresh health per view: healthy, stale (over 2x interval) or error (never refreshed)."""
        stats = []
        now_ms = self.clock() * 1000

        for view in self.views.values():
            last = await self.executor.get_last_refresh(view.name)
            if last is None:
                status = "error"
            elif now_ms - last["timestamp"] > view.refresh_interval_ms * 2:
                status = "stale"
            else:
                status = "healthy"

            stats.append({
                "name": view.name,
                "lastRefresh": format_timestamp(last["timestamp"]) if last else None,
                "refreshDuration": last.get("durationMs") if last else None,
                "priority": view.priority,
                "status": status,
            })

        return stats

    def get_scheduled_refreshes(self) -> List[str]:
        """Get list of scheduled refresh IDs."""
        return list(self.scheduled_refreshes.keys())
