"""Main entry point for distribution modeling service."""

import asyncio
from typing import List, Optional

import structlog

from shared.framework.cache import KeyValueCache, RevalidatingCache
from shared.framework.circuit_breaker import BoundedSyncBridge, BridgeConfig
from shared.framework.metrics import MetricsRecorder, timing_middleware
from shared.framework.queue import JobQueue
from shared.framework.service import AsyncService
from shared.storage.base import CacheBackend
from shared.storage.memory import MemoryClient
from shared.storage.postgres import PostgresClient, PostgresConfig
from shared.storage.redis import RedisClient, RedisConfig
from shared.utils.logging import setup_logging
from shared.utils.tracing import setup_tracing

from .apis.routes import DistributionAPI, error_middleware
from .config import DistributionConfig
from .jobs.handlers import ExportJobs, MaintenanceJobs, ProjectionJobs, register_handlers
from .modeling import DistributionModeler
from .refresh.executor import PostgresViewRefresher, RefreshExecutor, ViewRefresher
from .refresh.reader import RowSource, ViewReader
from .refresh.scheduler import RefreshScheduler


logger = structlog.get_logger(__name__)


class DistributionService(AsyncService):
    """Distribution modeling service: sessions, live edits, exports and view maintenance."""

    def __init__(
        self,
        config: Optional[DistributionConfig] = None,
        backend: Optional[CacheBackend] = None,
        refresher: Optional[ViewRefresher] = None,
        rows: Optional[RowSource] = None,
    ):
        config = config or DistributionConfig()
        super().__init__(config)
        self.config = config
        self.backend = backend
        self.refresher = refresher
        self.rows = rows
        self.postgres: Optional[PostgresClient] = None
        self.cache = None
        self.revalidating = None
        self.queue = None
        self.bridge = None
        self.recorder = None
        self.executor = None
        self.scheduler = None
        self.modeler = None
        self.reader = None
        self.api = None

    def _create_backend(self) -> CacheBackend:
        if self.config.cache_backend == "memory":
            return MemoryClient()
        return RedisClient(
            RedisConfig(
                url=self.config.database.redis_url,
                max_connections=self.config.database.redis_max_connections,
                timeout=self.config.processing_timeout,
            )
        )

    async def build_components(self) -> None:
        """Construct and wire every component; nothing is started."""
        if self.backend is None:
            self.backend = self._create_backend()
        await self.backend.connect()

        if self.refresher is None or self.rows is None:
            self.postgres = PostgresClient(PostgresConfig(dsn=self.config.database.postgres_dsn))
            self.health_checker.add_dependency("postgres", self.postgres.health_check, critical=False)
        if self.refresher is None:
            self.refresher = PostgresViewRefresher(self.postgres)
        if self.rows is None:
            self.rows = self.postgres
        self.health_checker.add_dependency("cache_backend", self.backend.health_check)

        self.cache = KeyValueCache(self.backend, default_ttl=self.config.cache_ttl_seconds)
        self.revalidating = RevalidatingCache(
            self.cache,
            default_ttl=self.config.session_fresh_ttl,
            default_stale_ttl=self.config.session_stale_ttl,
        )
        self.queue = JobQueue(
            self.backend,
            poll_interval=self.config.queue.poll_interval,
            job_retention=self.config.queue.job_retention_seconds,
            lease_seconds=self.config.queue.lease_seconds,
            metrics=self.metrics,
        )
        self.bridge = BoundedSyncBridge(
            "live-edit-bridge",
            BridgeConfig(
                deadline_ms=self.config.live_edit_deadline_ms,
                drain_timeout=self.config.bridge_drain_timeout,
            ),
            metrics_collector=self.metrics,
        )
        self.recorder = MetricsRecorder(cache=self.cache, collector=self.metrics)

        self.executor = RefreshExecutor(
            self.cache,
            self.refresher,
            flag_ttl=self.config.refresh_flag_ttl,
            last_refresh_ttl=self.config.last_refresh_ttl,
        )
        self.scheduler = RefreshScheduler(self.queue, self.executor)

        register_handlers(
            self.queue,
            ProjectionJobs(self.cache, projection_ttl=self.config.projection_ttl),
            ExportJobs(step_scale=self.config.export_step_scale),
            MaintenanceJobs(self.executor),
        )

        self.modeler = DistributionModeler(self.config, self.cache, self.revalidating, self.queue, self.bridge)
        self.reader = ViewReader(self.revalidating, self.rows)
        self.api = DistributionAPI(
            self.modeler, self.scheduler, self.queue, self.cache, self.recorder, self.bridge, self.reader
        )

    def middlewares(self) -> List:
        return [timing_middleware(self.recorder, self.metrics), error_middleware(self.metrics)]

    def _setup_service_routes(self) -> None:
        self.api.register(self.app)

    async def _startup_hook(self) -> None:
        setup_logging(
            self.config.service_name,
            self.config.observability.log_level,
            self.config.observability.log_format,
        )
        setup_tracing(
            self.config.service_name,
            self.config.observability.trace_endpoint,
            self.config.observability.trace_enabled,
        )
        logger.info("Starting distribution modeling components", cache_backend=self.config.cache_backend)

        await self.build_components()

        await self.queue.start()
        await self.recorder.start()
        await self.scheduler.start(
            periodic=self.config.periodic_refresh_enabled,
            refresh_critical=self.config.refresh_on_start,
        )

        logger.info("Distribution modeling service started", port=self.config.observability.health_port)

    async def _shutdown_hook(self) -> None:
        logger.info("Stopping distribution modeling components")

        if self.scheduler:
            await self.scheduler.stop()
        if self.recorder:
            await self.recorder.stop()
        # abandoned live edits wait on compute jobs, so workers must still be running
        if self.bridge:
            await self.bridge.drain()
        if self.queue:
            await self.queue.close(timeout=self.config.queue.drain_timeout)
        if self.revalidating:
            await self.revalidating.drain(timeout=self.config.queue.drain_timeout)
        if self.backend:
            await self.backend.close()
        if self.postgres:
            await self.postgres.close()

        logger.info("Distribution modeling service stopped")


async def main():
    """Main entry point."""
    service = DistributionService()
    await service.run()


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
