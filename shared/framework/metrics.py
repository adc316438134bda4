"""Prometheus metrics and latency budget tracking for distribution services."""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import structlog
from aiohttp import web
from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

from ..utils.errors import ConfigurationError
from .cache import CacheKey, KeyValueCache

logger = structlog.get_logger(__name__)

BUDGETS_MS: Dict[str, float] = {
    "critical": 500.0,
    "fast": 1000.0,
    "standard": 3000.0,
}
SLOW_OPERATION_TTL = 3600
MAX_IDLE_SECONDS = 24 * 3600
CLEANUP_INTERVAL_SECONDS = 3600

LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]


class MetricsCollector:
    """Centralized Prometheus metrics for a service instance."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name.replace("-", "_")
        self.registry = registry or CollectorRegistry()
        self._init_common_metrics()

    def _init_common_metrics(self):
        """Initialize common metrics for all services."""
        prefix = self.service_name

        self.info = Info(
            f"{prefix}_info",
            f"Information about {prefix}",
            registry=self.registry
        )

        self.request_count = Counter(
            f"{prefix}_requests_total",
            f"Total number of requests processed by {prefix}",
            ["method", "endpoint", "status"],
            registry=self.registry
        )

        self.request_duration = Histogram(
            f"{prefix}_request_duration_seconds",
            f"Request duration in seconds for {prefix}",
            ["method", "endpoint"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry
        )

        self.operation_duration = Histogram(
            f"{prefix}_operation_duration_seconds",
            "Tracked operation duration in seconds",
            ["budget_class"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry
        )

        self.slow_operations = Counter(
            f"{prefix}_slow_operations_total",
            "Operations that exceeded their latency budget",
            ["budget_class"],
            registry=self.registry
        )

        self.jobs_total = Counter(
            f"{prefix}_jobs_total",
            "Job state transitions",
            ["queue", "operation", "state"],
            registry=self.registry
        )

        self.job_duration = Histogram(
            f"{prefix}_job_duration_seconds",
            "Job handler duration in seconds",
            ["queue", "operation"],
            buckets=LATENCY_BUCKETS,
            registry=self.registry
        )

        self.degradations = Counter(
            f"{prefix}_circuit_degradations_total",
            "Bounded-wait calls that served the fallback",
            ["operation", "reason"],
            registry=self.registry
        )

        self.errors_total = Counter(
            f"{prefix}_errors_total",
            f"Total number of errors in {prefix}",
            ["error_type", "component"],
            registry=self.registry
        )

        self.health_status = Gauge(
            f"{prefix}_health_status",
            f"Health status of {prefix} (1=healthy, 0=unhealthy)",
            registry=self.registry
        )

        self.memory_usage = Gauge(
            f"{prefix}_memory_usage_bytes",
            f"Memory usage in bytes for {prefix}",
            registry=self.registry
        )

    def record_request(self, method: str, endpoint: str, status: str, duration: float):
        """Record a request metric."""
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_operation(self, budget_class: str, duration: float, over_budget: bool):
        """Record a tracked operation against its budget class."""
        self.operation_duration.labels(budget_class=budget_class).observe(duration)
        if over_budget:
            self.slow_operations.labels(budget_class=budget_class).inc()

    def record_job(self, queue: str, operation: str, state: str, duration: Optional[float] = None):
        """Record a job state transition and, when finished, its duration."""
        self.jobs_total.labels(queue=queue, operation=operation, state=state).inc()
        if duration is not None:
            self.job_duration.labels(queue=queue, operation=operation).observe(duration)

    def record_degradation(self, operation: str, reason: str):
        """Record a fallback served by the bounded-wait bridge."""
        self.degradations.labels(operation=operation, reason=reason).inc()

    def record_error(self, error_type: str, component: str):
        """Record an error metric."""
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def set_health_status(self, healthy: bool):
        """Set the health status metric."""
        self.health_status.set(1 if healthy else 0)

    def set_memory_usage(self, bytes_used: int):
        """Set the memory usage metric."""
        self.memory_usage.set(bytes_used)

    def update_service_info(self, version: str, environment: str, **kwargs):
        """Update service information."""
        self.info.info({"version": version, "environment": environment, **kwargs})

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics."""
        return CONTENT_TYPE_LATEST


@dataclass
class OperationStats:
    """Running latency statistics for one operation."""
    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0
    last_update: float = 0.0

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0


class MetricsRecorder:
    """
    Per-operation latency tracking against budget classes.

    Over-budget samples are logged as performance alerts and recorded as
    ``slow_operation:<op>:<epoch_ms>`` cache entries for an hour. Entries
    not updated for 24 hours are evicted by ``cleanup``.
    """

    def __init__(
        self,
        cache: Optional[KeyValueCache] = None,
        collector: Optional[MetricsCollector] = None,
        budgets: Optional[Dict[str, float]] = None,
        clock: Callable[[], float] = time.time,
        max_idle_seconds: float = MAX_IDLE_SECONDS,
        cleanup_interval: float = CLEANUP_INTERVAL_SECONDS,
    ):
        self.cache = cache
        self.collector = collector
        self.budgets = dict(budgets or BUDGETS_MS)
        self.clock = clock
        self.max_idle_seconds = max_idle_seconds
        self.cleanup_interval = cleanup_interval
        self.operations: Dict[str, OperationStats] = {}
        self.logger = structlog.get_logger("metrics-recorder")
        self.cleanup_task: Optional[asyncio.Task] = None
        self.is_running = False

    async def start(self) -> None:
        """Start the periodic eviction sweep."""
        self.is_running = True
        self.cleanup_task = asyncio.create_task(self._cleanup_periodically())
        self.logger.info("Metrics recorder started", cleanup_interval=self.cleanup_interval)

    async def stop(self) -> None:
        """Stop the periodic eviction sweep."""
        self.is_running = False
        if self.cleanup_task and not self.cleanup_task.done():
            self.cleanup_task.cancel()
            try:
                await self.cleanup_task
            except asyncio.CancelledError:
                pass
        self.cleanup_task = None

    def budget_for(self, budget_class: str) -> float:
        try:
            return self.budgets[budget_class]
        except KeyError:
            raise ConfigurationError(
                f"Unknown budget class: {budget_class}",
                config_key="budget_class",
                config_value=budget_class,
            ) from None

    async def track_response(self, operation: str, elapsed_ms: float, budget_class: str = "standard") -> bool:
        """Record one sample; returns True when it exceeded the budget."""
        budget = self.budget_for(budget_class)
        now = self.clock()

        stats = self.operations.setdefault(operation, OperationStats())
        stats.count += 1
        stats.total_ms += elapsed_ms
        stats.min_ms = min(stats.min_ms, elapsed_ms)
        stats.max_ms = max(stats.max_ms, elapsed_ms)
        stats.last_update = now

        over_budget = elapsed_ms > budget
        if self.collector:
            self.collector.record_operation(budget_class, elapsed_ms / 1000, over_budget)

        if over_budget:
            self.logger.warning(
                "Performance alert",
                operation=operation,
                response_time_ms=round(elapsed_ms, 2),
                target_ms=budget,
                category=budget_class,
            )
            if self.cache:
                timestamp_ms = int(now * 1000)
                await self.cache.set(
                    CacheKey.slow_operation(operation, timestamp_ms),
                    {
                        "operation": operation,
                        "responseTime": elapsed_ms,
                        "target": budget,
                        "category": budget_class,
                        "timestamp": timestamp_ms,
                    },
                    SLOW_OPERATION_TTL,
                )

        return over_budget

    @staticmethod
    def _summary(operation: str, stats: OperationStats) -> Dict[str, Any]:
        return {
            "operation": operation,
            "avgResponseTime": round(stats.avg_ms, 2),
            "maxResponseTime": round(stats.max_ms, 2),
            "minResponseTime": round(stats.min_ms, 2) if stats.count else 0.0,
            "callCount": stats.count,
            "lastUpdate": stats.last_update,
        }

    def get_metrics(self, operation: Optional[str] = None) -> Any:
        """Summary for one operation (None if unknown) or all, slowest average first."""
        if operation is not None:
            stats = self.operations.get(operation)
            return self._summary(operation, stats) if stats else None

        summaries: List[Dict[str, Any]] = [
            self._summary(name, stats) for name, stats in self.operations.items()
        ]
        return sorted(summaries, key=lambda item: item["avgResponseTime"], reverse=True)

    def cleanup(self) -> int:
        """Evict operations untouched for ``max_idle_seconds``."""
        cutoff = self.clock() - self.max_idle_seconds
        stale = [name for name, stats in self.operations.items() if stats.last_update < cutoff]
        for name in stale:
            del self.operations[name]

        if stale:
            self.logger.info("Evicted idle operation metrics", count=len(stale))
        return len(stale)

    async def _cleanup_periodically(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.cleanup_interval)
            try:
                self.cleanup()
            except Exception as e:
                self.logger.error("Metrics cleanup failed", error=str(e))


def classify_request(path: str) -> str:
    """Budget class for an HTTP path."""
    if "/distribution/scenarios/parameters" in path:
        return "critical"
    if "/distribution/" in path:
        return "fast"
    return "standard"


def _route_name(request: web.Request) -> str:
    route = request.match_info.route
    resource = getattr(route, "resource", None)
    if resource is not None and resource.canonical:
        return resource.canonical
    return request.path


def timing_middleware(recorder: MetricsRecorder, collector: Optional[MetricsCollector] = None):
    """aiohttp middleware that tracks every request against its budget class."""

    @web.middleware
    async def middleware(request: web.Request, handler):
        started = time.perf_counter()
        category = classify_request(request.path)
        endpoint = _route_name(request)
        operation = f"{request.method} {endpoint}"

        try:
            response = await handler(request)
        except Exception as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            await recorder.track_response(f"{operation}:error", elapsed_ms, category)
            if collector:
                status = getattr(e, "status", 500)
                collector.record_request(request.method, endpoint, str(status), elapsed_ms / 1000)
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Response-Time"] = f"{elapsed_ms:.2f}ms"
        response.headers["X-Performance-Category"] = category
        await recorder.track_response(operation, elapsed_ms, category)
        if collector:
            collector.record_request(request.method, endpoint, str(response.status), elapsed_ms / 1000)
        return response

    return middleware
