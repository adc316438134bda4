"""
Handlers for the compute, export and maintenance queues.

Delivery is at-least-once, so every handler is safe to run twice: the
projection handler overwrites the same cache key, the export handler
produces a new file name, and view refreshes are idempotent.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Tuple

import structlog

from shared.framework.cache import CacheKey, KeyValueCache
from shared.framework.queue import JobContext, JobQueue, QueueClass
from shared.utils.errors import DistributionError, ValidationError

from ..projections.calculator import ProjectionParameters, calculate_projections
from ..refresh.executor import RefreshExecutor
from ..refresh.scheduler import REFRESH_OPERATION

logger = structlog.get_logger(__name__)

CALCULATE_OPERATION = "calculate-projections"
EXPORT_OPERATION = "generate-export"


@dataclass(frozen=True)
class ExportFormat:
    """Output characteristics of one export format."""
    extension: str
    size_kb: int
    estimated_ms: int
    steps: Tuple[Tuple[int, float], ...]  # (progress, seconds of work before it)


EXPORT_FORMATS: Dict[str, ExportFormat] = {
    "pdf": ExportFormat("pdf", 150, 5000, ((30, 0.5), (60, 0.3), (90, 0.2))),
    "excel": ExportFormat("xlsx", 75, 3000, ((50, 0.3),)),
    "csv": ExportFormat("csv", 25, 1000, ((80, 0.1),)),
}


def _isoformat(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def _require(payload: Dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value in (None, ""):
        raise ValidationError(f"Missing job payload field: {key}", field=key)
    return value


class ProjectionJobs:
    """``compute/calculate-projections``: full projection for a parameter map."""

    def __init__(self, cache: KeyValueCache, projection_ttl: int = 30, clock: Callable[[], float] = time.time):
        self.cache = cache
        self.projection_ttl = projection_ttl
        self.clock = clock

    async def calculate_projections(self, ctx: JobContext) -> Dict[str, Any]:
        payload = ctx.payload
        scope_id = _require(payload, "scopeId")
        raw_parameters = payload.get("parameters") or {}

        parameters = ProjectionParameters.from_mapping(raw_parameters)
        projections = calculate_projections(parameters).to_dict()

        # keyed on the parameter map as submitted so live edits find it
        await self.cache.set(CacheKey.projection(scope_id, raw_parameters), projections, self.projection_ttl)

        return {
            "scopeId": scope_id,
            "scenarioId": payload.get("scenarioId"),
            "projections": projections,
            "calculatedAt": _isoformat(self.clock()),
        }


class ExportJobs:
    """``export/generate-export``: renders a scenario export and reports progress."""

    def __init__(self, step_scale: float = 1.0, clock: Callable[[], float] = time.time):
        self.step_scale = step_scale
        self.clock = clock

    async def generate_export(self, ctx: JobContext) -> Dict[str, Any]:
        export_format = _require(ctx.payload, "format")
        output = EXPORT_FORMATS.get(export_format)
        if output is None:
            raise ValidationError(f"Unsupported export format: {export_format}", field="format", value=export_format)

        await ctx.report_progress(10)
        for progress, seconds in output.steps:
            if self.step_scale > 0:
                await asyncio.sleep(seconds * self.step_scale)
            await ctx.report_progress(progress)

        timestamp_ms = int(self.clock() * 1000)
        logger.info("Export generated", session_id=ctx.payload.get("sessionId"), format=export_format)
        return {
            "url": f"/exports/distribution-{timestamp_ms}.{output.extension}",
            "size": output.size_kb * 1024,
            "format": export_format,
        }


class MaintenanceJobs:
    """``maintenance/refresh-view``: runs a view refresh through the executor."""

    def __init__(self, executor: RefreshExecutor, clock: Callable[[], float] = time.time):
        self.executor = executor
        self.clock = clock

    async def refresh_view(self, ctx: JobContext) -> Dict[str, Any]:
        view_name = _require(ctx.payload, "viewName")
        result = await self.executor.refresh_view(view_name, ctx.payload.get("filters"))

        # a conflict means another refresh is doing the work; not a failure
        if not result.success and not result.conflicted:
            raise DistributionError(
                f"Refresh of {view_name} failed: {result.error}",
                error_code="VIEW_REFRESH_FAILED",
                details={"view_name": view_name, "duration_ms": round(result.duration_ms, 2)},
            )

        return {
            "viewName": view_name,
            "refreshedAt": _isoformat(self.clock()),
            **result.to_dict(),
        }


def register_handlers(
    queue: JobQueue,
    projections: ProjectionJobs,
    exports: ExportJobs,
    maintenance: MaintenanceJobs,
) -> None:
    """Register every service handler on ``queue``."""
    queue.register(QueueClass.COMPUTE, CALCULATE_OPERATION, projections.calculate_projections)
    queue.register(QueueClass.EXPORT, EXPORT_OPERATION, exports.generate_export)
    queue.register(QueueClass.MAINTENANCE, REFRESH_OPERATION, maintenance.refresh_view)
