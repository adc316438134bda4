"""
Distribution modeling sessions, live parameter edits and exports.

Live edits are the latency-critical path. A projection already cached for
the edited parameter map is returned directly. A simple edit is answered
with the quick estimate. A complex edit is queued as a high-priority
compute job and awaited for a bounded time; when the deadline passes the
quick estimate is served and the full result replaces it in the cache
once the job finishes.
"""

import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from shared.framework.cache import CacheKey, KeyValueCache, RevalidatingCache
from shared.framework.circuit_breaker import BoundedSyncBridge
from shared.framework.queue import JobQueue, JobHandle, QueueClass
from shared.utils.errors import QueueUnavailableError, ValidationError

from .jobs.handlers import CALCULATE_OPERATION, EXPORT_FORMATS, EXPORT_OPERATION
from .projections.calculator import (
    DEFAULT_PARAMETERS,
    PARAMETER_FIELDS,
    ProjectionParameters,
    calculate_projections,
    quick_estimate,
)

logger = structlog.get_logger(__name__)

BASELINE_SCENARIO_ID = "baseline"
MAX_SCENARIO_NAME_LENGTH = 100

SessionLoader = Callable[[str], Awaitable[Dict[str, Any]]]


def _isoformat(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def session_id_for(campaign_id: str) -> str:
    return f"session-{campaign_id}"


class DistributionModeler:
    """Session reads, live edits, scenario creation and export requests."""

    def __init__(
        self,
        config,
        cache: KeyValueCache,
        revalidating: RevalidatingCache,
        queue: JobQueue,
        bridge: BoundedSyncBridge,
        session_loader: Optional[SessionLoader] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.cache = cache
        self.revalidating = revalidating
        self.queue = queue
        self.bridge = bridge
        self.clock = clock
        self.session_loader = session_loader or self._build_baseline_session
        self.logger = structlog.get_logger("distribution-modeler")

    # Sessions

    async def get_session(self, campaign_id: str) -> Dict[str, Any]:
        """Modeling session for a campaign, served stale-while-revalidate."""
        session_id = session_id_for(campaign_id)
        return await self.revalidating.get_or_revalidate(
            CacheKey.distribution(session_id),
            lambda: self.session_loader(campaign_id),
            stale_ttl=self.config.session_stale_ttl,
            fresh_ttl=self.config.session_fresh_ttl,
        )

    async def _build_baseline_session(self, campaign_id: str) -> Dict[str, Any]:
        now = _isoformat(self.clock())
        parameters = ProjectionParameters.from_mapping(DEFAULT_PARAMETERS)
        return {
            "id": session_id_for(campaign_id),
            "campaignId": campaign_id,
            "scenarios": [
                {
                    "id": BASELINE_SCENARIO_ID,
                    "name": "Baseline",
                    "description": "Current distribution plan",
                    "isBaseline": True,
                    "parameters": parameters.to_dict(),
                    "projections": calculate_projections(parameters).to_dict(),
                    "lastModified": now,
                    "changes": [],
                }
            ],
            "currentScenario": BASELINE_SCENARIO_ID,
            "presentationMode": False,
            "lastSaved": now,
            "hasUnsavedChanges": False,
        }

    # Live edits

    async def update_parameter(self, session_id: str, scenario_id: str, field: str, value: Any) -> Dict[str, Any]:
        """
        Apply one parameter edit and return ``{projections, calculationTime, source}``.

        ``source`` is ``cache``, ``direct`` (quick estimate for a simple edit),
        ``queued`` (full result within the deadline) or ``fallback``.
        """
        if field not in PARAMETER_FIELDS:
            raise ValidationError(f"Unknown parameter: {field}", field=field, value=value)

        started = time.perf_counter()
        params_key = CacheKey.session_parameters(session_id, scenario_id)
        current = await self.cache.get(params_key)
        updated = dict(current) if isinstance(current, dict) else {}
        updated[field] = value

        validated = ProjectionParameters.from_mapping(updated)
        updated[field] = validated.to_dict()[field]

        projection_key = CacheKey.projection(session_id, updated)
        projections = await self.cache.get(projection_key)
        source = "cache"

        if projections is None:
            if len(updated) > self.config.complex_edit_threshold:
                projections, source = await self._queued_projection(
                    session_id, scenario_id, updated, validated, projection_key
                )
            else:
                projections, source = quick_estimate(validated).to_dict(), "direct"

            await self.cache.set(projection_key, projections, self.config.projection_ttl)

        await self.cache.set(params_key, updated, self.config.session_params_ttl)

        calculation_time = round((time.perf_counter() - started) * 1000, 2)
        self.logger.debug(
            "Parameter updated",
            session_id=session_id,
            scenario_id=scenario_id,
            field=field,
            source=source,
            calculation_time_ms=calculation_time,
        )
        return {"projections": projections, "calculationTime": calculation_time, "source": source}

    async def _queued_projection(
        self,
        session_id: str,
        scenario_id: str,
        parameters: Dict[str, Any],
        validated: ProjectionParameters,
        projection_key: str,
    ):
        fallback_used = False

        def fallback() -> Dict[str, Any]:
            nonlocal fallback_used
            fallback_used = True
            return quick_estimate(validated).to_dict()

        try:
            handle = await self.queue.enqueue(
                QueueClass.COMPUTE,
                CALCULATE_OPERATION,
                {"scopeId": session_id, "scenarioId": scenario_id, "parameters": parameters},
                priority=self.config.live_edit_priority,
            )
        except QueueUnavailableError as e:
            self.logger.warning("Projection job not queued, serving estimate", session_id=session_id, error=str(e))
            return fallback(), "fallback"

        async def store_late_result(projections: Dict[str, Any]) -> None:
            await self.cache.set(projection_key, projections, self.config.projection_ttl)

        projections = await self.bridge.call_with_deadline(
            lambda: self._job_projections(handle),
            fallback,
            deadline_ms=self.config.live_edit_deadline_ms,
            operation="live-edit",
            on_late_result=store_late_result,
        )
        return projections, "fallback" if fallback_used else "queued"

    @staticmethod
    async def _job_projections(handle: JobHandle) -> Dict[str, Any]:
        result = await handle.finished()
        return result["projections"]

    # Scenarios

    async def create_scenario(self, session_id: str, base_scenario_id: str, name: str) -> Dict[str, Any]:
        """Create a scenario from ``base_scenario_id`` and invalidate the cached session."""
        if not isinstance(name, str) or not 1 <= len(name) <= MAX_SCENARIO_NAME_LENGTH:
            raise ValidationError(
                f"Scenario name must be 1-{MAX_SCENARIO_NAME_LENGTH} characters", field="name", value=name
            )

        base = await self.cache.get(CacheKey.session_parameters(session_id, base_scenario_id))
        parameters = ProjectionParameters.from_mapping(base if isinstance(base, dict) else None)
        now = self.clock()

        scenario = {
            "id": f"scenario-{int(now * 1000)}",
            "name": name,
            "description": f"Created from {base_scenario_id}",
            "isBaseline": False,
            "parameters": parameters.to_dict(),
            "projections": calculate_projections(parameters).to_dict(),
            "lastModified": _isoformat(now),
            "changes": [],
        }

        # fresh entry and stale companion both go, so the next read recomputes
        deleted = await self.cache.delete_pattern(f"{CacheKey.distribution(session_id)}*")
        self.logger.info("Scenario created", session_id=session_id, scenario_id=scenario["id"], invalidated=deleted)
        return scenario

    # Exports

    async def queue_export(self, session_id: str, export_format: str, campaign_id: Optional[str] = None) -> Dict[str, Any]:
        """Enqueue an export job; raises ``QueueUnavailableError`` when it cannot be queued."""
        output = EXPORT_FORMATS.get(export_format)
        if output is None:
            raise ValidationError(f"Unsupported export format: {export_format}", field="format", value=export_format)

        handle = await self.queue.enqueue(
            QueueClass.EXPORT,
            EXPORT_OPERATION,
            {
                "sessionId": session_id,
                "scopeId": campaign_id or session_id,
                "format": export_format,
                "data": {},
            },
            delay=self.config.export_delay_seconds,
        )
        self.logger.info("Export queued", session_id=session_id, format=export_format, job_id=handle.id)
        return {"jobId": handle.id, "status": "queued", "estimatedTime": output.estimated_ms}

    async def export_status(self, job_id: str) -> Dict[str, Any]:
        status = await self.queue.get_status(QueueClass.EXPORT, job_id)
        return status.to_dict()
