"""HTTP API for distribution modeling."""

import json
from typing import Any, Dict, Optional

import structlog
from aiohttp import web

from shared.framework.cache import KeyValueCache
from shared.framework.circuit_breaker import BoundedSyncBridge
from shared.framework.metrics import MetricsCollector, MetricsRecorder
from shared.framework.queue import JobQueue
from shared.utils.errors import (
    DistributionError,
    JobNotFoundError,
    QueueUnavailableError,
    ValidationError,
    ViewNotFoundError,
    ViewQueryError,
)

from ..modeling import DistributionModeler
from ..refresh.reader import ViewReader
from ..refresh.scheduler import RefreshScheduler


logger = structlog.get_logger(__name__)

STATUS_BY_ERROR = (
    (ValidationError, 400),
    (JobNotFoundError, 404),
    (ViewNotFoundError, 404),
    (QueueUnavailableError, 503),
    (ViewQueryError, 503),
)


def _status_for(error: DistributionError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 500


def error_middleware(collector: Optional[MetricsCollector] = None):
    """Render ``DistributionError`` as JSON with a matching status; anything else is a 500."""

    @web.middleware
    async def middleware(request: web.Request, handler):
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except DistributionError as e:
            status = _status_for(e)
            log = logger.warning if status < 500 else logger.error
            log("Request failed", path=request.path, error_code=e.error_code, error=e.message, status=status)
            if collector:
                collector.record_error(e.error_code, "api")
            return web.json_response({"error": e.message, **e.to_dict()}, status=status)
        except Exception as e:
            logger.error("Unhandled request error", path=request.path, error=str(e), exc_info=True)
            if collector:
                collector.record_error(e.__class__.__name__, "api")
            return web.json_response({"error": "Internal server error"}, status=500)

    return middleware


async def _json_body(request: web.Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Request body must be valid JSON") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _required_string(body: Dict[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Missing or invalid field: {key}", field=key, value=value)
    return value


class DistributionAPI:
    """Route handlers for sessions, live edits, exports, views and metrics."""

    def __init__(
        self,
        modeler: DistributionModeler,
        scheduler: RefreshScheduler,
        queue: JobQueue,
        cache: KeyValueCache,
        recorder: MetricsRecorder,
        bridge: BoundedSyncBridge,
        reader: ViewReader,
    ):
        self.modeler = modeler
        self.scheduler = scheduler
        self.queue = queue
        self.cache = cache
        self.recorder = recorder
        self.bridge = bridge
        self.reader = reader

    def register(self, app: web.Application) -> None:
        app.router.add_get("/campaigns/{campaign_id}/distribution/modeling", self.get_modeling_session)
        app.router.add_patch("/distribution/scenarios/parameters", self.update_parameters)
        app.router.add_post("/distribution/scenarios", self.create_scenario)
        app.router.add_post("/distribution/export", self.queue_export)
        app.router.add_get("/distribution/export/{job_id}/status", self.get_export_status)
        app.router.add_get("/distribution/metrics", self.get_metrics)
        app.router.add_get("/distribution/views", self.get_views)
        app.router.add_get("/distribution/views/campaigns/{campaign_id}/summary", self.get_campaign_summary)
        app.router.add_get("/distribution/views/sessions/{session_id}/scenarios", self.get_scenario_performance)
        app.router.add_get("/distribution/views/users/{user_id}/activity", self.get_user_activity)
        app.router.add_get("/distribution/views/change-patterns", self.get_change_patterns)
        app.router.add_get("/distribution/views/performance", self.get_performance_metrics)
        app.router.add_post("/distribution/views/{view_name}/refresh", self.refresh_view)
        app.router.add_post("/distribution/tables/{table_name}/changed", self.table_changed)

    async def get_modeling_session(self, request: web.Request) -> web.Response:
        """Modeling session for a campaign."""
        session = await self.modeler.get_session(request.match_info["campaign_id"])
        return web.json_response(session)

    async def update_parameters(self, request: web.Request) -> web.Response:
        """Live edit of one scenario parameter."""
        body = await _json_body(request)
        value = body.get("value")
        if not isinstance(value, (int, float, str)) or isinstance(value, bool):
            raise ValidationError("value must be a number or numeric string", field="value", value=value)

        result = await self.modeler.update_parameter(
            _required_string(body, "sessionId"),
            _required_string(body, "scenarioId"),
            _required_string(body, "field"),
            value,
        )
        return web.json_response(result)

    async def create_scenario(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        scenario = await self.modeler.create_scenario(
            _required_string(body, "sessionId"),
            _required_string(body, "baseScenarioId"),
            body.get("name"),
        )
        return web.json_response(scenario, status=201)

    async def queue_export(self, request: web.Request) -> web.Response:
        body = await _json_body(request)
        queued = await self.modeler.queue_export(
            _required_string(body, "sessionId"),
            _required_string(body, "format"),
            campaign_id=body.get("campaignId"),
        )
        return web.json_response(queued, status=202)

    async def get_export_status(self, request: web.Request) -> web.Response:
        status = await self.modeler.export_status(request.match_info["job_id"])
        return web.json_response(status)

    async def get_metrics(self, request: web.Request) -> web.Response:
        """Latency, cache, queue and degradation figures for dashboards."""
        operations = self.recorder.get_metrics()
        total_calls = sum(item["callCount"] for item in operations)
        avg_response_time = (
            sum(item["avgResponseTime"] * item["callCount"] for item in operations) / total_calls
            if total_calls else 0.0
        )
        cache_stats = self.cache.get_stats()

        return web.json_response({
            "avgResponseTime": round(avg_response_time, 2),
            "cacheHitRate": round(cache_stats["hit_rate"], 2),
            "cache": cache_stats,
            "jobs": await self.queue.get_counts(),
            "liveEdits": self.bridge.get_metrics(),
            "operations": operations,
        })

    async def get_views(self, request: web.Request) -> web.Response:
        return web.json_response({
            "views": await self.scheduler.get_view_stats(),
            "scheduled": self.scheduler.get_scheduled_refreshes(),
        })

    async def get_campaign_summary(self, request: web.Request) -> web.Response:
        summary = await self.reader.get_campaign_summary(request.match_info["campaign_id"])
        return web.json_response({"summary": summary})

    async def get_scenario_performance(self, request: web.Request) -> web.Response:
        scenarios = await self.reader.get_scenario_performance(request.match_info["session_id"])
        return web.json_response({"scenarios": scenarios})

    async def get_user_activity(self, request: web.Request) -> web.Response:
        activity = await self.reader.get_user_activity(request.match_info["user_id"])
        return web.json_response({"activity": activity})

    async def get_change_patterns(self, request: web.Request) -> web.Response:
        patterns = await self.reader.get_change_patterns(request.query.get("field") or None)
        return web.json_response({"patterns": patterns})

    async def get_performance_metrics(self, request: web.Request) -> web.Response:
        """Service-wide figures from the performance view."""
        return web.json_response({"metrics": await self.reader.get_performance_metrics()})

    async def refresh_view(self, request: web.Request) -> web.Response:
        view_name = request.match_info["view_name"]
        handle = await self.scheduler.request_refresh(view_name)
        return web.json_response({"jobId": handle.id, "viewName": view_name, "status": "queued"}, status=202)

    async def table_changed(self, request: web.Request) -> web.Response:
        table_name = request.match_info["table_name"]
        queued = await self.scheduler.on_table_changed(table_name)
        return web.json_response({"table": table_name, "queued": queued})
