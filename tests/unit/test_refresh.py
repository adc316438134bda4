"""Tests for view refresh execution and scheduling."""

import asyncio

import pytest
import pytest_asyncio

from shared.framework.cache import CacheKey, KeyValueCache
from shared.framework.queue import JobState, QueueClass
from shared.utils.errors import ViewNotFoundError

from service_distribution.app.jobs.handlers import ExportJobs, MaintenanceJobs, ProjectionJobs, register_handlers
from service_distribution.app.refresh.executor import REFRESH_IN_PROGRESS, RefreshExecutor
from service_distribution.app.refresh.scheduler import RefreshScheduler
from service_distribution.app.refresh.views import ViewDescriptor

from tests.helpers import RecordingRefresher, wait_until


@pytest.fixture
def refresher():
    return RecordingRefresher()


@pytest.fixture
def executor(cache, refresher, clock):
    return RefreshExecutor(cache, refresher, clock=clock)


@pytest_asyncio.fixture
async def scheduler(job_queue, executor, cache, clock):
    register_handlers(job_queue, ProjectionJobs(cache), ExportJobs(step_scale=0), MaintenanceJobs(executor))
    scheduler = RefreshScheduler(job_queue, executor, clock=clock)
    yield scheduler
    await scheduler.stop()


async def queued_views(backend):
    return await backend.zcard("queue:maintenance:waiting")


@pytest.mark.asyncio
async def test_successful_refresh_records_last_refresh(executor, refresher, cache, clock):
    result = await executor.refresh_view("distribution_campaign_summary")

    assert result.success is True
    assert refresher.calls == ["distribution_campaign_summary"]
    assert await cache.get(CacheKey.view_refresh("distribution_campaign_summary")) is None

    last = await executor.get_last_refresh("distribution_campaign_summary")
    assert last["timestamp"] == int(clock() * 1000)
    assert "durationMs" in last


@pytest.mark.asyncio
async def test_concurrent_refresh_is_rejected(executor, refresher):
    refresher.release = asyncio.Event()

    first = asyncio.create_task(executor.refresh_view("distribution_user_activity"))
    await wait_until(lambda: refresher.calls)

    second = await executor.refresh_view("distribution_user_activity")
    assert second.success is False
    assert second.error == REFRESH_IN_PROGRESS
    assert second.duration_ms == 0

    refresher.release.set()
    assert (await first).success is True
    assert refresher.calls == ["distribution_user_activity"]


@pytest.mark.asyncio
async def test_failed_refresh_clears_flag(cache, clock):
    refresher = RecordingRefresher(fail_with=RuntimeError("could not obtain lock"))
    executor = RefreshExecutor(cache, refresher, clock=clock)

    result = await executor.refresh_view("distribution_change_patterns")

    assert result.success is False
    assert result.error == "could not obtain lock"
    assert result.conflicted is False
    assert await cache.get(CacheKey.view_refresh("distribution_change_patterns")) is None
    assert await executor.get_last_refresh("distribution_change_patterns") is None


@pytest.mark.asyncio
async def test_refresh_proceeds_when_flag_backend_is_down(failing_backend, refresher):
    executor = RefreshExecutor(KeyValueCache(failing_backend), refresher)

    result = await executor.refresh_view("distribution_campaign_summary")

    assert result.success is True
    assert refresher.calls == ["distribution_campaign_summary"]


@pytest.mark.asyncio
async def test_unknown_view_raises(executor):
    with pytest.raises(ViewNotFoundError):
        await executor.refresh_view("missing_view")


def test_view_descriptor_validates_priority():
    with pytest.raises(ValueError):
        ViewDescriptor("v", 60, 11, frozenset())


@pytest.mark.asyncio
async def test_table_change_queues_dependents_by_priority(scheduler, backend):
    queued = await scheduler.on_table_changed("DistributionScenario")

    assert queued == [
        "distribution_scenario_performance",
        "distribution_performance_metrics",
        "distribution_campaign_summary",
    ]
    assert await queued_views(backend) == 3


@pytest.mark.asyncio
async def test_recently_refreshed_view_is_skipped_unless_urgent(scheduler, executor, clock):
    await executor.refresh_view("distribution_campaign_summary")
    await executor.refresh_view("distribution_performance_metrics")

    # 30s is under a quarter of the 5 minute interval
    clock.advance(30)
    queued = await scheduler.on_table_changed("DistributionSession")
    assert queued == ["distribution_performance_metrics"]

    # after 76s a quarter of the interval has passed
    clock.advance(46)
    queued = await scheduler.on_table_changed("DistributionSession")
    assert queued == ["distribution_performance_metrics", "distribution_campaign_summary"]


@pytest.mark.asyncio
async def test_unrelated_table_queues_nothing(scheduler):
    assert await scheduler.on_table_changed("Invoice") == []


@pytest.mark.asyncio
async def test_refresh_critical_views(scheduler):
    queued = await scheduler.refresh_critical_views()
    assert queued == [
        "distribution_scenario_performance",
        "distribution_performance_metrics",
        "distribution_campaign_summary",
    ]


@pytest.mark.asyncio
async def test_refresh_all_views_reports_counts(cache, clock):
    class PartlyBroken(RecordingRefresher):
        async def refresh(self, view_name, filters=None):
            await super().refresh(view_name, filters)
            if view_name == "distribution_user_activity":
                raise RuntimeError("permission denied")

    refresher = PartlyBroken()
    executor = RefreshExecutor(cache, refresher, clock=clock)
    scheduler = RefreshScheduler(None, executor, clock=clock)

    summary = await scheduler.refresh_all_views()

    assert summary == {
        "success": 4,
        "failed": 1,
        "errors": ["distribution_user_activity: permission denied"],
    }
    assert refresher.calls[0] == "distribution_scenario_performance"
    assert refresher.calls[-1] == "distribution_change_patterns"


@pytest.mark.asyncio
async def test_view_stats_classify_health(scheduler, executor, clock):
    await executor.refresh_view("distribution_performance_metrics")
    await executor.refresh_view("distribution_change_patterns")
    clock.advance(3 * 60)

    stats = {item["name"]: item for item in await scheduler.get_view_stats()}

    assert stats["distribution_performance_metrics"]["status"] == "stale"
    assert stats["distribution_change_patterns"]["status"] == "healthy"
    assert stats["distribution_user_activity"]["status"] == "error"
    assert stats["distribution_user_activity"]["lastRefresh"] is None
    assert stats["distribution_change_patterns"]["priority"] == 3
    assert stats["distribution_change_patterns"]["lastRefresh"].startswith("2023-11-14")


@pytest.mark.asyncio
async def test_refresh_job_runs_through_queue(scheduler, job_queue, refresher):
    await job_queue.start()

    handle = await scheduler.request_refresh("distribution_user_activity")
    result = await handle.finished(timeout=2)

    assert result["viewName"] == "distribution_user_activity"
    assert result["success"] is True
    assert refresher.calls == ["distribution_user_activity"]
    assert handle.priority == 5


@pytest.mark.asyncio
async def test_failed_refresh_job_is_dead_with_error(job_queue, cache, clock):
    executor = RefreshExecutor(cache, RecordingRefresher(fail_with=RuntimeError("relation does not exist")), clock=clock)
    register_handlers(job_queue, ProjectionJobs(cache), ExportJobs(step_scale=0), MaintenanceJobs(executor))
    scheduler = RefreshScheduler(job_queue, executor, clock=clock)
    await job_queue.start()

    handle = await scheduler.request_refresh("distribution_change_patterns")

    async def dead():
        return (await handle.status()).state == JobState.DEAD

    await wait_until(dead)
    status = await job_queue.get_status(QueueClass.MAINTENANCE, handle.id)
    assert "relation does not exist" in status.error


@pytest.mark.asyncio
async def test_periodic_refresh_enqueues_after_interval(job_queue, cache, clock, backend):
    fast_view = ViewDescriptor("fast_view", 0.05, 5, frozenset({"T"}))
    executor = RefreshExecutor(cache, RecordingRefresher(), views=[fast_view], clock=clock)
    register_handlers(job_queue, ProjectionJobs(cache), ExportJobs(step_scale=0), MaintenanceJobs(executor))
    scheduler = RefreshScheduler(job_queue, executor, clock=clock)

    await scheduler.start(periodic=True)
    try:
        assert await queued_views(backend) == 0
        await wait_until(lambda: queued_views(backend))
    finally:
        await scheduler.stop()

    assert scheduler.get_scheduled_refreshes() == []
