"""Tests for the bounded-wait bridge."""

import asyncio

import pytest
from structlog.testing import capture_logs

from shared.framework.circuit_breaker import BoundedSyncBridge, BridgeConfig


@pytest.fixture
def bridge():
    return BoundedSyncBridge("test-bridge", BridgeConfig(deadline_ms=50, drain_timeout=1.0))


@pytest.mark.asyncio
async def test_primary_within_deadline_wins(bridge: BoundedSyncBridge):
    async def primary():
        await asyncio.sleep(0.001)
        return "full"

    with capture_logs() as logs:
        assert await bridge.call_with_deadline(primary, lambda: "estimate") == "full"

    assert not [entry for entry in logs if entry["log_level"] == "warning"]
    assert bridge.get_metrics()["primary_hits"] == 1
    assert bridge.get_metrics()["degraded_calls"] == 0


@pytest.mark.asyncio
async def test_deadline_serves_fallback_and_logs_degradation(bridge: BoundedSyncBridge):
    release = asyncio.Event()

    async def primary():
        await release.wait()
        return "full"

    with capture_logs() as logs:
        result = await bridge.call_with_deadline(primary, lambda: "estimate", operation="live-edit")

    assert result == "estimate"
    degraded = [entry for entry in logs if entry["event"] == "Circuit degraded, serving fallback"]
    assert len(degraded) == 1
    assert degraded[0]["log_level"] == "warning"
    assert degraded[0]["operation"] == "live-edit"
    assert degraded[0]["reason"] == "deadline_exceeded"
    assert degraded[0]["deadline_ms"] == 50

    release.set()
    await bridge.drain()


@pytest.mark.asyncio
async def test_abandoned_primary_keeps_running_and_delivers_late_result(bridge: BoundedSyncBridge):
    release = asyncio.Event()
    late = []

    async def primary():
        await release.wait()
        return "full"

    async def on_late_result(value):
        late.append(value)

    result = await bridge.call_with_deadline(primary, lambda: "estimate", on_late_result=on_late_result)
    assert result == "estimate"
    assert bridge.pending == 1

    release.set()
    await bridge.drain()

    assert late == ["full"]
    assert bridge.pending == 0
    assert bridge.get_metrics()["late_completions"] == 1


@pytest.mark.asyncio
async def test_failing_primary_degrades_to_fallback(bridge: BoundedSyncBridge):
    async def primary():
        raise RuntimeError("job dead")

    async def fallback():
        return "estimate"

    with capture_logs() as logs:
        assert await bridge.call_with_deadline(primary, fallback) == "estimate"

    degraded = [entry for entry in logs if entry["event"] == "Circuit degraded, serving fallback"]
    assert degraded[0]["reason"] == "primary_failed"
    assert degraded[0]["error"] == "job dead"
    assert bridge.get_metrics()["primary_failures"] == 1


@pytest.mark.asyncio
async def test_late_failure_is_consumed_and_logged(bridge: BoundedSyncBridge):
    release = asyncio.Event()

    async def primary():
        await release.wait()
        raise RuntimeError("late boom")

    assert await bridge.call_with_deadline(primary, lambda: "estimate", deadline_ms=10) == "estimate"

    with capture_logs() as logs:
        release.set()
        await bridge.drain()

    assert any(entry["event"] == "Abandoned primary failed" for entry in logs)
    assert bridge.get_metrics()["late_failures"] == 1
