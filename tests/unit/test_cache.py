"""Tests for the key/value cache and stale-while-revalidate reads."""

import asyncio

import pytest
from structlog.testing import capture_logs

from shared.framework.cache import CacheKey, KeyValueCache, RevalidatingCache


@pytest.mark.asyncio
async def test_set_get_and_expiry(cache: KeyValueCache, clock):
    await cache.set("k", {"value": 1}, ttl=30)
    assert await cache.get("k") == {"value": 1}

    clock.advance(30)
    assert await cache.get("k") is None
    assert cache.get_stats()["hits"] == 1
    assert cache.get_stats()["misses"] == 1


@pytest.mark.asyncio
async def test_default_ttl_applies(cache: KeyValueCache, clock):
    await cache.set("k", "v")
    clock.advance(299)
    assert await cache.get("k") == "v"
    clock.advance(1)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_delete_and_delete_pattern(cache: KeyValueCache):
    await cache.set("distribution:s1:session", 1)
    await cache.set("distribution:s1:session:stale", 1)
    await cache.set("other", 1)

    assert await cache.delete("other") is True
    assert await cache.delete_pattern("distribution:s1:*") == 2
    assert await cache.get("distribution:s1:session") is None
    assert await cache.delete_pattern("nothing:*") == 0


@pytest.mark.asyncio
async def test_set_if_absent(cache: KeyValueCache):
    assert await cache.set_if_absent("flag", {"status": "refreshing"}, 300) is True
    assert await cache.set_if_absent("flag", {"status": "refreshing"}, 300) is False


@pytest.mark.asyncio
async def test_backend_failures_degrade_to_miss(failing_backend):
    cache = KeyValueCache(failing_backend)

    with capture_logs() as logs:
        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False
        assert await cache.delete("k") is False
        assert await cache.delete_pattern("k*") == 0
        assert await cache.set_if_absent("k", 1) is None

    assert cache.get_stats()["errors"] == 5
    assert {entry["key"] for entry in logs if "key" in entry} == {"k"}
    assert all(entry["log_level"] == "error" for entry in logs)


@pytest.mark.asyncio
async def test_get_or_set_computes_once_then_hits(revalidating: RevalidatingCache):
    calls = []

    def compute():
        calls.append(1)
        return {"computed": True}

    assert await revalidating.get_or_set("k", compute) == {"computed": True}
    assert await revalidating.get_or_set("k", compute) == {"computed": True}
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_get_or_set_survives_backend_outage(failing_backend):
    revalidating = RevalidatingCache(KeyValueCache(failing_backend))

    async def compute():
        return 42

    assert await revalidating.get_or_set("k", compute) == 42


@pytest.mark.asyncio
async def test_cold_read_writes_fresh_and_stale(revalidating: RevalidatingCache, cache: KeyValueCache, clock):
    value = await revalidating.get_or_revalidate("session", lambda: "v1", stale_ttl=60, fresh_ttl=300)

    assert value == "v1"
    assert await cache.get("session") == "v1"
    assert await cache.get(CacheKey.stale("session")) == "v1"

    # the stale companion outlives the fresh entry by stale_ttl
    clock.advance(300)
    assert await cache.get("session") is None
    assert await cache.get(CacheKey.stale("session")) == "v1"
    clock.advance(60)
    assert await cache.get(CacheKey.stale("session")) is None


@pytest.mark.asyncio
async def test_fresh_hit_does_not_compute(revalidating: RevalidatingCache):
    await revalidating.get_or_revalidate("session", lambda: "v1")

    def explode():
        raise AssertionError("compute must not run on a fresh hit")

    assert await revalidating.get_or_revalidate("session", explode) == "v1"
    assert revalidating.pending_revalidations == 0


@pytest.mark.asyncio
async def test_stale_hit_returns_immediately_and_refreshes(revalidating: RevalidatingCache, cache, clock):
    await revalidating.get_or_revalidate("session", lambda: "v1", stale_ttl=60, fresh_ttl=300)
    clock.advance(301)

    release = asyncio.Event()
    calls = []

    async def recompute():
        calls.append(1)
        await release.wait()
        return "v2"

    first = await revalidating.get_or_revalidate("session", recompute, stale_ttl=60, fresh_ttl=300)
    second = await revalidating.get_or_revalidate("session", recompute, stale_ttl=60, fresh_ttl=300)

    assert first == second == "v1"
    assert revalidating.pending_revalidations == 1

    release.set()
    await revalidating.drain(timeout=1.0)

    assert calls == [1]
    assert await cache.get("session") == "v2"
    assert await cache.get(CacheKey.stale("session")) == "v2"


@pytest.mark.asyncio
async def test_background_refresh_failure_is_logged(revalidating: RevalidatingCache, cache, clock):
    await revalidating.get_or_revalidate("session", lambda: "v1")
    clock.advance(301)

    async def broken():
        raise RuntimeError("database down")

    with capture_logs() as logs:
        assert await revalidating.get_or_revalidate("session", broken) == "v1"
        await revalidating.drain(timeout=1.0)

    failures = [entry for entry in logs if entry["event"] == "Background cache refresh failed"]
    assert failures and failures[0]["error"] == "database down"
    assert await cache.get(CacheKey.stale("session")) == "v1"
    assert revalidating.pending_revalidations == 0


@pytest.mark.asyncio
async def test_cold_compute_error_propagates(revalidating: RevalidatingCache):
    def broken():
        raise RuntimeError("no data")

    with pytest.raises(RuntimeError):
        await revalidating.get_or_revalidate("session", broken)


@pytest.mark.asyncio
async def test_get_or_set_recomputes_after_ttl(revalidating: RevalidatingCache, clock):
    calls = []

    async def compute():
        calls.append(1)
        return {"summary": len(calls)}

    assert await revalidating.get_or_set("campaign_summary:c1", compute, ttl=60) == {"summary": 1}
    clock.advance(59)
    assert await revalidating.get_or_set("campaign_summary:c1", compute, ttl=60) == {"summary": 1}
    clock.advance(2)
    assert await revalidating.get_or_set("campaign_summary:c1", compute, ttl=60) == {"summary": 2}
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_get_or_set_does_not_store_none(revalidating: RevalidatingCache, cache: KeyValueCache):
    calls = []

    def compute():
        calls.append(1)
        return None

    assert await revalidating.get_or_set("user_activity:u1", compute) is None
    assert await revalidating.get_or_set("user_activity:u1", compute) is None
    assert len(calls) == 2
    assert cache.get_stats()["sets"] == 0


@pytest.mark.asyncio
async def test_explicit_zero_ttl_is_not_replaced_by_default(cache: KeyValueCache):
    await cache.set("k", "v", ttl=0)
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_zero_stale_window_recomputes_inline(revalidating: RevalidatingCache, clock):
    await revalidating.get_or_revalidate("session", lambda: "v1", stale_ttl=0, fresh_ttl=300)
    clock.advance(300)

    assert await revalidating.get_or_revalidate("session", lambda: "v2", stale_ttl=0, fresh_ttl=300) == "v2"
    assert revalidating.pending_revalidations == 0
