"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from shared.framework.cache import KeyValueCache, RevalidatingCache
from shared.framework.queue import JobQueue
from shared.storage.memory import MemoryClient

from tests.helpers import FAST_POLICIES, FailingBackend, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> MemoryClient:
    return MemoryClient(clock=clock)


@pytest.fixture
def cache(backend: MemoryClient) -> KeyValueCache:
    return KeyValueCache(backend, default_ttl=300)


@pytest.fixture
def revalidating(cache: KeyValueCache) -> RevalidatingCache:
    return RevalidatingCache(cache, default_ttl=300, default_stale_ttl=60)


@pytest.fixture
def failing_backend() -> FailingBackend:
    return FailingBackend()


@pytest_asyncio.fixture
async def job_queue(backend: MemoryClient):
    queue = JobQueue(backend, policies=FAST_POLICIES, poll_interval=0.01)
    yield queue
    await queue.close(timeout=1.0)
