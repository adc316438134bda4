"""Test doubles and polling helpers shared by the test suite."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from shared.framework.queue import BackoffPolicy, BackoffType, QueueClass, QueuePolicy


class FakeClock:
    """Manually advanced clock in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingBackend:
    """Backend whose every operation fails as if the server were unreachable."""

    def __init__(self):
        self.calls: List[str] = []

    def __getattr__(self, name: str) -> Callable[..., Any]:
        async def fail(*args, **kwargs):
            self.calls.append(name)
            raise ConnectionError("backend unavailable")

        return fail


class RecordingRefresher:
    """View refresher double that records calls and can block or fail."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.calls: List[str] = []
        self.release: Optional[asyncio.Event] = None

    async def refresh(self, view_name: str, filters: Optional[Dict[str, Any]] = None) -> None:
        self.calls.append(view_name)
        if self.release is not None:
            await self.release.wait()
        if self.fail_with is not None:
            raise self.fail_with


class RecordingRowSource:
    """Row source double that serves canned rows per view and records queries."""

    def __init__(
        self,
        rows: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        fail_with: Optional[Exception] = None,
    ):
        self.rows = rows or {}
        self.fail_with = fail_with
        self.queries: List[Tuple[str, Tuple[Any, ...]]] = []

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        self.queries.append((query, args))
        if self.fail_with is not None:
            raise self.fail_with
        view_name = query.split(" FROM ", 1)[1].split()[0]
        return list(self.rows.get(view_name, []))


FAST_POLICIES = {
    QueueClass.COMPUTE: QueuePolicy(concurrency=10, attempts=3, backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 0.01)),
    QueueClass.EXPORT: QueuePolicy(concurrency=3, attempts=2, backoff=BackoffPolicy(BackoffType.FIXED, 0.01)),
    QueueClass.MAINTENANCE: QueuePolicy(concurrency=1, attempts=1),
}


async def wait_until(predicate: Callable[[], Any], timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll an (optionally async) predicate until it is truthy."""
    deadline = time.monotonic() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


