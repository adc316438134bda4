"""
Bounded-wait circuit breaker for interactive request paths.

A primary async operation is raced against a deadline. When the deadline
fires first, or the primary fails before it, a cheap fallback is served
instead and the degradation is logged. The primary is never cancelled: it
keeps running in the background and its eventual result is handed to an
optional callback so the work is not wasted.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class BridgeConfig:
    """Bounded-wait configuration."""
    deadline_ms: float = 500.0
    drain_timeout: float = 30.0


@dataclass
class BridgeMetrics:
    """Bounded-wait counters."""
    total_calls: int = 0
    primary_hits: int = 0
    degraded_calls: int = 0
    deadline_exceeded: int = 0
    primary_failures: int = 0
    late_completions: int = 0
    late_failures: int = 0
    last_degraded_time: Optional[float] = None


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class BoundedSyncBridge:
    """Serve a queued result within a deadline, or a fallback estimate."""

    def __init__(self, name: str = "bounded-sync-bridge", config: Optional[BridgeConfig] = None, metrics_collector=None):
        self.name = name
        self.config = config or BridgeConfig()
        self.metrics = BridgeMetrics()
        self.metrics_collector = metrics_collector
        self._abandoned: Set[asyncio.Task] = set()
        self.logger = structlog.get_logger(name)

    async def call_with_deadline(
        self,
        primary: Callable[[], Awaitable[Any]],
        fallback: Callable[[], Any],
        deadline_ms: Optional[float] = None,
        operation: Optional[str] = None,
        on_late_result: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        """
        Return ``primary()`` if it resolves within ``deadline_ms``, else ``fallback()``.

        Args:
            primary: Zero-argument callable returning an awaitable.
            fallback: Zero-argument callable, sync or async, always available.
            deadline_ms: Deadline in milliseconds, defaults to the configured one.
            operation: Name used in log events.
            on_late_result: Called with the primary's value if it completes
                after the deadline.
        """
        deadline_ms = self.config.deadline_ms if deadline_ms is None else deadline_ms
        operation = operation or self.name
        self.metrics.total_calls += 1

        task = asyncio.ensure_future(primary())
        try:
            done, _ = await asyncio.wait({task}, timeout=deadline_ms / 1000)
        except asyncio.CancelledError:
            self._abandon(task, operation, on_late_result)
            raise

        if task in done:
            error = task.exception()
            if error is None:
                self.metrics.primary_hits += 1
                return task.result()

            self.metrics.primary_failures += 1
            self._degraded(operation, "primary_failed", deadline_ms, error=str(error))
        else:
            self.metrics.deadline_exceeded += 1
            self._abandon(task, operation, on_late_result)
            self._degraded(operation, "deadline_exceeded", deadline_ms)

        return await _call(fallback)

    def _degraded(self, operation: str, reason: str, deadline_ms: float, **extra: Any) -> None:
        self.metrics.degraded_calls += 1
        self.metrics.last_degraded_time = time.time()
        if self.metrics_collector:
            self.metrics_collector.record_degradation(operation, reason)
        self.logger.warning(
            "Circuit degraded, serving fallback",
            operation=operation,
            reason=reason,
            deadline_ms=deadline_ms,
            **extra,
        )

    def _abandon(self, task: asyncio.Future, operation: str, on_late_result: Optional[Callable[[Any], Any]]) -> None:
        async def follow() -> None:
            try:
                value = await task
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.metrics.late_failures += 1
                self.logger.warning("Abandoned primary failed", operation=operation, error=str(e))
                return

            self.metrics.late_completions += 1
            self.logger.debug("Abandoned primary completed", operation=operation)
            if on_late_result is not None:
                try:
                    await _call(on_late_result, value)
                except Exception as e:
                    self.logger.error("Late result handler failed", operation=operation, error=str(e))

        follower = asyncio.create_task(follow())
        self._abandoned.add(follower)
        follower.add_done_callback(self._abandoned.discard)

    @property
    def pending(self) -> int:
        return len(self._abandoned)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for abandoned primaries; cancel whatever is left after ``timeout``."""
        if not self._abandoned:
            return

        timeout = self.config.drain_timeout if timeout is None else timeout
        _, pending = await asyncio.wait(set(self._abandoned), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.logger.warning("Abandoned primaries cancelled at shutdown", count=len(pending))

    def get_metrics(self) -> Dict[str, Any]:
        """Get bounded-wait metrics."""
        return {
            "name": self.name,
            "total_calls": self.metrics.total_calls,
            "primary_hits": self.metrics.primary_hits,
            "degraded_calls": self.metrics.degraded_calls,
            "deadline_exceeded": self.metrics.deadline_exceeded,
            "primary_failures": self.metrics.primary_failures,
            "late_completions": self.metrics.late_completions,
            "late_failures": self.metrics.late_failures,
            "pending_primaries": len(self._abandoned),
            "last_degraded_time": self.metrics.last_degraded_time,
            "config": {
                "deadline_ms": self.config.deadline_ms,
                "drain_timeout": self.config.drain_timeout,
            },
        }
