"""
Priority job queue over the shared key/value backend.

Three independently configured queue classes (compute, export,
maintenance) share one backend. Each class has a concurrency limit, a
retry budget and a backoff policy. Job records live under
``job:<queue>:<id>``; ready jobs sit in the ``queue:<queue>:waiting``
sorted set (higher priority first, ties in enqueue order) and jobs
waiting out a delay or a retry backoff sit in ``queue:<queue>:delayed``
scored by their ready-at epoch time. Claimed jobs hold a lease in
``queue:<queue>:active`` scored by its deadline; the worker renews it while
the handler runs, and any worker re-queues jobs whose lease has expired,
so a job claimed by a process that died is picked up again.

Delivery is at-least-once: handlers must tolerate re-execution.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import structlog

from ..storage.base import CacheBackend
from ..utils.errors import (
    JobFailedError,
    JobNotFoundError,
    QueueUnavailableError,
    UnknownOperationError,
    UnknownQueueError,
)
from ..utils.tracing import trace_async_function

logger = structlog.get_logger(__name__)

PRIORITY_WEIGHT = 10_000_000_000
PROMOTE_BATCH = 100
DEFAULT_LEASE_SECONDS = 30.0


class QueueClass(str, Enum):
    """Queue classes."""
    COMPUTE = "compute"
    EXPORT = "export"
    MAINTENANCE = "maintenance"


class BackoffType(str, Enum):
    """Retry backoff strategies."""
    EXPONENTIAL = "exponential"
    FIXED = "fixed"
    NONE = "none"


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before re-running a failed job."""
    type: BackoffType = BackoffType.NONE
    delay: float = 0.0  # seconds

    def delay_for(self, attempts_made: int) -> float:
        """Delay after the ``attempts_made``-th failed attempt."""
        if self.type == BackoffType.EXPONENTIAL:
            return self.delay * (2 ** max(attempts_made - 1, 0))
        if self.type == BackoffType.FIXED:
            return self.delay
        return 0.0


@dataclass(frozen=True)
class QueuePolicy:
    """Per-class execution policy."""
    concurrency: int
    attempts: int
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)

    def __post_init__(self):
        if self.concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")


DEFAULT_POLICIES: Dict[QueueClass, QueuePolicy] = {
    QueueClass.COMPUTE: QueuePolicy(
        concurrency=10, attempts=3, backoff=BackoffPolicy(BackoffType.EXPONENTIAL, 2.0)
    ),
    QueueClass.EXPORT: QueuePolicy(
        concurrency=3, attempts=2, backoff=BackoffPolicy(BackoffType.FIXED, 1.0)
    ),
    QueueClass.MAINTENANCE: QueuePolicy(concurrency=1, attempts=1),
}


class JobState(str, Enum):
    """Job lifecycle states."""
    ENQUEUED = "enqueued"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"  # an attempt failed, retry scheduled
    DEAD = "dead"  # attempts exhausted


TERMINAL_STATES = {JobState.COMPLETED, JobState.DEAD}


@dataclass
class Job:
    """Persistent job record."""
    id: str
    queue: QueueClass
    operation: str
    payload: Dict[str, Any]
    priority: int = 0
    attempts: int = 1
    attempts_made: int = 0
    state: JobState = JobState.ENQUEUED
    progress: int = 0
    result: Any = None
    error: Optional[str] = None
    sequence: int = 0
    created_at: float = field(default_factory=time.time)
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def attempts_remaining(self) -> int:
        return max(self.attempts - self.attempts_made, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue.value,
            "operation": self.operation,
            "payload": self.payload,
            "priority": self.priority,
            "attempts": self.attempts,
            "attempts_made": self.attempts_made,
            "state": self.state.value,
            "progress": self.progress,
            "result": self.result,
            "error": self.error,
            "sequence": self.sequence,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=str(data["id"]),
            queue=QueueClass(data["queue"]),
            operation=data["operation"],
            payload=data.get("payload") or {},
            priority=int(data.get("priority", 0)),
            attempts=int(data.get("attempts", 1)),
            attempts_made=int(data.get("attempts_made", 0)),
            state=JobState(data.get("state", JobState.ENQUEUED.value)),
            progress=int(data.get("progress", 0)),
            result=data.get("result"),
            error=data.get("error"),
            sequence=int(data.get("sequence", 0)),
            created_at=float(data.get("created_at") or 0.0),
            processed_at=data.get("processed_at"),
            finished_at=data.get("finished_at"),
        )


@dataclass(frozen=True)
class JobStatus:
    """
    Read-only view of a job.

    ``result`` is only meaningful in the completed state and ``error`` only
    in the failed and dead states; ``to_dict`` omits them otherwise.
    """
    job_id: str
    queue: QueueClass
    operation: str
    state: JobState
    progress: int
    attempts_made: int
    attempts_remaining: int
    result: Any = None
    error: Optional[str] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatus":
        return cls(
            job_id=job.id,
            queue=job.queue,
            operation=job.operation,
            state=job.state,
            progress=job.progress,
            attempts_made=job.attempts_made,
            attempts_remaining=job.attempts_remaining,
            result=job.result if job.state == JobState.COMPLETED else None,
            error=job.error if job.state in (JobState.FAILED, JobState.DEAD) else None,
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "jobId": self.job_id,
            "queue": self.queue.value,
            "operation": self.operation,
            "state": self.state.value,
            "progress": self.progress,
            "attemptsMade": self.attempts_made,
            "attemptsRemaining": self.attempts_remaining,
        }
        if self.state == JobState.COMPLETED:
            data["result"] = self.result
        if self.state in (JobState.FAILED, JobState.DEAD):
            data["error"] = self.error
        return data


class JobContext:
    """Handle passed to job handlers."""

    def __init__(self, queue: "JobQueue", job: Job):
        self._queue = queue
        self.job = job

    @property
    def payload(self) -> Dict[str, Any]:
        return self.job.payload

    async def report_progress(self, progress: int) -> None:
        """Record an intermediate completion percentage (0-100)."""
        self.job.progress = max(0, min(100, int(progress)))
        try:
            await self._queue._save(self.job)
        except Exception as e:
            logger.warning("Progress update failed", job_id=self.job.id, error=str(e))


JobHandler = Callable[[JobContext], Awaitable[Any]]


class JobHandle:
    """Reference to an enqueued job."""

    def __init__(self, queue: "JobQueue", job: Job):
        self._queue = queue
        self.id = job.id
        self.queue_class = job.queue
        self.operation = job.operation
        self.priority = job.priority

    async def status(self) -> JobStatus:
        return await self._queue.get_status(self.queue_class, self.id)

    async def finished(self, timeout: Optional[float] = None) -> Any:
        """Wait for the job result; raises ``JobFailedError`` when the job is dead."""
        return await self._queue.wait_for(self.queue_class, self.id, timeout=timeout)

    def __repr__(self) -> str:
        return f"JobHandle(queue={self.queue_class.value!r}, id={self.id!r}, operation={self.operation!r})"


class JobQueue:
    """
    Priority-aware job queue with per-class concurrency and retry policy.

    Workers for a class pull up to ``concurrency`` jobs at a time. They are
    woken immediately by local enqueues and otherwise poll the backend every
    ``poll_interval`` seconds, which is how jobs enqueued by other instances
    and expired delays are picked up.
    """

    def __init__(
        self,
        backend: CacheBackend,
        policies: Optional[Dict[QueueClass, QueuePolicy]] = None,
        poll_interval: float = 0.1,
        job_retention: int = 86400,
        clock: Callable[[], float] = time.time,
        metrics=None,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
    ):
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")
        self.backend = backend
        self.policies: Dict[QueueClass, QueuePolicy] = {**DEFAULT_POLICIES, **(policies or {})}
        self.poll_interval = poll_interval
        self.job_retention = job_retention
        self.lease_seconds = lease_seconds
        self.clock = clock
        self.metrics = metrics
        self.logger = structlog.get_logger("job-queue")

        self._handlers: Dict[QueueClass, Dict[str, JobHandler]] = {queue: {} for queue in QueueClass}
        self._semaphores: Dict[QueueClass, asyncio.Semaphore] = {}
        self._wake: Dict[QueueClass, asyncio.Event] = {}
        self._dispatchers: Dict[QueueClass, asyncio.Task] = {}
        self._running_jobs: Set[asyncio.Task] = set()
        self._active_counts: Dict[QueueClass, int] = {queue: 0 for queue in QueueClass}
        self._waiters: Dict[str, List[asyncio.Future]] = {}
        self.is_running = False

    # Keys

    @staticmethod
    def _job_key(queue: QueueClass, job_id: str) -> str:
        return f"job:{queue.value}:{job_id}"

    @staticmethod
    def _waiting_key(queue: QueueClass) -> str:
        return f"queue:{queue.value}:waiting"

    @staticmethod
    def _delayed_key(queue: QueueClass) -> str:
        return f"queue:{queue.value}:delayed"

    @staticmethod
    def _active_key(queue: QueueClass) -> str:
        return f"queue:{queue.value}:active"

    @staticmethod
    def _sequence_key(queue: QueueClass) -> str:
        return f"queue:{queue.value}:seq"

    @staticmethod
    def _score(job: Job) -> float:
        return -job.priority * PRIORITY_WEIGHT + job.sequence

    @staticmethod
    def _coerce_queue(queue: Union[QueueClass, str]) -> QueueClass:
        try:
            return QueueClass(queue)
        except ValueError:
            raise UnknownQueueError(queue) from None

    # Registration and lifecycle

    def register(self, queue: Union[QueueClass, str], operation: str, handler: JobHandler) -> None:
        """Register the handler for a (queue, operation) pair."""
        queue = self._coerce_queue(queue)
        self._handlers[queue][operation] = handler
        self.logger.debug("Job handler registered", queue=queue.value, operation=operation)

        if self.is_running and queue not in self._dispatchers:
            self._start_dispatcher(queue)

    async def start(self) -> None:
        """Start one dispatcher per queue class that has handlers."""
        if self.is_running:
            return

        self.is_running = True
        for queue in QueueClass:
            if self._handlers[queue]:
                self._start_dispatcher(queue)

        self.logger.info(
            "Job queue started",
            queues=[queue.value for queue in self._dispatchers],
        )

    def _start_dispatcher(self, queue: QueueClass) -> None:
        self._semaphores[queue] = asyncio.Semaphore(self.policies[queue].concurrency)
        self._wake[queue] = asyncio.Event()
        self._dispatchers[queue] = asyncio.create_task(self._dispatch(queue))

    async def close(self, timeout: Optional[float] = 30.0) -> None:
        """Stop claiming jobs and wait for in-flight jobs to finish."""
        self.is_running = False

        for task in self._dispatchers.values():
            task.cancel()
        if self._dispatchers:
            await asyncio.gather(*self._dispatchers.values(), return_exceptions=True)
        self._dispatchers.clear()

        if self._running_jobs:
            self.logger.info("Waiting for in-flight jobs", count=len(self._running_jobs))
            _, pending = await asyncio.wait(set(self._running_jobs), timeout=timeout)
            if pending:
                self.logger.warning("Abandoning in-flight jobs after drain timeout", count=len(pending))
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self.logger.info("Job queue stopped")

    # Producer side

    async def enqueue(
        self,
        queue: Union[QueueClass, str],
        operation: str,
        payload: Dict[str, Any],
        priority: int = 0,
        delay: float = 0.0,
    ) -> JobHandle:
        """Add a job; higher ``priority`` runs sooner, ``delay`` is in seconds."""
        queue = self._coerce_queue(queue)
        if operation not in self._handlers[queue]:
            raise UnknownOperationError(queue.value, operation)

        policy = self.policies[queue]
        try:
            sequence = await self.backend.incr(self._sequence_key(queue))
            job = Job(
                id=str(sequence),
                queue=queue,
                operation=operation,
                payload=dict(payload),
                priority=int(priority),
                attempts=policy.attempts,
                sequence=sequence,
                created_at=self.clock(),
            )

            if delay and delay > 0:
                job.state = JobState.DELAYED
                await self._save(job)
                await self.backend.zadd(self._delayed_key(queue), {job.id: self.clock() + delay})
            else:
                await self._save(job)
                await self.backend.zadd(self._waiting_key(queue), {job.id: self._score(job)})

        except Exception as e:
            self.logger.error("Job enqueue failed", queue=queue.value, operation=operation, error=str(e))
            raise QueueUnavailableError(f"Could not enqueue {operation}: {e}", queue=queue.value) from e

        self._notify(queue)
        if self.metrics:
            self.metrics.record_job(queue.value, operation, job.state.value)

        self.logger.debug(
            "Job enqueued",
            queue=queue.value,
            job_id=job.id,
            operation=operation,
            priority=job.priority,
            delay=delay,
        )
        return JobHandle(self, job)

    async def get_status(self, queue: Union[QueueClass, str], job_id: str) -> JobStatus:
        """Return the status of a job; raises ``JobNotFoundError`` for unknown ids."""
        queue = self._coerce_queue(queue)
        try:
            job = await self._load(queue, job_id)
        except Exception as e:
            raise QueueUnavailableError(f"Could not read job {job_id}: {e}", queue=queue.value) from e

        if job is None:
            raise JobNotFoundError(queue.value, job_id)
        return JobStatus.from_job(job)

    async def wait_for(
        self, queue: Union[QueueClass, str], job_id: str, timeout: Optional[float] = None
    ) -> Any:
        """Wait until the job reaches a terminal state and return its result."""
        queue = self._coerce_queue(queue)
        waiter_key = f"{queue.value}:{job_id}"
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(waiter_key, []).append(future)

        try:
            return await asyncio.wait_for(self._await_terminal(queue, job_id, future), timeout)
        finally:
            waiters = self._waiters.get(waiter_key)
            if waiters and future in waiters:
                waiters.remove(future)
                if not waiters:
                    del self._waiters[waiter_key]

    async def _await_terminal(self, queue: QueueClass, job_id: str, future: asyncio.Future) -> Any:
        while True:
            if future.done():
                job = future.result()
            else:
                try:
                    job = await self._load(queue, job_id)
                except Exception as e:
                    self.logger.warning("Job status poll failed", job_id=job_id, error=str(e))
                    job = None
                else:
                    if job is None:
                        raise JobNotFoundError(queue.value, job_id)

            if job is not None and job.state == JobState.COMPLETED:
                return job.result
            if job is not None and job.state == JobState.DEAD:
                raise JobFailedError(job.error or "Job failed", job.id, job.attempts_made)

            await asyncio.wait({future}, timeout=self.poll_interval)

    async def get_counts(self) -> Dict[str, Dict[str, int]]:
        """
        Job counts per queue class.

        ``leased`` counts jobs claimed by any instance; ``active`` only those
        running in this process.
        """
        counts = {}
        for queue in QueueClass:
            try:
                waiting = await self.backend.zcard(self._waiting_key(queue))
                delayed = await self.backend.zcard(self._delayed_key(queue))
                leased = await self.backend.zcard(self._active_key(queue))
            except Exception as e:
                self.logger.warning("Queue count failed", queue=queue.value, error=str(e))
                waiting = delayed = leased = -1
            counts[queue.value] = {
                "waiting": waiting,
                "delayed": delayed,
                "leased": leased,
                "active": self._active_counts[queue],
            }
        return counts

    # Worker side

    def _notify(self, queue: QueueClass) -> None:
        event = self._wake.get(queue)
        if event is not None:
            event.set()

    async def _dispatch(self, queue: QueueClass) -> None:
        semaphore = self._semaphores[queue]
        wake = self._wake[queue]

        while self.is_running:
            try:
                wake.clear()
                await self._promote_delayed(queue)
                await self._recover_stalled(queue)

                await semaphore.acquire()
                try:
                    job = await self._claim(queue)
                except BaseException:
                    semaphore.release()
                    raise

                if job is None:
                    semaphore.release()
                    try:
                        await asyncio.wait_for(wake.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass
                    continue

                task = asyncio.create_task(self._run(job, semaphore))
                self._running_jobs.add(task)
                task.add_done_callback(self._running_jobs.discard)

            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error("Queue dispatcher error", queue=queue.value, error=str(e))
                await asyncio.sleep(self.poll_interval)

    async def _promote_delayed(self, queue: QueueClass) -> None:
        delayed_key = self._delayed_key(queue)
        due = await self.backend.zrangebyscore(delayed_key, 0, self.clock(), limit=PROMOTE_BATCH)
        for job_id in due:
            job = await self._load(queue, job_id)

            # only the instance whose ZREM succeeds moves the job
            if not await self.backend.zrem(delayed_key, job_id):
                continue

            if job is None:
                self.logger.warning("Delayed job record missing", queue=queue.value, job_id=job_id)
                continue

            try:
                if job.state == JobState.DELAYED:
                    job.state = JobState.ENQUEUED
                    await self._save(job)
                await self.backend.zadd(self._waiting_key(queue), {job.id: self._score(job)})
            except BaseException:
                await self._put_back(delayed_key, job.id, self.clock())
                raise

    async def _recover_stalled(self, queue: QueueClass) -> None:
        """Re-queue jobs whose lease expired without the job finishing."""
        active_key = self._active_key(queue)
        expired = await self.backend.zrangebyscore(active_key, 0, self.clock(), limit=PROMOTE_BATCH)
        for job_id in expired:
            job = await self._load(queue, job_id)

            if not await self.backend.zrem(active_key, job_id):
                continue

            # retries and terminal states are already tracked elsewhere
            if job is None or job.state not in (JobState.ACTIVE, JobState.ENQUEUED):
                continue

            try:
                job.state = JobState.ENQUEUED
                await self._save(job)
                await self.backend.zadd(self._waiting_key(queue), {job.id: self._score(job)})
            except BaseException:
                await self._put_back(active_key, job.id, self.clock())
                raise

            self.logger.warning(
                "Stalled job re-queued",
                queue=queue.value,
                job_id=job.id,
                operation=job.operation,
                attempts_made=job.attempts_made,
            )

    async def _claim(self, queue: QueueClass) -> Optional[Job]:
        while True:
            popped = await self.backend.zpopmin(self._waiting_key(queue), 1)
            if not popped:
                return None

            job_id, score = popped[0]
            try:
                await self.backend.zadd(self._active_key(queue), {job_id: self.clock() + self.lease_seconds})
                job = await self._load(queue, job_id)
                if job is None:
                    self.logger.warning("Claimed job record missing", queue=queue.value, job_id=job_id)
                    await self.backend.zrem(self._active_key(queue), job_id)
                    continue

                job.state = JobState.ACTIVE
                job.processed_at = self.clock()
                await self._save(job)
            except BaseException:
                await self._put_back(self._waiting_key(queue), job_id, score)
                await self._drop_lease(queue, job_id)
                raise

            return job

    async def _put_back(self, key: str, job_id: str, score: float) -> None:
        try:
            await self.backend.zadd(key, {job_id: score})
        except Exception as e:
            self.logger.error("Could not return job to queue", key=key, job_id=job_id, error=str(e))

    async def _drop_lease(self, queue: QueueClass, job_id: str) -> None:
        try:
            await self.backend.zrem(self._active_key(queue), job_id)
        except Exception as e:
            # the lease expires and the sweep settles the job
            self.logger.warning("Could not release job lease", queue=queue.value, job_id=job_id, error=str(e))

    async def _renew_lease(self, job: Job) -> None:
        active_key = self._active_key(job.queue)
        while True:
            await asyncio.sleep(self.lease_seconds / 3)
            try:
                await self.backend.zadd(active_key, {job.id: self.clock() + self.lease_seconds})
            except Exception as e:
                self.logger.warning("Job lease renewal failed", queue=job.queue.value, job_id=job.id, error=str(e))

    async def _run(self, job: Job, semaphore: asyncio.Semaphore) -> None:
        queue = job.queue
        self._active_counts[queue] += 1
        started = time.perf_counter()
        log = self.logger.bind(queue=queue.value, job_id=job.id, operation=job.operation)
        heartbeat = asyncio.create_task(self._renew_lease(job))

        try:
            error: Optional[Exception] = None
            result: Any = None
            try:
                async with trace_async_function(
                    f"job.{queue.value}.{job.operation}",
                    {
                        "job.id": job.id,
                        "job.queue": queue.value,
                        "job.attempt": job.attempts_made + 1,
                    },
                ):
                    handler = self._handlers[queue].get(job.operation)
                    if handler is None:
                        raise UnknownOperationError(queue.value, job.operation)
                    result = await handler(JobContext(self, job))
            except asyncio.CancelledError:
                await self._stop_heartbeat(heartbeat)
                await self._requeue_interrupted(job, log)
                raise
            except Exception as e:
                error = e

            await self._stop_heartbeat(heartbeat)
            duration = time.perf_counter() - started
            try:
                if error is None:
                    await self._complete(job, result)
                    log.info("Job completed", duration_ms=round(duration * 1000, 2))
                else:
                    await self._fail(job, error, log)
            except Exception as e:
                log.error("Job state update failed", error=str(e))

            if self.metrics:
                self.metrics.record_job(queue.value, job.operation, job.state.value, duration)
        finally:
            if not heartbeat.done():
                heartbeat.cancel()
            self._active_counts[queue] -= 1
            semaphore.release()

    @staticmethod
    async def _stop_heartbeat(heartbeat: asyncio.Task) -> None:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)

    async def _requeue_interrupted(self, job: Job, log) -> None:
        """Hand a job cut off by shutdown back to the waiting set without spending an attempt."""
        job.state = JobState.ENQUEUED
        job.progress = 0
        try:
            await self._save(job)
            await self.backend.zadd(self._waiting_key(job.queue), {job.id: self._score(job)})
        except Exception as e:
            log.error("Could not re-queue interrupted job", error=str(e))
            return
        await self._drop_lease(job.queue, job.id)
        log.warning("Interrupted job re-queued")

    async def _complete(self, job: Job, result: Any) -> None:
        job.attempts_made += 1
        job.state = JobState.COMPLETED
        job.progress = 100
        job.result = result
        job.error = None
        job.finished_at = self.clock()
        await self._save(job)
        await self._drop_lease(job.queue, job.id)
        self._resolve_waiters(job)

    async def _fail(self, job: Job, error: Exception, log) -> None:
        job.attempts_made += 1
        job.error = str(error) or error.__class__.__name__

        if job.attempts_remaining > 0:
            delay = self.policies[job.queue].backoff.delay_for(job.attempts_made)
            job.state = JobState.FAILED
            await self._save(job)
            if delay > 0:
                await self.backend.zadd(self._delayed_key(job.queue), {job.id: self.clock() + delay})
            else:
                await self.backend.zadd(self._waiting_key(job.queue), {job.id: self._score(job)})
                self._notify(job.queue)
            await self._drop_lease(job.queue, job.id)
            log.warning(
                "Job attempt failed, retry scheduled",
                error=job.error,
                attempts_made=job.attempts_made,
                attempts_remaining=job.attempts_remaining,
                retry_in=delay,
            )
            return

        job.state = JobState.DEAD
        job.finished_at = self.clock()
        await self._save(job)
        await self._drop_lease(job.queue, job.id)
        self._resolve_waiters(job)
        log.error("Job dead", error=job.error, attempts_made=job.attempts_made)

    def _resolve_waiters(self, job: Job) -> None:
        for future in self._waiters.pop(f"{job.queue.value}:{job.id}", []):
            if not future.done():
                future.set_result(job)

    # Persistence

    async def _save(self, job: Job) -> None:
        await self.backend.set(
            self._job_key(job.queue, job.id),
            json.dumps(job.to_dict(), default=str),
            self.job_retention,
        )

    async def _load(self, queue: QueueClass, job_id: str) -> Optional[Job]:
        raw = await self.backend.get(self._job_key(queue, job_id))
        if raw is None:
            return None
        return Job.from_dict(json.loads(raw))
