"""
Core framework components for async microservices.

Provides the cache, job queue, bounded-wait bridge and service
base classes shared by the distribution modeling services.
"""

from .cache import CacheKey, KeyValueCache, RevalidatingCache
from .circuit_breaker import BoundedSyncBridge, BridgeConfig
from .config import ServiceConfig
from .health import HealthChecker
from .metrics import MetricsCollector, MetricsRecorder
from .queue import JobQueue, JobState, JobStatus, QueueClass, QueuePolicy
from .service import AsyncService

__all__ = [
    "AsyncService",
    "BoundedSyncBridge",
    "BridgeConfig",
    "CacheKey",
    "HealthChecker",
    "JobQueue",
    "JobState",
    "JobStatus",
    "KeyValueCache",
    "MetricsCollector",
    "MetricsRecorder",
    "QueueClass",
    "QueuePolicy",
    "RevalidatingCache",
    "ServiceConfig",
]
