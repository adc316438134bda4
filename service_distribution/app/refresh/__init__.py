"""Materialized view refresh scheduling and execution."""

from .executor import PostgresViewRefresher, RefreshExecutor, RefreshResult
from .scheduler import RefreshScheduler
from .views import DEFAULT_VIEWS, ViewDescriptor

__all__ = [
    "DEFAULT_VIEWS",
    "PostgresViewRefresher",
    "RefreshExecutor",
    "RefreshResult",
    "RefreshScheduler",
    "ViewDescriptor",
]
