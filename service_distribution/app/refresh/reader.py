"""Cached reads from the distribution materialized views."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import structlog

from shared.framework.cache import CacheKey, RevalidatingCache
from shared.utils.errors import ViewQueryError


logger = structlog.get_logger(__name__)

CAMPAIGN_SUMMARY_TTL = 60
SCENARIO_PERFORMANCE_TTL = 30
USER_ACTIVITY_TTL = 300
CHANGE_PATTERNS_TTL = 1800
PERFORMANCE_METRICS_TTL = 30

CHANGE_PATTERNS_LIMIT = 20


class RowSource(Protocol):
    """Anything that runs a SELECT and returns rows as dictionaries."""

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        ...


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def _row(record: Dict[str, Any]) -> Dict[str, Any]:
    # cached and freshly queried rows must have the same JSON shape
    return {column: _plain(value) for column, value in record.items()}


class ViewReader:
    """
    Read-through access to the precomputed views.

    Every read goes through ``RevalidatingCache.get_or_set`` with a TTL
    matched to how often the view changes. Single-row reads return the first
    row or None. A missing row is not cached, so a row that appears after a
    refresh is visible on the next read.
    """

    def __init__(self, revalidating: RevalidatingCache, client: RowSource):
        self.revalidating = revalidating
        self.client = client

    async def _query(self, view_name: str, query: str, *args: Any) -> List[Dict[str, Any]]:
        try:
            records = await self.client.fetch(query, *args)
        except Exception as e:
            logger.error("View query failed", view=view_name, error=str(e))
            raise ViewQueryError(view_name, str(e)) from e
        return [_row(record) for record in records]

    async def _first(self, view_name: str, query: str, *args: Any) -> Optional[Dict[str, Any]]:
        rows = await self._query(view_name, query, *args)
        return rows[0] if rows else None

    async def get_campaign_summary(self, campaign_id: str) -> Optional[Dict[str, Any]]:
        return await self.revalidating.get_or_set(
            CacheKey.campaign_summary(campaign_id),
            lambda: self._first(
                "distribution_campaign_summary",
                "SELECT * FROM distribution_campaign_summary WHERE campaign_id = $1",
                campaign_id,
            ),
            ttl=CAMPAIGN_SUMMARY_TTL,
        )

    async def get_scenario_performance(self, session_id: str) -> List[Dict[str, Any]]:
        """Scenarios of a session, best ROI first."""
        return await self.revalidating.get_or_set(
            CacheKey.scenario_performance(session_id),
            lambda: self._query(
                "distribution_scenario_performance",
                "SELECT * FROM distribution_scenario_performance WHERE session_id = $1 ORDER BY roi DESC",
                session_id,
            ),
            ttl=SCENARIO_PERFORMANCE_TTL,
        )

    async def get_user_activity(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self.revalidating.get_or_set(
            CacheKey.user_activity(user_id),
            lambda: self._first(
                "distribution_user_activity",
                "SELECT * FROM distribution_user_activity WHERE user_id = $1",
                user_id,
            ),
            ttl=USER_ACTIVITY_TTL,
        )

    async def get_change_patterns(self, field: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most frequently edited fields, or the history of one field."""
        if field:
            query = "SELECT * FROM distribution_change_patterns WHERE field = $1 ORDER BY change_frequency DESC"
            args = (field,)
        else:
            query = (
                "SELECT * FROM distribution_change_patterns "
                f"ORDER BY change_frequency DESC LIMIT {CHANGE_PATTERNS_LIMIT}"
            )
            args = ()

        return await self.revalidating.get_or_set(
            CacheKey.change_patterns(field),
            lambda: self._query("distribution_change_patterns", query, *args),
            ttl=CHANGE_PATTERNS_TTL,
        )

    async def get_performance_metrics(self) -> Optional[Dict[str, Any]]:
        return await self.revalidating.get_or_set(
            CacheKey.performance_metrics(),
            lambda: self._first(
                "distribution_performance_metrics",
                "SELECT * FROM distribution_performance_metrics",
            ),
            ttl=PERFORMANCE_METRICS_TTL,
        )
