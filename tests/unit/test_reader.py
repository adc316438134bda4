"""Tests for cached reads from the materialized views."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from shared.framework.cache import KeyValueCache, RevalidatingCache
from shared.utils.errors import ViewQueryError

from service_distribution.app.refresh.reader import ViewReader

from tests.helpers import RecordingRowSource


@pytest.fixture
def rows() -> RecordingRowSource:
    return RecordingRowSource({
        "distribution_campaign_summary": [
            {"campaign_id": "c1", "avg_roi": Decimal("18.25"), "last_activity": datetime(2024, 5, 1, tzinfo=timezone.utc)},
        ],
        "distribution_scenario_performance": [
            {"scenario_id": "s2", "roi": 30.0},
            {"scenario_id": "s1", "roi": 10.0},
        ],
        "distribution_user_activity": [{"user_id": "u1", "edits": 4}],
        "distribution_change_patterns": [{"field": "msrp", "change_frequency": 12}],
        "distribution_performance_metrics": [{"active_sessions": 7}, {"active_sessions": 3}],
    })


@pytest.fixture
def reader(revalidating: RevalidatingCache, rows: RecordingRowSource) -> ViewReader:
    return ViewReader(revalidating, rows)


@pytest.mark.asyncio
async def test_campaign_summary_first_row_cached_for_a_minute(reader: ViewReader, rows, clock):
    expected = {"campaign_id": "c1", "avg_roi": 18.25, "last_activity": "2024-05-01T00:00:00+00:00"}
    assert await reader.get_campaign_summary("c1") == expected
    assert rows.queries == [("SELECT * FROM distribution_campaign_summary WHERE campaign_id = $1", ("c1",))]

    clock.advance(59)
    assert await reader.get_campaign_summary("c1") == expected
    assert len(rows.queries) == 1

    clock.advance(2)
    await reader.get_campaign_summary("c1")
    assert len(rows.queries) == 2


@pytest.mark.asyncio
async def test_scenario_performance_returns_all_rows(reader: ViewReader, rows, cache: KeyValueCache, clock):
    scenarios = await reader.get_scenario_performance("sess-1")
    assert [item["scenario_id"] for item in scenarios] == ["s2", "s1"]
    assert rows.queries[0] == (
        "SELECT * FROM distribution_scenario_performance WHERE session_id = $1 ORDER BY roi DESC",
        ("sess-1",),
    )
    assert await cache.get("scenario_performance:sess-1") == scenarios

    clock.advance(30)
    await reader.get_scenario_performance("sess-1")
    assert len(rows.queries) == 2


@pytest.mark.asyncio
async def test_user_activity_uses_five_minute_ttl(reader: ViewReader, rows, clock):
    assert await reader.get_user_activity("u1") == {"user_id": "u1", "edits": 4}
    clock.advance(299)
    await reader.get_user_activity("u1")
    assert len(rows.queries) == 1
    clock.advance(1)
    await reader.get_user_activity("u1")
    assert len(rows.queries) == 2


@pytest.mark.asyncio
async def test_change_patterns_with_and_without_field(reader: ViewReader, rows, cache: KeyValueCache):
    await reader.get_change_patterns("msrp")
    await reader.get_change_patterns()

    assert rows.queries == [
        (
            "SELECT * FROM distribution_change_patterns WHERE field = $1 ORDER BY change_frequency DESC",
            ("msrp",),
        ),
        ("SELECT * FROM distribution_change_patterns ORDER BY change_frequency DESC LIMIT 20", ()),
    ]
    assert await cache.get("change_patterns:msrp") is not None
    assert await cache.get("change_patterns:all") is not None


@pytest.mark.asyncio
async def test_change_patterns_cached_for_half_an_hour(reader: ViewReader, rows, clock):
    await reader.get_change_patterns()
    clock.advance(1799)
    await reader.get_change_patterns()
    assert len(rows.queries) == 1
    clock.advance(1)
    await reader.get_change_patterns()
    assert len(rows.queries) == 2


@pytest.mark.asyncio
async def test_performance_metrics_first_row(reader: ViewReader, rows):
    assert await reader.get_performance_metrics() == {"active_sessions": 7}
    assert rows.queries == [("SELECT * FROM distribution_performance_metrics", ())]


@pytest.mark.asyncio
async def test_missing_row_is_not_cached(revalidating: RevalidatingCache, cache: KeyValueCache):
    rows = RecordingRowSource()
    reader = ViewReader(revalidating, rows)

    assert await reader.get_campaign_summary("c9") is None
    assert await cache.get("campaign_summary:c9") is None

    rows.rows["distribution_campaign_summary"] = [{"campaign_id": "c9"}]
    assert await reader.get_campaign_summary("c9") == {"campaign_id": "c9"}
    assert len(rows.queries) == 2


@pytest.mark.asyncio
async def test_query_failure_raises_view_error(revalidating: RevalidatingCache):
    reader = ViewReader(revalidating, RecordingRowSource(fail_with=ConnectionError("connection refused")))

    with pytest.raises(ViewQueryError) as excinfo:
        await reader.get_user_activity("u1")
    assert excinfo.value.error_code == "VIEW_QUERY_FAILED"
    assert excinfo.value.details == {"view_name": "distribution_user_activity"}
