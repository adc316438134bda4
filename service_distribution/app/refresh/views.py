"""Materialized views maintained by the refresh scheduler."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List


@dataclass(frozen=True)
class ViewDescriptor:
    """A derived view, how often it is rebuilt and which tables feed it."""
    name: str
    refresh_interval: float  # seconds
    priority: int  # 1-10, higher is more important
    dependencies: FrozenSet[str]

    def __post_init__(self):
        if not 1 <= self.priority <= 10:
            raise ValueError(f"priority must be between 1 and 10: {self.priority}")
        if self.refresh_interval <= 0:
            raise ValueError(f"refresh_interval must be positive: {self.refresh_interval}")

    @property
    def refresh_interval_ms(self) -> float:
        return self.refresh_interval * 1000

    def depends_on(self, table_name: str) -> bool:
        return table_name in self.dependencies


DEFAULT_VIEWS: List[ViewDescriptor] = [
    ViewDescriptor(
        name="distribution_campaign_summary",
        refresh_interval=5 * 60,
        priority=8,
        dependencies=frozenset({"Campaign", "DistributionSession", "DistributionScenario", "DistributionChange"}),
    ),
    ViewDescriptor(
        name="distribution_scenario_performance",
        refresh_interval=2 * 60,
        priority=10,
        dependencies=frozenset({"DistributionScenario"}),
    ),
    ViewDescriptor(
        name="distribution_user_activity",
        refresh_interval=15 * 60,
        priority=5,
        dependencies=frozenset({"User", "DistributionChange"}),
    ),
    ViewDescriptor(
        name="distribution_change_patterns",
        refresh_interval=60 * 60,
        priority=3,
        dependencies=frozenset({"DistributionChange"}),
    ),
    ViewDescriptor(
        name="distribution_performance_metrics",
        refresh_interval=60,
        priority=9,
        dependencies=frozenset({"DistributionSession", "DistributionScenario", "DistributionChange"}),
    ),
]


def index_views(views: Iterable[ViewDescriptor]) -> Dict[str, ViewDescriptor]:
    """Views by name; duplicate names are rejected."""
    indexed: Dict[str, ViewDescriptor] = {}
    for view in views:
        if view.name in indexed:
            raise ValueError(f"Duplicate view: {view.name}")
        indexed[view.name] = view
    return indexed


def by_priority(views: Iterable[ViewDescriptor]) -> List[ViewDescriptor]:
    """Highest priority first; equal priorities keep their order."""
    return sorted(views, key=lambda view: -view.priority)
