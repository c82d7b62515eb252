"""
Performance monitoring for branch loads.

Every cache lookup and backend call is recorded as a timed metric in a
bounded ring buffer. Rolling statistics over the most recent metrics feed a
letter grade that the orchestrator uses to regulate itself. The monitor only
observes: it never touches the cache or the request queue.
"""

import logging
import time
import uuid
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from typing import Optional

from events import EventChannel
from models import Grade, OperationType

logger = logging.getLogger("branch-sync.monitor")


@dataclass(frozen=True)
class PerformanceMetric:
    operation_id: str
    operation_type: OperationType
    branch_ids: tuple[int, ...]
    execution_time_ms: float
    data_size_bytes: int
    captured_at: float
    cache_efficiency_percent: float


@dataclass(frozen=True)
class RollingStats:
    total_operations: int
    cache_hit_ratio_percent: float
    average_execution_time_ms: float
    cache_efficiency_percent: float


@dataclass(frozen=True)
class PerformanceInsights:
    average_execution_time_ms: int
    cache_hit_ratio_percent: int
    total_operations: int
    cache_efficiency_percent: float
    grade: Grade
    recommendations: tuple[str, ...]

    def as_dict(self) -> dict:
        data = asdict(self)
        data["grade"] = self.grade.value
        data["recommendations"] = list(self.recommendations)
        return data


class PerformanceMonitor:
    """Ring buffer of PerformanceMetric plus derived statistics."""

    def __init__(self, capacity: int = 1000, window: int = 100, clock: Callable[[], float] = time.time):
        self.capacity = capacity
        self.window = window
        self._clock = clock
        # Oldest on the left; deque drops it once capacity is reached
        self._metrics: deque[PerformanceMetric] = deque(maxlen=capacity)
        self.insight_changes: EventChannel[Optional[PerformanceInsights]] = EventChannel("performance-insights")

    def __len__(self) -> int:
        return len(self._metrics)

    def record(
        self,
        operation_type: OperationType,
        branch_ids: Iterable[int],
        execution_time_ms: float,
        data_size_bytes: int = 0,
    ) -> PerformanceMetric:
        metric = PerformanceMetric(
            operation_id=f"op_{int(self._clock() * 1000)}_{uuid.uuid4().hex[:9]}",
            operation_type=OperationType(operation_type),
            branch_ids=tuple(branch_ids),
            execution_time_ms=execution_time_ms,
            data_size_bytes=data_size_bytes,
            captured_at=self._clock(),
            cache_efficiency_percent=self._cache_efficiency(),
        )
        self._metrics.append(metric)
        return metric

    def metrics(self) -> list[PerformanceMetric]:
        """All buffered metrics, newest first."""
        return list(reversed(self._metrics))

    def recent(self, limit: Optional[int] = None) -> list[PerformanceMetric]:
        limit = self.window if limit is None else limit
        return self.metrics()[:limit]

    def metrics_for_branch(self, branch_id: int, limit: int = 10) -> list[PerformanceMetric]:
        matching = [m for m in reversed(self._metrics) if branch_id in m.branch_ids]
        return matching[:limit]

    def rolling_stats(self, window: Optional[int] = None) -> RollingStats:
        recent = self.recent(window)
        total = len(recent)
        if total == 0:
            return RollingStats(0, 0.0, 0.0, 0.0)

        hits = sum(1 for m in recent if m.operation_type == OperationType.CACHE_HIT)
        return RollingStats(
            total_operations=total,
            cache_hit_ratio_percent=hits / total * 100,
            average_execution_time_ms=sum(m.execution_time_ms for m in recent) / total,
            cache_efficiency_percent=sum(m.cache_efficiency_percent for m in recent) / total,
        )

    @staticmethod
    def grade(avg_time_ms: float, hit_ratio: float) -> Grade:
        """Letter grade from average latency and cache hit ratio (0..1)."""
        if avg_time_ms < 100:
            time_score = 100
        elif avg_time_ms < 300:
            time_score = 80
        elif avg_time_ms < 500:
            time_score = 60
        elif avg_time_ms < 1000:
            time_score = 40
        else:
            time_score = 20
        cache_score = hit_ratio * 100
        total_score = (time_score + cache_score) / 2

        if total_score >= 90:
            return Grade.A
        if total_score >= 80:
            return Grade.B
        if total_score >= 70:
            return Grade.C
        if total_score >= 60:
            return Grade.D
        return Grade.F

    @staticmethod
    def recommendations(avg_time_ms: float, hit_ratio: float, utilization_percent: float) -> list[str]:
        hints: list[str] = []

        if avg_time_ms > 500:
            hints.append("Consider implementing request debouncing")
            hints.append("Optimize API queries with proper indexing")

        if hit_ratio < 0.6:
            hints.append("Increase cache TTL for stable data")
            hints.append("Implement predictive preloading")

        if utilization_percent > 80:
            hints.append("Increase cache size limit")
            hints.append("Implement smarter cache eviction strategy")

        return hints

    def insights(self, utilization_percent: float = 0.0) -> Optional[PerformanceInsights]:
        stats = self.rolling_stats()
        if stats.total_operations == 0:
            return None

        hit_ratio = stats.cache_hit_ratio_percent / 100
        return PerformanceInsights(
            average_execution_time_ms=round(stats.average_execution_time_ms),
            cache_hit_ratio_percent=round(stats.cache_hit_ratio_percent),
            total_operations=stats.total_operations,
            cache_efficiency_percent=round(stats.cache_efficiency_percent, 2),
            grade=self.grade(stats.average_execution_time_ms, hit_ratio),
            recommendations=tuple(
                self.recommendations(stats.average_execution_time_ms, hit_ratio, utilization_percent)
            ),
        )

    def refresh(self, utilization_percent: float = 0.0) -> Optional[PerformanceInsights]:
        """Recompute insights and publish them if they changed."""
        current = self.insights(utilization_percent)
        if self.insight_changes.publish(current) and current is not None:
            logger.info(
                "Performance grade %s (avg %dms, hit ratio %d%%, %d ops)",
                current.grade.value,
                current.average_execution_time_ms,
                current.cache_hit_ratio_percent,
                current.total_operations,
            )
        return current

    def clear(self) -> None:
        self._metrics.clear()

    def _cache_efficiency(self) -> float:
        recent = self.recent()
        if not recent:
            return 0.0
        hits = sum(1 for m in recent if m.operation_type == OperationType.CACHE_HIT)
        return hits / len(recent) * 100
