"""
Bounded collection of timeout metrics.

Keeps the most recent measurements per manager and summarizes them.
"""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import structlog

from smartwait.timeouts.models import TimeoutMetrics

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY = 100


@dataclass(frozen=True, slots=True)
class OperationStats:
    """Aggregates for one operation name."""

    count: int
    successes: int
    average_duration_ms: float
    total_time_saved_ms: float

    @property
    def success_rate(self) -> float:
        return self.successes / self.count if self.count else 0.0


@dataclass(frozen=True, slots=True)
class MetricsSummary:
    """Summary over the currently retained metrics."""

    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    average_duration_ms: float = 0.0
    median_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    p99_duration_ms: float = 0.0
    total_time_saved_ms: float = 0.0
    average_readiness_score: float = 0.0
    operations: dict[str, OperationStats] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_operations == 0:
            return 0.0
        return self.successful_operations / self.total_operations

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "total_operations": self.total_operations,
            "successful_operations": self.successful_operations,
            "failed_operations": self.failed_operations,
            "success_rate": round(self.success_rate, 4),
            "average_duration_ms": round(self.average_duration_ms, 2),
            "median_duration_ms": round(self.median_duration_ms, 2),
            "p95_duration_ms": round(self.p95_duration_ms, 2),
            "p99_duration_ms": round(self.p99_duration_ms, 2),
            "total_time_saved_ms": round(self.total_time_saved_ms, 2),
            "average_readiness_score": round(self.average_readiness_score, 2),
            "operations": {
                name: {
                    "count": stats.count,
                    "success_rate": round(stats.success_rate, 4),
                    "average_duration_ms": round(stats.average_duration_ms, 2),
                    "total_time_saved_ms": round(stats.total_time_saved_ms, 2),
                }
                for name, stats in self.operations.items()
            },
        }


class MetricsCollector:
    """
    Ring buffer of TimeoutMetrics.

    Only the newest ``capacity`` entries are kept. Not thread-safe; each
    manager owns its own collector.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._metrics: deque[TimeoutMetrics] = deque(maxlen=capacity)
        self._log = logger.bind(component="metrics_collector")

    @property
    def capacity(self) -> int:
        return self._metrics.maxlen or DEFAULT_CAPACITY

    def __len__(self) -> int:
        return len(self._metrics)

    def record(self, metric: TimeoutMetrics) -> None:
        """Append a metric, evicting the oldest when full."""
        self._metrics.append(metric)
        self._log.debug(
            "Recorded timeout metric",
            operation=metric.operation,
            success=metric.success,
            duration_ms=round(metric.actual_duration_ms, 2),
        )

    def get_metrics(self) -> list[TimeoutMetrics]:
        """Get a copy of the retained metrics, oldest first."""
        return list(self._metrics)

    def clear(self) -> None:
        self._metrics.clear()

    def summary(self) -> MetricsSummary:
        """Summarize retained metrics. Duration statistics cover successful operations only."""
        metrics = list(self._metrics)
        if not metrics:
            return MetricsSummary()

        successful = [m for m in metrics if m.success]
        durations = np.array([m.actual_duration_ms for m in successful], dtype=float)
        scores = [m.readiness_score for m in metrics if m.readiness_score is not None]

        grouped: dict[str, list[TimeoutMetrics]] = defaultdict(list)
        for metric in metrics:
            grouped[metric.operation].append(metric)

        operations = {
            name: OperationStats(
                count=len(items),
                successes=sum(1 for m in items if m.success),
                average_duration_ms=float(np.mean([m.actual_duration_ms for m in items])),
                total_time_saved_ms=float(sum(m.time_saved_ms for m in items)),
            )
            for name, items in grouped.items()
        }

        has_durations = durations.size > 0
        return MetricsSummary(
            total_operations=len(metrics),
            successful_operations=len(successful),
            failed_operations=len(metrics) - len(successful),
            average_duration_ms=float(np.mean(durations)) if has_durations else 0.0,
            median_duration_ms=float(np.median(durations)) if has_durations else 0.0,
            p95_duration_ms=float(np.percentile(durations, 95)) if has_durations else 0.0,
            p99_duration_ms=float(np.percentile(durations, 99)) if has_durations else 0.0,
            total_time_saved_ms=float(sum(m.time_saved_ms for m in metrics)),
            average_readiness_score=float(np.mean(scores)) if scores else 0.0,
            operations=operations,
        )
