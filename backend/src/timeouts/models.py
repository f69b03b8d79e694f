"""
Result and metric models for readiness evaluation and timed operations.

All results are frozen: they are built once per evaluation and never
mutated after being returned.
"""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any

from smartwait.timeouts.environment import Environment


@dataclass(frozen=True, slots=True)
class IndicatorResult:
    """Outcome of a single readiness indicator check."""

    name: str
    passed: bool
    duration_ms: float
    weight: float
    required: bool
    error: str | None = None
    """Error message of a raising check, or a skip note for viewport mismatches."""

    skipped: bool = False
    """True when the indicator did not apply to the current viewport."""


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """How a readiness score was derived."""

    total_weight: float
    passed_weight: float
    required_passed: bool
    score_threshold: int
    base_score: int = 0
    """Score before the adaptive bonus."""

    adaptive_bonus: float = 0.0


@dataclass(frozen=True, slots=True)
class ReadinessResult:
    """Readiness verdict for one page at one point in time."""

    ready: bool
    score: int
    duration_ms: float
    indicators: Mapping[str, IndicatorResult]
    score_breakdown: ScoreBreakdown
    fallback_used: bool = False
    fallback_reason: str | None = None
    checks_performed: int = 1

    def __post_init__(self) -> None:
        if not isinstance(self.indicators, MappingProxyType):
            object.__setattr__(self, "indicators", MappingProxyType(dict(self.indicators)))

    @property
    def failed_indicators(self) -> list[str]:
        """Names of indicators that did not pass."""
        return [name for name, result in self.indicators.items() if not result.passed]

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "ready": self.ready,
            "score": self.score,
            "duration_ms": round(self.duration_ms, 2),
            "indicators": {name: asdict(result) for name, result in self.indicators.items()},
            "fallback_used": self.fallback_used,
            "fallback_reason": self.fallback_reason,
            "checks_performed": self.checks_performed,
            "score_breakdown": asdict(self.score_breakdown),
        }


@dataclass(frozen=True, slots=True)
class TimeoutMetrics:
    """Measurement of one timed operation or readiness wait."""

    operation: str
    environment: Environment
    configured_timeout_ms: float
    actual_duration_ms: float
    time_saved_ms: float
    success: bool
    readiness_score: int | None = None
    attempts: int = 1
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data = asdict(self)
        data["environment"] = str(self.environment)
        return data
