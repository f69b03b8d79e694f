"""
Readiness indicators and their evaluation.

A readiness indicator is a named, weighted async predicate over a page.
The evaluator runs a batch of indicators concurrently, each raced against
its own timeout, and folds the outcomes into a 0-100 readiness score.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import structlog

from smartwait.timeouts.config import SmartTimeoutConfig
from smartwait.timeouts.environment import Environment, ViewportType, detect_viewport_type
from smartwait.timeouts.exceptions import ConfigurationError
from smartwait.timeouts.models import IndicatorResult, ReadinessResult, ScoreBreakdown

logger = structlog.get_logger(__name__)

# Pass fraction needed for the environment bonus, and the bonus awarded
ENVIRONMENT_BONUS: Mapping[Environment, tuple[float, int]] = {
    Environment.LOCAL: (0.8, 3),
    Environment.CI: (0.9, 2),
    Environment.REMOTE: (0.95, 1),
}

MAX_REQUIRED_BONUS = 5.0


@runtime_checkable
class PageLike(Protocol):
    """The part of a browser page the engine depends on (Playwright compatible)."""

    @property
    def viewport_size(self) -> Mapping[str, int] | None: ...

    async def evaluate(self, expression: str, arg: Any = None) -> Any: ...


IndicatorCheck = Callable[[PageLike], Awaitable[bool]]


@dataclass(frozen=True, slots=True)
class ReadinessIndicator:
    """A named, weighted readiness check."""

    name: str
    description: str
    check: IndicatorCheck
    timeout_ms: int = 2000
    required: bool = False
    weight: float = 0.5
    viewport: ViewportType = ViewportType.ALL


def create_readiness_indicator(
    name: str,
    description: str,
    check: IndicatorCheck,
    *,
    timeout_ms: int = 2000,
    required: bool = False,
    weight: float = 0.5,
    viewport: ViewportType | str = ViewportType.ALL,
) -> ReadinessIndicator:
    """
    Create a readiness indicator.

    Weights are validated when a batch is evaluated, not here, so an
    invalid indicator can still be built and rejected as a configuration
    error before any check runs.
    """
    return ReadinessIndicator(
        name=name,
        description=description,
        check=check,
        timeout_ms=timeout_ms,
        required=required,
        weight=weight,
        viewport=ViewportType(viewport),
    )


def round_half_up(value: float) -> int:
    """Round halves away from zero for non-negative scores."""
    return int(math.floor(value + 0.5))


class ReadinessIndicatorEvaluator:
    """
    Runs readiness indicators against a page and scores the outcome.

    Indicator failures never raise: a check that times out counts as not
    passed, a check that raises counts as not passed with its message
    recorded.
    """

    def __init__(self) -> None:
        self._log = logger.bind(component="readiness_evaluator")

    def validate(self, indicators: Sequence[ReadinessIndicator], config: SmartTimeoutConfig) -> None:
        """
        Validate an indicator batch before any check executes.

        Raises:
            ConfigurationError: On an empty batch, a weight outside [0, 1]
                or duplicate names
        """
        if not indicators:
            raise ConfigurationError("At least one readiness indicator must be provided")

        invalid = [f"{i.name}({i.weight})" for i in indicators if not 0.0 <= i.weight <= 1.0]
        if invalid:
            raise ConfigurationError(
                f"Invalid indicator weights (must be 0-1): {', '.join(invalid)}"
            )

        seen: set[str] = set()
        duplicates: list[str] = []
        for indicator in indicators:
            if indicator.name in seen and indicator.name not in duplicates:
                duplicates.append(indicator.name)
            seen.add(indicator.name)
        if duplicates:
            raise ConfigurationError(
                f"Duplicate indicator names detected: {', '.join(duplicates)}"
            )

        low_weight = [
            i.name
            for i in indicators
            if i.required and i.weight < config.readiness_scoring.required_indicator_weight
        ]
        if low_weight:
            self._log.warning(
                "Required indicators with low weight detected",
                indicators=low_weight,
                min_weight=config.readiness_scoring.required_indicator_weight,
            )

    async def evaluate(
        self,
        page: PageLike,
        indicators: Sequence[ReadinessIndicator],
        config: SmartTimeoutConfig,
    ) -> list[IndicatorResult]:
        """
        Run all indicators concurrently and collect their outcomes.

        Args:
            page: Page handle passed to every check
            indicators: Indicator batch (validated first)
            config: Active configuration

        Returns:
            One IndicatorResult per indicator, in input order
        """
        self.validate(indicators, config)
        return await self.run_checks(page, indicators)

    async def run_checks(
        self,
        page: PageLike,
        indicators: Sequence[ReadinessIndicator],
    ) -> list[IndicatorResult]:
        """Run an already validated batch concurrently."""
        viewport_type = detect_viewport_type(page.viewport_size)
        outcomes = await asyncio.gather(
            *(self._run_indicator(page, indicator, viewport_type) for indicator in indicators),
            return_exceptions=True,
        )

        results: list[IndicatorResult] = []
        for indicator, outcome in zip(indicators, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                results.append(
                    IndicatorResult(
                        name=indicator.name,
                        passed=False,
                        duration_ms=0.0,
                        weight=indicator.weight,
                        required=indicator.required,
                        error=str(outcome) or type(outcome).__name__,
                    )
                )
            else:
                results.append(outcome)
        return results

    async def _run_indicator(
        self,
        page: PageLike,
        indicator: ReadinessIndicator,
        viewport_type: ViewportType,
    ) -> IndicatorResult:
        start = time.perf_counter()

        if indicator.viewport != ViewportType.ALL and indicator.viewport != viewport_type:
            return IndicatorResult(
                name=indicator.name,
                passed=True,
                duration_ms=(time.perf_counter() - start) * 1000,
                weight=indicator.weight,
                required=indicator.required,
                error=f"Skipped for viewport: {viewport_type} (expected: {indicator.viewport})",
                skipped=True,
            )

        try:
            passed = await self._race_check(page, indicator)
        except Exception as e:
            return IndicatorResult(
                name=indicator.name,
                passed=False,
                duration_ms=(time.perf_counter() - start) * 1000,
                weight=indicator.weight,
                required=indicator.required,
                error=str(e) or type(e).__name__,
            )

        return IndicatorResult(
            name=indicator.name,
            passed=passed,
            duration_ms=(time.perf_counter() - start) * 1000,
            weight=indicator.weight,
            required=indicator.required,
        )

    async def _race_check(self, page: PageLike, indicator: ReadinessIndicator) -> bool:
        """Race a check against its timeout. The timer side resolves False."""
        task = asyncio.ensure_future(indicator.check(page))
        done, _ = await asyncio.wait({task}, timeout=indicator.timeout_ms / 1000)
        if not done:
            task.cancel()
            return False
        return task.result() is True

    def score(
        self,
        results: Sequence[IndicatorResult],
        config: SmartTimeoutConfig,
    ) -> tuple[int, ScoreBreakdown]:
        """
        Compute the readiness score for a set of indicator outcomes.

        The base score is the passed share of total weight. With adaptive
        scoring enabled, a bonus of up to 5 points is added when every
        required indicator passed, plus a small environment bonus when the
        passed fraction clears the environment's cutoff. The result is
        clamped to [0, 100].
        """
        total_weight = sum(r.weight for r in results)
        passed_weight = sum(r.weight for r in results if r.passed)
        required = [r for r in results if r.required]
        required_passed = all(r.passed for r in required)

        base_score = round_half_up(passed_weight / total_weight * 100) if total_weight > 0 else 0
        score = base_score
        bonus = 0.0

        if config.readiness_scoring.adaptive_scoring and results:
            if required and required_passed:
                bonus += min(MAX_REQUIRED_BONUS, len(required) / len(results) * 10)

            cutoff, env_bonus = ENVIRONMENT_BONUS[config.environment]
            passed_fraction = sum(1 for r in results if r.passed) / len(results)
            if passed_fraction >= cutoff:
                bonus += env_bonus

            score = min(100, max(0, round_half_up(base_score + bonus)))

        breakdown = ScoreBreakdown(
            total_weight=total_weight,
            passed_weight=passed_weight,
            required_passed=required_passed,
            score_threshold=config.score_threshold,
            base_score=base_score,
            adaptive_bonus=bonus,
        )
        return score, breakdown

    @staticmethod
    def is_ready(score: int, breakdown: ScoreBreakdown) -> bool:
        """Ready iff all required indicators passed and the score clears the threshold."""
        return breakdown.required_passed and score >= breakdown.score_threshold

    async def evaluate_once(
        self,
        page: PageLike,
        indicators: Sequence[ReadinessIndicator],
        config: SmartTimeoutConfig,
    ) -> ReadinessResult:
        """Evaluate a batch once and return a scored result without polling."""
        start = time.perf_counter()
        results = await self.evaluate(page, indicators, config)
        score, breakdown = self.score(results, config)
        return ReadinessResult(
            ready=self.is_ready(score, breakdown),
            score=score,
            duration_ms=(time.perf_counter() - start) * 1000,
            indicators={r.name: r for r in results},
            score_breakdown=breakdown,
        )
