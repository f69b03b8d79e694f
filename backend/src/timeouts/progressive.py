"""
Progressive waiting for readiness and progressive operation timeouts.

Readiness is polled with a growing interval until the page is ready, the
check budget is spent or the wall-clock budget runs out. Operations are
retried with a growing timeout, optionally shaped by an escalation
strategy.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog

from smartwait.timeouts.config import MAX_CHECK_INTERVAL_MS, SmartTimeoutConfig
from smartwait.timeouts.escalation import TimeoutEscalationStrategy, get_escalation_strategy
from smartwait.timeouts.exceptions import (
    ConfigurationError,
    OperationTimeoutError,
    ProgressiveTimeoutError,
)
from smartwait.timeouts.indicators import (
    PageLike,
    ReadinessIndicator,
    ReadinessIndicatorEvaluator,
)
from smartwait.timeouts.models import IndicatorResult, ReadinessResult, TimeoutMetrics

if TYPE_CHECKING:
    from smartwait.timeouts.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 10

FALLBACK_REQUIRED_FAILED = "required indicators failed"
FALLBACK_LOW_SCORE = "low readiness scores"
FALLBACK_TIMEOUT = "timeout exceeded"


@dataclass(frozen=True, slots=True)
class ProgressiveTimeoutConfig:
    """Per-call settings for a progressively retried operation."""

    operation: str
    initial_timeout_ms: float = 1000
    max_timeout_ms: float = 10000
    backoff_factor: float = 2.0
    max_retries: int = 5
    retry_condition: Callable[[BaseException], bool] | None = None
    """Return False to stop retrying after a failure."""

    on_retry: Callable[[int, BaseException], None] | None = None
    """Called with (attempt, error) after each failed attempt."""

    escalation_strategy: TimeoutEscalationStrategy | None = None

    def validate(self) -> None:
        """Validate timeout settings."""
        if self.initial_timeout_ms <= 0:
            raise ConfigurationError("initial_timeout_ms must be positive")
        if self.max_timeout_ms < self.initial_timeout_ms:
            raise ConfigurationError("max_timeout_ms must be >= initial_timeout_ms")
        if self.backoff_factor < 1.0:
            raise ConfigurationError("backoff_factor must be at least 1.0")
        if self.max_retries < 0:
            raise ConfigurationError("max_retries must be non-negative")


def create_progressive_timeout_config(
    operation: str,
    *,
    initial_timeout_ms: float = 1000,
    max_timeout_ms: float = 10000,
    backoff_factor: float = 2.0,
    max_retries: int = 5,
    escalation_strategy: str | TimeoutEscalationStrategy | None = None,
    retry_condition: Callable[[BaseException], bool] | None = None,
    on_retry: Callable[[int, BaseException], None] | None = None,
) -> ProgressiveTimeoutConfig:
    """
    Create a progressive timeout config.

    ``escalation_strategy`` may be a registry key (``network_error``), a
    strategy name (``network-error``) or a strategy instance.
    """
    strategy = (
        get_escalation_strategy(escalation_strategy)
        if isinstance(escalation_strategy, str)
        else escalation_strategy
    )
    config = ProgressiveTimeoutConfig(
        operation=operation,
        initial_timeout_ms=initial_timeout_ms,
        max_timeout_ms=max_timeout_ms,
        backoff_factor=backoff_factor,
        max_retries=max_retries,
        retry_condition=retry_condition,
        on_retry=on_retry,
        escalation_strategy=strategy,
    )
    config.validate()
    return config


def fallback_reason_for(
    ready: bool,
    required_passed: bool,
    score: int,
    threshold: int,
) -> str | None:
    """Explain why a readiness wait ended without readiness, most specific cause first."""
    if ready:
        return None
    if not required_passed:
        return FALLBACK_REQUIRED_FAILED
    if score < threshold:
        return FALLBACK_LOW_SCORE
    return FALLBACK_TIMEOUT


class ProgressiveTimeoutExecutor:
    """
    Polls readiness and runs operations under growing timeouts.

    Usage:
        executor = ProgressiveTimeoutExecutor(metrics=MetricsCollector())
        result = await executor.wait_for_readiness(page, indicators, config)
    """

    def __init__(
        self,
        evaluator: ReadinessIndicatorEvaluator | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._evaluator = evaluator or ReadinessIndicatorEvaluator()
        self._metrics = metrics
        self._log = logger.bind(component="progressive_executor")

    async def wait_for_readiness(
        self,
        page: PageLike,
        indicators: Sequence[ReadinessIndicator],
        config: SmartTimeoutConfig,
    ) -> ReadinessResult:
        """
        Poll readiness until ready or out of budget.

        Args:
            page: Page handle, only read
            indicators: Indicator batch, validated before the first check
            config: Effective configuration for this call

        Returns:
            ReadinessResult; when not ready, ``fallback_used`` is set and
            ``fallback_reason`` explains why

        Raises:
            ConfigurationError: If the indicator batch is invalid
        """
        self._evaluator.validate(indicators, config)

        strategy = config.progressive_strategy
        diagnostics = config.performance.log_diagnostics
        start = time.perf_counter()

        results = [
            IndicatorResult(
                name=i.name,
                passed=False,
                duration_ms=0.0,
                weight=i.weight,
                required=i.required,
            )
            for i in indicators
        ]
        score, breakdown = self._evaluator.score(results, config)
        ready = False
        checks = 0
        interval_ms = float(strategy.check_interval_ms)

        if diagnostics:
            self._log.debug(
                "Starting readiness check",
                indicators=len(indicators),
                environment=str(config.environment),
                score_threshold=breakdown.score_threshold,
                max_wait_ms=strategy.max_wait_ms,
            )

        if strategy.initial_wait_ms > 0:
            await asyncio.sleep(strategy.initial_wait_ms / 1000)

        while checks < strategy.max_checks and self._elapsed_ms(start) < strategy.max_wait_ms:
            checks += 1

            results = await self._evaluator.run_checks(page, indicators)
            score, breakdown = self._evaluator.score(results, config)

            if self._evaluator.is_ready(score, breakdown):
                ready = True
                break

            if checks < strategy.max_checks:
                await asyncio.sleep(interval_ms / 1000)
                interval_ms = min(interval_ms * strategy.backoff_factor, MAX_CHECK_INTERVAL_MS)

            if diagnostics and checks % 5 == 0:
                self._log.debug(
                    "Readiness progress",
                    check=checks,
                    score=score,
                    score_threshold=breakdown.score_threshold,
                    required_passed=breakdown.required_passed,
                )

        duration_ms = self._elapsed_ms(start)
        fallback_reason = fallback_reason_for(
            ready, breakdown.required_passed, score, breakdown.score_threshold
        )
        if fallback_reason and diagnostics:
            self._log.debug("Applying fallback strategy", reason=fallback_reason)

        result = ReadinessResult(
            ready=ready,
            score=score,
            duration_ms=duration_ms,
            indicators={r.name: r for r in results},
            score_breakdown=breakdown,
            fallback_used=not ready,
            fallback_reason=fallback_reason,
            checks_performed=checks,
        )

        if config.performance.enable_metrics and self._metrics is not None:
            self._metrics.record(
                TimeoutMetrics(
                    operation="readiness_check",
                    environment=config.environment,
                    configured_timeout_ms=strategy.max_wait_ms,
                    actual_duration_ms=duration_ms,
                    time_saved_ms=max(0.0, strategy.max_wait_ms - duration_ms),
                    readiness_score=score,
                    success=ready,
                    attempts=checks,
                )
            )

        return result

    async def wait_with_progressive_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        config: ProgressiveTimeoutConfig,
        settings: SmartTimeoutConfig,
    ) -> T:
        """
        Run an operation under a growing per-attempt timeout.

        Each attempt races the operation against the current timeout. After
        a failure, ``retry_condition`` may stop retrying; otherwise the
        escalation strategy (if any) or the backoff factor sets the next
        timeout. Retrying stops once ``max_retries`` attempts were made or
        the timeout grows past ``max_timeout_ms``.

        Args:
            operation: Zero-argument coroutine function
            config: Per-call timeout settings
            settings: Manager configuration (metrics and diagnostics)

        Returns:
            The operation's result

        Raises:
            ProgressiveTimeoutError: When no attempt succeeded, chained
                from the last underlying error
        """
        diagnostics = settings.performance.log_diagnostics
        strategy = config.escalation_strategy
        max_retries = config.max_retries or DEFAULT_MAX_RETRIES
        current_timeout = float(config.initial_timeout_ms)
        attempt = 0
        last_error: Exception | None = None
        start = time.perf_counter()

        if diagnostics:
            self._log.debug(
                "Starting progressive timeout",
                operation=config.operation,
                initial_timeout_ms=current_timeout,
                max_timeout_ms=config.max_timeout_ms,
                max_retries=max_retries,
            )

        while attempt < max_retries and current_timeout <= config.max_timeout_ms:
            attempt += 1
            attempt_start = time.perf_counter()

            try:
                result = await self._race(operation, current_timeout, attempt)
            except Exception as e:
                last_error = e
                attempt_ms = self._elapsed_ms(attempt_start)

                if config.retry_condition is not None and not config.retry_condition(e):
                    if diagnostics:
                        self._log.debug("Retry condition rejected error", operation=config.operation)
                    break

                if strategy is not None:
                    if strategy.should_escalate(e, attempt, attempt_ms):
                        new_timeout = strategy.get_next_timeout(current_timeout, attempt, e)
                        strategy.on_escalation(e, attempt, new_timeout)
                        current_timeout = min(new_timeout, config.max_timeout_ms)
                        max_retries = max(max_retries, strategy.get_max_retries(e))
                        if diagnostics:
                            self._log.debug(
                                "Escalated timeout",
                                operation=config.operation,
                                strategy=strategy.name,
                                timeout_ms=current_timeout,
                                max_retries=max_retries,
                            )
                else:
                    current_timeout *= config.backoff_factor

                if config.on_retry is not None:
                    config.on_retry(attempt, e)

                if diagnostics:
                    self._log.debug(
                        "Attempt failed",
                        operation=config.operation,
                        attempt=attempt,
                        duration_ms=round(attempt_ms, 2),
                        next_timeout_ms=current_timeout,
                        error=str(e),
                    )
            else:
                duration_ms = self._elapsed_ms(start)
                self._record(
                    config, settings, duration_ms, attempt, success=True,
                    time_saved_ms=max(0.0, config.max_timeout_ms - duration_ms),
                )
                if diagnostics:
                    self._log.debug(
                        "Operation succeeded",
                        operation=config.operation,
                        attempt=attempt,
                        duration_ms=round(duration_ms, 2),
                    )
                return result

        duration_ms = self._elapsed_ms(start)
        self._record(config, settings, duration_ms, attempt, success=False, time_saved_ms=0.0)
        self._log.warning(
            "Progressive timeout exhausted",
            operation=config.operation,
            attempts=attempt,
            duration_ms=round(duration_ms, 2),
            error=str(last_error) if last_error else None,
        )
        raise ProgressiveTimeoutError(config.operation, attempt, duration_ms, last_error) from last_error

    @staticmethod
    async def _race(operation: Callable[[], Awaitable[T]], timeout_ms: float, attempt: int) -> T:
        """
        Race an attempt against its timeout.

        Only the timer side raises OperationTimeoutError; errors from the
        operation itself, TimeoutError included, propagate unchanged.
        """
        task = asyncio.ensure_future(operation())
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if not done:
            task.cancel()
            raise OperationTimeoutError(
                f"Operation timeout after {timeout_ms:.0f}ms (attempt {attempt})",
                timeout_ms=timeout_ms,
                attempt=attempt,
            )
        return task.result()

    def _record(
        self,
        config: ProgressiveTimeoutConfig,
        settings: SmartTimeoutConfig,
        duration_ms: float,
        attempts: int,
        success: bool,
        time_saved_ms: float,
    ) -> None:
        if not settings.performance.enable_metrics or self._metrics is None:
            return
        self._metrics.record(
            TimeoutMetrics(
                operation=config.operation,
                environment=settings.environment,
                configured_timeout_ms=config.max_timeout_ms,
                actual_duration_ms=duration_ms,
                time_saved_ms=time_saved_ms,
                readiness_score=100 if success else 0,
                success=success,
                attempts=attempts,
            )
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return (time.perf_counter() - start) * 1000
