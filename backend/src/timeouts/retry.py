"""
Condition-aware retries.

An operation failure is matched against an ordered list of retry
configurations. The first configuration whose condition matches the
error decides the backoff curve and the attempt budget. Errors that
match no configuration propagate immediately.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from enum import StrEnum
from types import MappingProxyType
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from smartwait.timeouts.environment import Environment
from smartwait.timeouts.models import TimeoutMetrics

if TYPE_CHECKING:
    from smartwait.timeouts.metrics import MetricsCollector

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JITTER_RATIO = 0.25


class RetryConditionType(StrEnum):
    """Error families a retry configuration can target."""

    NETWORK_ERROR = "network_error"
    TIMEOUT_ERROR = "timeout_error"
    ELEMENT_NOT_FOUND = "element_not_found"
    STALE_ELEMENT = "stale_element"
    PAGE_CRASH = "page_crash"
    CUSTOM = "custom"


class BackoffStrategy(StrEnum):
    """Delay growth between retries."""

    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIBONACCI = "fibonacci"


# Matching is case-insensitive substring containment
RETRY_CONDITION_KEYWORDS: Mapping[RetryConditionType, tuple[str, ...]] = MappingProxyType({
    RetryConditionType.NETWORK_ERROR: ("network", "connection", "fetch", "timeout"),
    RetryConditionType.TIMEOUT_ERROR: ("timeout", "timed out"),
    RetryConditionType.ELEMENT_NOT_FOUND: ("element", "selector", "not found"),
    RetryConditionType.STALE_ELEMENT: ("stale", "detached"),
    RetryConditionType.PAGE_CRASH: ("crash", "disconnected", "target closed"),
})


class IntelligentRetryConfig(BaseModel):
    """Retry policy for one error condition."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    condition_type: RetryConditionType
    max_retries: int = Field(default=3, ge=1, le=50)
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    base_delay_ms: int = Field(default=500, ge=0)
    max_delay_ms: int = Field(default=5000, ge=0)
    jitter: bool = True
    predicate: Callable[[BaseException], bool] | None = None
    """Match function for CUSTOM conditions."""


def create_intelligent_retry_config(
    condition_type: RetryConditionType | str,
    *,
    max_retries: int = 3,
    backoff_strategy: BackoffStrategy | str = BackoffStrategy.EXPONENTIAL,
    base_delay_ms: int = 500,
    max_delay_ms: int = 5000,
    jitter: bool = True,
    predicate: Callable[[BaseException], bool] | None = None,
) -> IntelligentRetryConfig:
    """Create a retry configuration with the standard defaults."""
    return IntelligentRetryConfig(
        condition_type=RetryConditionType(condition_type),
        max_retries=max_retries,
        backoff_strategy=BackoffStrategy(backoff_strategy),
        base_delay_ms=base_delay_ms,
        max_delay_ms=max_delay_ms,
        jitter=jitter,
        predicate=predicate,
    )


def matches_retry_condition(error: BaseException, config: IntelligentRetryConfig) -> bool:
    """Check whether an error falls under a config's condition."""
    if config.condition_type == RetryConditionType.CUSTOM:
        return config.predicate is not None and bool(config.predicate(error))

    message = str(error).lower()
    keywords = RETRY_CONDITION_KEYWORDS[config.condition_type]
    return any(keyword in message for keyword in keywords)


def select_retry_config(
    error: BaseException,
    configs: Sequence[IntelligentRetryConfig],
) -> IntelligentRetryConfig | None:
    """Return the first config matching the error, or None."""
    for config in configs:
        if matches_retry_condition(error, config):
            return config
    return None


def fibonacci(n: int) -> int:
    """Fibonacci number with fib(1) == fib(2) == 1."""
    a, b = 1, 1
    for _ in range(max(0, n - 2)):
        a, b = b, a + b
    return b


def calculate_retry_delay(
    config: IntelligentRetryConfig,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """
    Delay in milliseconds before the retry following a failed attempt.

    Args:
        config: Matched retry configuration
        attempt: 1-based number of the attempt that failed
        rng: Random source for jitter

    Returns:
        Delay clamped to [0, max_delay_ms]
    """
    match config.backoff_strategy:
        case BackoffStrategy.LINEAR:
            delay = float(config.base_delay_ms * attempt)
        case BackoffStrategy.EXPONENTIAL:
            delay = float(config.base_delay_ms * 2 ** (attempt - 1))
        case BackoffStrategy.FIBONACCI:
            delay = float(config.base_delay_ms * fibonacci(attempt))
        case _:
            delay = float(config.base_delay_ms)

    if config.jitter:
        spread = delay * JITTER_RATIO
        delay += (rng or random).uniform(-spread, spread)

    return min(max(delay, 0.0), float(config.max_delay_ms))


def create_retry_presets() -> Mapping[str, tuple[IntelligentRetryConfig, ...]]:
    """Built-in retry lists for common automation scenarios."""
    cfg = create_intelligent_retry_config
    return MappingProxyType({
        "web_automation": (
            cfg("network_error", max_retries=5, backoff_strategy="exponential",
                base_delay_ms=500, max_delay_ms=5000, jitter=True),
            cfg("timeout_error", max_retries=4, backoff_strategy="linear",
                base_delay_ms=1000, max_delay_ms=4000, jitter=False),
            cfg("element_not_found", max_retries=6, backoff_strategy="fibonacci",
                base_delay_ms=250, max_delay_ms=2000, jitter=True),
            cfg("stale_element", max_retries=3, backoff_strategy="exponential",
                base_delay_ms=200, max_delay_ms=1000, jitter=False),
        ),
        "critical": (
            cfg("network_error", max_retries=8, backoff_strategy="exponential",
                base_delay_ms=1000, max_delay_ms=10000, jitter=True),
            cfg("timeout_error", max_retries=6, backoff_strategy="fibonacci",
                base_delay_ms=2000, max_delay_ms=8000, jitter=True),
        ),
        "fast": (
            cfg("network_error", max_retries=3, backoff_strategy="linear",
                base_delay_ms=200, max_delay_ms=1000, jitter=False),
            cfg("element_not_found", max_retries=2, backoff_strategy="linear",
                base_delay_ms=100, max_delay_ms=500, jitter=False),
        ),
    })


class IntelligentRetryEngine:
    """
    Replays failing operations according to matched retry configurations.

    The budget is the matched config's ``max_retries`` counted in total
    attempts. When it is spent the last error is re-raised unchanged.
    """

    def __init__(
        self,
        environment: Environment,
        metrics: MetricsCollector | None = None,
        log_diagnostics: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self._environment = environment
        self._metrics = metrics
        self._log_diagnostics = log_diagnostics
        self._rng = rng
        self._log = logger.bind(component="retry_engine")

    async def retry(
        self,
        operation: Callable[[], Awaitable[T]],
        configs: Sequence[IntelligentRetryConfig],
        name: str = "unknown",
    ) -> T:
        """
        Run an operation, retrying failures that match a config.

        Args:
            operation: Zero-argument coroutine function
            configs: Ordered retry configs, first match wins
            name: Operation name for logs and metrics

        Returns:
            The operation's result
        """
        start = time.perf_counter()
        attempt = 0

        while True:
            attempt += 1
            try:
                result = await operation()
            except Exception as e:
                config = select_retry_config(e, configs)
                if config is None or attempt >= config.max_retries:
                    self._record(name, start, attempt, success=False)
                    if config is None:
                        self._log.debug("No retry condition matched", operation=name, error=str(e))
                    else:
                        self._log.warning(
                            "Retries exhausted",
                            operation=name,
                            attempts=attempt,
                            condition=str(config.condition_type),
                            error=str(e),
                        )
                    raise

                delay = calculate_retry_delay(config, attempt, self._rng)
                if self._log_diagnostics:
                    self._log.debug(
                        "Attempt failed, retrying",
                        operation=name,
                        attempt=attempt,
                        condition=str(config.condition_type),
                        delay_ms=round(delay, 2),
                        error=str(e),
                    )
                await asyncio.sleep(delay / 1000)
            else:
                self._record(name, start, attempt, success=True)
                return result

    def _record(self, name: str, start: float, attempts: int, success: bool) -> None:
        if self._metrics is None:
            return
        self._metrics.record(
            TimeoutMetrics(
                operation=name,
                environment=self._environment,
                configured_timeout_ms=0,
                actual_duration_ms=(time.perf_counter() - start) * 1000,
                time_saved_ms=0,
                readiness_score=100 if success else 0,
                success=success,
                attempts=attempts,
            )
        )
