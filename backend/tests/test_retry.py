"""
Unit tests for condition-aware retries.

Tests cover:
- Condition matching and config selection
- Backoff delay curves, jitter and clamping
- Retry presets
- IntelligentRetryEngine retries and metrics
"""

from __future__ import annotations

import random

import pytest
from pydantic import ValidationError

from smartwait.timeouts.environment import Environment
from smartwait.timeouts.metrics import MetricsCollector
from smartwait.timeouts.retry import (
    BackoffStrategy,
    IntelligentRetryConfig,
    IntelligentRetryEngine,
    RetryConditionType,
    calculate_retry_delay,
    create_intelligent_retry_config,
    create_retry_presets,
    fibonacci,
    matches_retry_condition,
    select_retry_config,
)


class TestConditionMatching:
    """Tests for retry condition matching."""

    @pytest.mark.parametrize(
        ("condition", "message"),
        [
            ("network_error", "Network connection refused"),
            ("network_error", "fetch failed"),
            ("timeout_error", "Request TIMED OUT"),
            ("element_not_found", "No element matches selector #save"),
            ("stale_element", "Element is detached from the DOM"),
            ("page_crash", "Target closed unexpectedly"),
        ],
    )
    def test_keywords_match(self, condition: str, message: str) -> None:
        """Test each condition matches its keywords case-insensitively."""
        config = create_intelligent_retry_config(condition)
        assert matches_retry_condition(RuntimeError(message), config)

    def test_unrelated_message(self) -> None:
        """Test unrelated errors do not match."""
        config = create_intelligent_retry_config("stale_element")
        assert not matches_retry_condition(ValueError("bad input"), config)

    def test_custom_uses_predicate(self) -> None:
        """Test custom conditions defer to the predicate."""
        config = create_intelligent_retry_config(
            "custom", predicate=lambda e: isinstance(e, KeyError)
        )
        assert matches_retry_condition(KeyError("x"), config)
        assert not matches_retry_condition(RuntimeError("network"), config)

    def test_custom_without_predicate(self) -> None:
        """Test a custom condition without a predicate never matches."""
        config = create_intelligent_retry_config(RetryConditionType.CUSTOM)
        assert not matches_retry_condition(RuntimeError("anything"), config)

    def test_first_match_wins(self) -> None:
        """Test config order decides between overlapping conditions."""
        timeout = create_intelligent_retry_config("timeout_error")
        network = create_intelligent_retry_config("network_error")

        selected = select_retry_config(RuntimeError("timeout"), [timeout, network])

        assert selected is timeout
        assert select_retry_config(RuntimeError("nope"), [timeout, network]) is None


class TestRetryConfig:
    """Tests for IntelligentRetryConfig validation."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = create_intelligent_retry_config("network_error")

        assert config.max_retries == 3
        assert config.backoff_strategy == BackoffStrategy.EXPONENTIAL
        assert config.base_delay_ms == 500
        assert config.max_delay_ms == 5000
        assert config.jitter is True

    def test_max_retries_bounds(self) -> None:
        """Test max_retries must stay within 1-50."""
        with pytest.raises(ValidationError):
            create_intelligent_retry_config("network_error", max_retries=0)
        with pytest.raises(ValidationError):
            create_intelligent_retry_config("network_error", max_retries=51)

    def test_unknown_condition(self) -> None:
        """Test unknown condition names are rejected."""
        with pytest.raises(ValueError):
            create_intelligent_retry_config("cosmic_ray")


class TestRetryDelay:
    """Tests for calculate_retry_delay."""

    def test_fibonacci_sequence(self) -> None:
        """Test the Fibonacci helper."""
        assert [fibonacci(n) for n in range(1, 8)] == [1, 1, 2, 3, 5, 8, 13]

    @pytest.mark.parametrize(
        ("strategy", "attempt", "expected"),
        [
            ("linear", 3, 300),
            ("exponential", 1, 100),
            ("exponential", 3, 400),
            ("fibonacci", 5, 500),
        ],
    )
    def test_curves(self, strategy: str, attempt: int, expected: float) -> None:
        """Test delay curves without jitter."""
        config = create_intelligent_retry_config(
            "network_error",
            backoff_strategy=strategy,
            base_delay_ms=100,
            max_delay_ms=10000,
            jitter=False,
        )
        assert calculate_retry_delay(config, attempt) == expected

    def test_clamped_to_max(self) -> None:
        """Test delays never exceed max_delay_ms."""
        config = create_intelligent_retry_config(
            "network_error", base_delay_ms=1000, max_delay_ms=1500, jitter=False
        )
        assert calculate_retry_delay(config, 5) == 1500

    def test_jitter_within_quarter(self) -> None:
        """Test jitter stays within 25% of the nominal delay."""
        config = create_intelligent_retry_config(
            "network_error",
            backoff_strategy="linear",
            base_delay_ms=400,
            max_delay_ms=10000,
        )
        rng = random.Random(7)
        delays = [calculate_retry_delay(config, 1, rng) for _ in range(200)]

        assert all(300 <= d <= 500 for d in delays)
        assert len(set(delays)) > 1


class TestRetryPresets:
    """Tests for built-in retry presets."""

    def test_preset_names(self) -> None:
        """Test available presets."""
        assert set(create_retry_presets()) == {"web_automation", "critical", "fast"}

    def test_web_automation(self) -> None:
        """Test the web automation preset order and budgets."""
        preset = create_retry_presets()["web_automation"]

        assert [(c.condition_type, c.backoff_strategy, c.max_retries) for c in preset] == [
            (RetryConditionType.NETWORK_ERROR, BackoffStrategy.EXPONENTIAL, 5),
            (RetryConditionType.TIMEOUT_ERROR, BackoffStrategy.LINEAR, 4),
            (RetryConditionType.ELEMENT_NOT_FOUND, BackoffStrategy.FIBONACCI, 6),
            (RetryConditionType.STALE_ELEMENT, BackoffStrategy.EXPONENTIAL, 3),
        ]


def no_delay(condition: str, max_retries: int = 3) -> IntelligentRetryConfig:
    return create_intelligent_retry_config(
        condition, max_retries=max_retries, base_delay_ms=0, max_delay_ms=0, jitter=False
    )


class TestIntelligentRetryEngine:
    """Tests for IntelligentRetryEngine."""

    @pytest.mark.asyncio
    async def test_success_without_retry(self) -> None:
        """Test a passing operation runs once."""
        metrics = MetricsCollector()
        engine = IntelligentRetryEngine(Environment.LOCAL, metrics=metrics)

        async def operation() -> int:
            return 42

        assert await engine.retry(operation, [no_delay("network_error")], "lookup") == 42
        (metric,) = metrics.get_metrics()
        assert metric.operation == "lookup"
        assert metric.attempts == 1
        assert metric.success is True

    @pytest.mark.asyncio
    async def test_retries_matching_errors(self) -> None:
        """Test matching failures are retried until success."""
        metrics = MetricsCollector()
        engine = IntelligentRetryEngine(Environment.CI, metrics=metrics)
        failures = [ConnectionError("network down"), ConnectionError("network down")]

        async def operation() -> str:
            if failures:
                raise failures.pop(0)
            return "ok"

        assert await engine.retry(operation, [no_delay("network_error")], "fetch") == "ok"
        (metric,) = metrics.get_metrics()
        assert metric.attempts == 3
        assert metric.success is True
        assert metric.environment == Environment.CI
        assert metric.configured_timeout_ms == 0

    @pytest.mark.asyncio
    async def test_unmatched_error_raises_immediately(self) -> None:
        """Test errors matching no config propagate on the first attempt."""
        calls: list[int] = []

        async def operation() -> None:
            calls.append(1)
            raise ValueError("bad input")

        engine = IntelligentRetryEngine(Environment.LOCAL)
        with pytest.raises(ValueError, match="bad input"):
            await engine.retry(operation, [no_delay("network_error")])
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_budget_exhausted_raises_last_error(self) -> None:
        """Test the original error is re-raised once attempts are spent."""
        metrics = MetricsCollector()
        calls: list[int] = []

        async def operation() -> None:
            calls.append(1)
            raise RuntimeError(f"timeout #{len(calls)}")

        engine = IntelligentRetryEngine(Environment.LOCAL, metrics=metrics)
        with pytest.raises(RuntimeError, match="timeout #4"):
            await engine.retry(operation, [no_delay("timeout_error", max_retries=4)], "wait")

        assert len(calls) == 4
        (metric,) = metrics.get_metrics()
        assert metric.success is False
        assert metric.attempts == 4

    @pytest.mark.asyncio
    async def test_budget_follows_matched_config(self) -> None:
        """Test each failure is budgeted by the config it matches."""
        calls: list[int] = []

        async def operation() -> None:
            calls.append(1)
            raise RuntimeError("stale element")

        configs = [no_delay("network_error", max_retries=5), no_delay("stale_element", max_retries=2)]
        with pytest.raises(RuntimeError):
            await IntelligentRetryEngine(Environment.LOCAL).retry(operation, configs)
        assert len(calls) == 2
