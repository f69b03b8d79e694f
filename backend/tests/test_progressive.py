"""
Unit tests for progressive readiness waits and progressive timeouts.

Tests cover:
- Readiness polling, fallback reasons and metrics
- Progressive operation timeouts with and without escalation
- Retry conditions and callbacks
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import MagicMock

import pytest

from conftest import FakePage, fast_config
from smartwait.timeouts.environment import Environment
from smartwait.timeouts.exceptions import (
    ConfigurationError,
    OperationTimeoutError,
    ProgressiveTimeoutError,
)
from smartwait.timeouts.indicators import ReadinessIndicator, create_readiness_indicator
from smartwait.timeouts.metrics import MetricsCollector
from smartwait.timeouts.progressive import (
    FALLBACK_LOW_SCORE,
    FALLBACK_REQUIRED_FAILED,
    FALLBACK_TIMEOUT,
    ProgressiveTimeoutExecutor,
    create_progressive_timeout_config,
    fallback_reason_for,
)


def flaky(passes_from: int, name: str, **kwargs: Any) -> tuple[ReadinessIndicator, list[int]]:
    """Indicator that starts passing on the given call number."""
    calls: list[int] = []

    async def check(page: Any) -> bool:
        calls.append(1)
        return len(calls) >= passes_from

    return create_readiness_indicator(name, name, check, **kwargs), calls


class TestFallbackReason:
    """Tests for fallback_reason_for."""

    def test_ready_has_no_reason(self) -> None:
        """Test a ready result has no fallback reason."""
        assert fallback_reason_for(True, True, 100, 80) is None

    def test_required_failure_first(self) -> None:
        """Test failed required indicators take priority."""
        assert fallback_reason_for(False, False, 10, 80) == FALLBACK_REQUIRED_FAILED

    def test_low_score(self) -> None:
        """Test a low score is reported when required indicators passed."""
        assert fallback_reason_for(False, True, 50, 80) == FALLBACK_LOW_SCORE

    def test_timeout(self) -> None:
        """Test a sufficient score that was never confirmed reports a timeout."""
        assert fallback_reason_for(False, True, 90, 80) == FALLBACK_TIMEOUT


class TestWaitForReadiness:
    """Tests for ProgressiveTimeoutExecutor.wait_for_readiness."""

    @pytest.mark.asyncio
    async def test_ready_on_first_check(self) -> None:
        """Test an immediately ready page needs a single check."""
        metrics = MetricsCollector()
        executor = ProgressiveTimeoutExecutor(metrics=metrics)
        indicator, _ = flaky(1, "nav", weight=1.0, required=True)

        result = await executor.wait_for_readiness(FakePage(), [indicator], fast_config())

        assert result.ready is True
        assert result.score == 100
        assert result.checks_performed == 1
        assert result.fallback_used is False
        assert result.fallback_reason is None

        (metric,) = metrics.get_metrics()
        assert metric.operation == "readiness_check"
        assert metric.success is True
        assert metric.readiness_score == 100
        assert metric.attempts == 1

    @pytest.mark.asyncio
    async def test_polls_until_ready(self) -> None:
        """Test polling continues until the indicators pass."""
        executor = ProgressiveTimeoutExecutor()
        indicator, calls = flaky(3, "nav", weight=1.0, required=True)

        result = await executor.wait_for_readiness(FakePage(), [indicator], fast_config())

        assert result.ready is True
        assert result.checks_performed == 3
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_max_checks_exhausted_with_required_failure(self) -> None:
        """Test exhausting checks reports the required failure."""
        executor = ProgressiveTimeoutExecutor()
        indicator, calls = flaky(99, "nav", weight=1.0, required=True)
        config = fast_config(progressive_strategy={"max_checks": 4})

        result = await executor.wait_for_readiness(FakePage(), [indicator], config)

        assert result.ready is False
        assert result.checks_performed == 4
        assert len(calls) == 4
        assert result.fallback_used is True
        assert result.fallback_reason == FALLBACK_REQUIRED_FAILED
        assert result.failed_indicators == ["nav"]

    @pytest.mark.asyncio
    async def test_low_score_reason(self) -> None:
        """Test a low score is reported when nothing required failed."""
        executor = ProgressiveTimeoutExecutor()
        passing, _ = flaky(1, "a", weight=0.5)
        failing, _ = flaky(99, "b", weight=0.5)
        config = fast_config(progressive_strategy={"max_checks": 2})

        result = await executor.wait_for_readiness(FakePage(), [passing, failing], config)

        assert result.ready is False
        assert result.score == 50
        assert result.fallback_reason == FALLBACK_LOW_SCORE

    @pytest.mark.asyncio
    async def test_wall_clock_budget(self) -> None:
        """Test the wait stops once max_wait_ms is spent."""

        async def slow(page: Any) -> bool:
            await asyncio.sleep(0.03)
            return False

        indicator = create_readiness_indicator("slow", "slow", slow, weight=1.0, required=True)
        config = fast_config(progressive_strategy={"max_wait_ms": 50, "max_checks": 40})

        result = await ProgressiveTimeoutExecutor().wait_for_readiness(
            FakePage(), [indicator], config
        )

        assert result.ready is False
        assert result.checks_performed < 40

    @pytest.mark.asyncio
    async def test_invalid_indicators_raise_before_checks(self) -> None:
        """Test configuration errors surface before polling."""
        indicator, calls = flaky(1, "bad", weight=1.5)

        with pytest.raises(ConfigurationError):
            await ProgressiveTimeoutExecutor().wait_for_readiness(
                FakePage(), [indicator], fast_config()
            )
        assert calls == []

    @pytest.mark.asyncio
    async def test_metrics_disabled(self) -> None:
        """Test nothing is recorded when metrics are disabled."""
        metrics = MetricsCollector()
        executor = ProgressiveTimeoutExecutor(metrics=metrics)
        indicator, _ = flaky(1, "nav", weight=1.0)

        await executor.wait_for_readiness(
            FakePage(), [indicator], fast_config(performance={"enable_metrics": False})
        )

        assert len(metrics) == 0

    @pytest.mark.asyncio
    async def test_end_to_end_scoring(self) -> None:
        """Test a mostly passing batch in a local environment is ready."""
        main, _ = flaky(1, "main", weight=0.6, required=True)
        side, _ = flaky(1, "side", weight=0.3)
        extra, _ = flaky(99, "extra", weight=0.1)
        config = fast_config(Environment.LOCAL, readiness_scoring={"adaptive_scoring": False})

        result = await ProgressiveTimeoutExecutor().wait_for_readiness(
            FakePage(), [main, side, extra], config
        )

        assert result.ready is True
        assert result.score == 90
        assert result.failed_indicators == ["extra"]


class TestProgressiveTimeoutConfig:
    """Tests for progressive timeout config creation."""

    def test_defaults(self) -> None:
        """Test default values."""
        config = create_progressive_timeout_config("click")

        assert config.initial_timeout_ms == 1000
        assert config.max_timeout_ms == 10000
        assert config.backoff_factor == 2.0
        assert config.max_retries == 5
        assert config.escalation_strategy is None

    def test_strategy_by_key_and_name(self) -> None:
        """Test escalation strategies resolve by key or name."""
        by_key = create_progressive_timeout_config("load", escalation_strategy="network_error")
        by_name = create_progressive_timeout_config("load", escalation_strategy="network-error")

        assert by_key.escalation_strategy is by_name.escalation_strategy

    def test_unknown_strategy(self) -> None:
        """Test unknown strategies raise."""
        with pytest.raises(ConfigurationError, match="Unknown escalation strategy"):
            create_progressive_timeout_config("load", escalation_strategy="yolo")

    def test_max_below_initial_rejected(self) -> None:
        """Test the maximum timeout must not be below the initial one."""
        with pytest.raises(ConfigurationError, match="max_timeout_ms"):
            create_progressive_timeout_config("load", initial_timeout_ms=500, max_timeout_ms=100)


class TestWaitWithProgressiveTimeout:
    """Tests for ProgressiveTimeoutExecutor.wait_with_progressive_timeout."""

    @pytest.mark.asyncio
    async def test_success_on_second_attempt(self) -> None:
        """Test a retry after one failure records two attempts and success."""
        metrics = MetricsCollector()
        executor = ProgressiveTimeoutExecutor(metrics=metrics)
        attempts: list[int] = []

        async def operation() -> str:
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("first try fails")
            return "done"

        config = create_progressive_timeout_config(
            "submit", initial_timeout_ms=100, max_timeout_ms=1000
        )
        result = await executor.wait_with_progressive_timeout(operation, config, fast_config())

        assert result == "done"
        (metric,) = metrics.get_metrics()
        assert metric.operation == "submit"
        assert metric.success is True
        assert metric.attempts == 2
        assert metric.readiness_score == 100

    @pytest.mark.asyncio
    async def test_slow_attempt_times_out_and_grows(self) -> None:
        """Test a timed-out attempt is retried with a longer timeout."""
        durations = [0.2, 0.0]

        async def operation() -> str:
            await asyncio.sleep(durations.pop(0))
            return "ok"

        errors: list[BaseException] = []
        config = create_progressive_timeout_config(
            "load",
            initial_timeout_ms=50,
            max_timeout_ms=1000,
            on_retry=lambda attempt, error: errors.append(error),
        )
        result = await ProgressiveTimeoutExecutor().wait_with_progressive_timeout(
            operation, config, fast_config()
        )

        assert result == "ok"
        assert len(errors) == 1
        assert isinstance(errors[0], OperationTimeoutError)
        assert str(errors[0]) == "Operation timeout after 50ms (attempt 1)"

    @pytest.mark.asyncio
    async def test_exhaustion_raises_progressive_error(self) -> None:
        """Test exhausting attempts raises with the last error chained."""
        metrics = MetricsCollector()
        executor = ProgressiveTimeoutExecutor(metrics=metrics)

        async def operation() -> None:
            raise RuntimeError("still broken")

        config = create_progressive_timeout_config(
            "save", initial_timeout_ms=100, max_timeout_ms=10000, max_retries=3
        )
        with pytest.raises(ProgressiveTimeoutError) as exc_info:
            await executor.wait_with_progressive_timeout(operation, config, fast_config())

        error = exc_info.value
        assert error.attempts == 3
        assert str(error).startswith("Progressive timeout failed for operation: save after 3 attempts")
        assert str(error).endswith("Last error: still broken")
        assert isinstance(error.__cause__, RuntimeError)
        assert metrics.get_metrics()[-1].success is False

    @pytest.mark.asyncio
    async def test_operation_timeout_error_keeps_message(self) -> None:
        """Test a TimeoutError raised by the operation is not taken for the timer."""
        raised: list[TimeoutError] = []
        seen: list[BaseException] = []

        async def operation() -> None:
            error = TimeoutError("connection to db timed out")
            raised.append(error)
            raise error

        config = create_progressive_timeout_config(
            "op",
            initial_timeout_ms=100,
            max_timeout_ms=1000,
            max_retries=2,
            on_retry=lambda attempt, error: seen.append(error),
        )
        with pytest.raises(ProgressiveTimeoutError) as exc_info:
            await ProgressiveTimeoutExecutor().wait_with_progressive_timeout(
                operation, config, fast_config()
            )

        assert str(exc_info.value).endswith("Last error: connection to db timed out")
        assert exc_info.value.__cause__ is raised[-1]
        assert len(raised) == 2
        assert seen == raised
        assert not any(isinstance(error, OperationTimeoutError) for error in seen)

    @pytest.mark.asyncio
    async def test_growth_past_max_stops_retrying(self) -> None:
        """Test the timeout outgrowing its maximum ends the loop."""
        calls: list[int] = []

        async def operation() -> None:
            calls.append(1)
            raise RuntimeError("nope")

        # 100 -> 200 -> 400 -> 800 > 500
        config = create_progressive_timeout_config(
            "grow", initial_timeout_ms=100, max_timeout_ms=500, max_retries=10
        )
        with pytest.raises(ProgressiveTimeoutError):
            await ProgressiveTimeoutExecutor().wait_with_progressive_timeout(
                operation, config, fast_config()
            )
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retry_condition_stops_early(self) -> None:
        """Test a rejecting retry condition stops after the first failure."""
        calls: list[int] = []

        async def operation() -> None:
            calls.append(1)
            raise ValueError("permanent")

        config = create_progressive_timeout_config(
            "fill",
            initial_timeout_ms=100,
            retry_condition=lambda error: not isinstance(error, ValueError),
        )
        with pytest.raises(ProgressiveTimeoutError) as exc_info:
            await ProgressiveTimeoutExecutor().wait_with_progressive_timeout(
                operation, config, fast_config()
            )

        assert len(calls) == 1
        assert exc_info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_escalation_raises_retry_ceiling(self) -> None:
        """Test a matching strategy lifts max_retries and clamps the timeout."""
        calls: list[int] = []

        async def operation() -> None:
            calls.append(1)
            raise RuntimeError("network connection reset")

        config = create_progressive_timeout_config(
            "fetch",
            initial_timeout_ms=100,
            max_timeout_ms=200,
            max_retries=2,
            escalation_strategy="network_error",
        )
        with pytest.raises(ProgressiveTimeoutError) as exc_info:
            await ProgressiveTimeoutExecutor().wait_with_progressive_timeout(
                operation, config, fast_config()
            )

        # network-error allows 8 attempts; the clamped timeout never exceeds the max
        assert len(calls) == 8
        assert exc_info.value.attempts == 8

    @pytest.mark.asyncio
    async def test_strategy_consulted_on_failure(self) -> None:
        """Test the escalation strategy hooks are called."""
        strategy = MagicMock()
        strategy.name = "mock"
        strategy.should_escalate.return_value = True
        strategy.get_next_timeout.return_value = 150.0
        strategy.get_max_retries.return_value = 2
        outcomes = [RuntimeError("boom"), None]

        async def operation() -> str:
            error = outcomes.pop(0)
            if error:
                raise error
            return "ok"

        config = create_progressive_timeout_config(
            "op", initial_timeout_ms=100, max_timeout_ms=1000, escalation_strategy=strategy
        )
        result = await ProgressiveTimeoutExecutor().wait_with_progressive_timeout(
            operation, config, fast_config()
        )

        assert result == "ok"
        strategy.get_next_timeout.assert_called_once()
        strategy.on_escalation.assert_called_once()
