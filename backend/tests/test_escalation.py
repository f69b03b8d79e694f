"""
Unit tests for timeout escalation strategies.

Tests cover:
- Built-in registry contents and lookup
- Keyword strategies
- Adaptive strategy
"""

from __future__ import annotations

import pytest

from smartwait.timeouts.escalation import (
    ESCALATION_STRATEGIES,
    AdaptiveEscalationStrategy,
    KeywordEscalationStrategy,
    TimeoutEscalationStrategy,
    get_escalation_strategy,
)
from smartwait.timeouts.exceptions import ConfigurationError


class TestRegistry:
    """Tests for the escalation registry."""

    def test_registry_keys(self) -> None:
        """Test the built-in strategies."""
        assert set(ESCALATION_STRATEGIES) == {
            "network_error",
            "element_error",
            "browser_error",
            "timeout_error",
            "adaptive",
        }

    def test_registry_is_read_only(self) -> None:
        """Test the registry cannot be modified."""
        with pytest.raises(TypeError):
            ESCALATION_STRATEGIES["custom"] = AdaptiveEscalationStrategy()  # type: ignore[index]

    def test_strategies_satisfy_protocol(self) -> None:
        """Test every built-in implements the strategy protocol."""
        for strategy in ESCALATION_STRATEGIES.values():
            assert isinstance(strategy, TimeoutEscalationStrategy)

    def test_lookup_by_key_or_name(self) -> None:
        """Test lookup accepts registry keys and strategy names."""
        assert get_escalation_strategy("browser_error").name == "browser-error"
        assert get_escalation_strategy("browser-error") is ESCALATION_STRATEGIES["browser_error"]

    def test_unknown_lookup(self) -> None:
        """Test unknown names list the available strategies."""
        with pytest.raises(ConfigurationError, match="Available: adaptive"):
            get_escalation_strategy("nope")


class TestKeywordStrategies:
    """Tests for keyword-driven strategies."""

    @pytest.mark.parametrize(
        ("key", "message", "multiplier", "retries"),
        [
            ("network_error", "Connection reset by peer", 2.5, 8),
            ("element_error", "Selector did not resolve", 1.8, 6),
            ("browser_error", "Browser has disconnected", 3.0, 4),
            ("timeout_error", "Navigation timeout", 2.0, 5),
        ],
    )
    def test_matching_error_escalates(
        self, key: str, message: str, multiplier: float, retries: int
    ) -> None:
        """Test a matching error escalates with the strategy's multiplier."""
        strategy = ESCALATION_STRATEGIES[key]
        error = RuntimeError(message)

        assert strategy.should_escalate(error, 1, 10.0)
        assert strategy.get_next_timeout(1000, 1, error) == pytest.approx(1000 * multiplier)
        assert strategy.get_max_retries(error) == retries

    def test_non_matching_error(self) -> None:
        """Test errors without the keywords do not escalate."""
        strategy = ESCALATION_STRATEGIES["browser_error"]
        assert not strategy.should_escalate(RuntimeError("validation failed"), 1, 10.0)

    def test_custom_keyword_strategy(self) -> None:
        """Test building a custom keyword strategy."""
        strategy = KeywordEscalationStrategy(
            name="db",
            description="Database errors",
            keywords=("deadlock",),
            multiplier=1.5,
            max_retries=3,
        )
        assert strategy.should_escalate(RuntimeError("DEADLOCK detected"), 2, 1.0)
        strategy.on_escalation(RuntimeError("deadlock"), 2, 150.0)


class TestAdaptiveStrategy:
    """Tests for AdaptiveEscalationStrategy."""

    def test_escalates_early_fast_failures(self) -> None:
        """Test only early, fast failures escalate."""
        strategy = AdaptiveEscalationStrategy()
        error = RuntimeError("boom")

        assert strategy.should_escalate(error, 1, 100.0)
        assert strategy.should_escalate(error, 6, 4999.0)
        assert not strategy.should_escalate(error, 7, 100.0)
        assert not strategy.should_escalate(error, 1, 5000.0)

    def test_multiplier_grows_with_attempt(self) -> None:
        """Test the multiplier is 1.5 + 0.2 per attempt."""
        strategy = AdaptiveEscalationStrategy()
        error = RuntimeError("boom")

        assert strategy.get_next_timeout(1000, 1, error) == pytest.approx(1700)
        assert strategy.get_next_timeout(1000, 3, error) == pytest.approx(2100)

    def test_retry_ceiling_by_error(self) -> None:
        """Test recoverable errors get a higher retry ceiling."""
        strategy = AdaptiveEscalationStrategy()

        assert strategy.get_max_retries(RuntimeError("network hiccup")) == 8
        assert strategy.get_max_retries(RuntimeError("Timeout waiting")) == 8
        assert strategy.get_max_retries(RuntimeError("assertion failed")) == 5
