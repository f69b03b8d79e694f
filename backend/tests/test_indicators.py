"""
Unit tests for readiness indicators.

Tests cover:
- Indicator batch validation
- Concurrent evaluation, timeouts and raising checks
- Viewport filtering
- Weighted scoring with adaptive bonuses
- Standard SPA indicators
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from conftest import FakePage, fast_config
from smartwait.timeouts.environment import Environment, ViewportType
from smartwait.timeouts.exceptions import ConfigurationError
from smartwait.timeouts.indicators import (
    ReadinessIndicator,
    ReadinessIndicatorEvaluator,
    create_readiness_indicator,
    round_half_up,
)
from smartwait.timeouts.models import IndicatorResult
from smartwait.timeouts.standard_indicators import (
    COMPONENTS_JS,
    DOM_READY_JS,
    VISIBLE_LOADERS_JS,
    components_indicator,
    create_spa_indicators,
    data_loaded_indicator,
    element_visible_indicator,
    mobile_navigation_indicator,
)


def constant(value: bool, name: str = "check", **kwargs: Any) -> ReadinessIndicator:
    async def check(page: Any) -> bool:
        return value

    return create_readiness_indicator(name, f"{name} indicator", check, **kwargs)


def result(name: str, passed: bool, weight: float, required: bool = False) -> IndicatorResult:
    return IndicatorResult(
        name=name, passed=passed, duration_ms=1.0, weight=weight, required=required
    )


class TestValidation:
    """Tests for indicator batch validation."""

    def test_empty_batch_rejected(self) -> None:
        """Test at least one indicator is required."""
        evaluator = ReadinessIndicatorEvaluator()
        with pytest.raises(ConfigurationError, match="At least one"):
            evaluator.validate([], fast_config())

    @pytest.mark.parametrize("weight", [1.5, -0.1])
    def test_invalid_weight_rejected(self, weight: float) -> None:
        """Test weights outside [0, 1] are configuration errors."""
        evaluator = ReadinessIndicatorEvaluator()
        indicators = [constant(True, "bad", weight=weight)]
        with pytest.raises(ConfigurationError, match="Invalid indicator weights"):
            evaluator.validate(indicators, fast_config())

    def test_duplicate_names_rejected(self) -> None:
        """Test duplicate names are reported."""
        evaluator = ReadinessIndicatorEvaluator()
        indicators = [constant(True, "nav"), constant(False, "nav")]
        with pytest.raises(ConfigurationError, match="Duplicate indicator names detected: nav"):
            evaluator.validate(indicators, fast_config())

    @pytest.mark.asyncio
    async def test_invalid_batch_never_runs_checks(self) -> None:
        """Test validation happens before any check executes."""
        calls: list[str] = []

        async def check(page: Any) -> bool:
            calls.append("ran")
            return True

        indicators = [
            create_readiness_indicator("ok", "ok", check),
            create_readiness_indicator("bad", "bad", check, weight=2.0),
        ]
        with pytest.raises(ConfigurationError):
            await ReadinessIndicatorEvaluator().evaluate(FakePage(), indicators, fast_config())
        assert calls == []

    def test_low_weight_required_indicator_allowed(self) -> None:
        """Test a low-weight required indicator only warns."""
        evaluator = ReadinessIndicatorEvaluator()
        evaluator.validate([constant(True, "tiny", weight=0.05, required=True)], fast_config())


class TestEvaluation:
    """Tests for running indicator checks."""

    @pytest.mark.asyncio
    async def test_results_in_input_order(self) -> None:
        """Test results keep the batch order."""
        indicators = [constant(True, "a"), constant(False, "b"), constant(True, "c")]
        results = await ReadinessIndicatorEvaluator().evaluate(
            FakePage(), indicators, fast_config()
        )

        assert [r.name for r in results] == ["a", "b", "c"]
        assert [r.passed for r in results] == [True, False, True]

    @pytest.mark.asyncio
    async def test_raising_check_is_absorbed(self) -> None:
        """Test a raising check fails with its message recorded."""

        async def broken(page: Any) -> bool:
            raise RuntimeError("evaluate failed")

        indicators = [create_readiness_indicator("broken", "broken", broken)]
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            FakePage(), indicators, fast_config()
        )

        assert outcome.passed is False
        assert outcome.error == "evaluate failed"

    @pytest.mark.asyncio
    async def test_slow_check_times_out_as_failed(self) -> None:
        """Test a check slower than its timeout counts as not passed."""

        async def slow(page: Any) -> bool:
            await asyncio.sleep(1)
            return True

        indicators = [create_readiness_indicator("slow", "slow", slow, timeout_ms=10)]
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            FakePage(), indicators, fast_config()
        )

        assert outcome.passed is False
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_truthy_non_true_is_not_passed(self) -> None:
        """Test only a literal True passes."""

        async def truthy(page: Any) -> Any:
            return "yes"

        indicators = [create_readiness_indicator("truthy", "truthy", truthy)]
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            FakePage(), indicators, fast_config()
        )
        assert outcome.passed is False

    @pytest.mark.asyncio
    async def test_viewport_mismatch_is_skipped_and_passes(self) -> None:
        """Test viewport-specific indicators are skipped on other viewports."""
        indicators = [constant(False, "mobile_only", viewport=ViewportType.MOBILE)]
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            FakePage(viewport={"width": 1440, "height": 900}), indicators, fast_config()
        )

        assert outcome.passed is True
        assert outcome.skipped is True
        assert outcome.error == "Skipped for viewport: desktop (expected: mobile)"

    @pytest.mark.asyncio
    async def test_viewport_match_runs_check(self) -> None:
        """Test matching viewports run the check."""
        indicators = [constant(False, "mobile_only", viewport=ViewportType.MOBILE)]
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            FakePage(viewport={"width": 375, "height": 812}), indicators, fast_config()
        )

        assert outcome.passed is False
        assert outcome.skipped is False


class TestScoring:
    """Tests for readiness scoring."""

    def test_single_required_indicator(self) -> None:
        """Test one passing required indicator with weight 1.0 scores 100 and is ready."""
        evaluator = ReadinessIndicatorEvaluator()
        score, breakdown = evaluator.score([result("only", True, 1.0, required=True)], fast_config())

        assert score == 100
        assert evaluator.is_ready(score, breakdown)

    def test_weighted_score_without_adaptive_bonus(self) -> None:
        """Test the base score is the passed share of weight."""
        config = fast_config(readiness_scoring={"adaptive_scoring": False})
        results = [
            result("main", True, 0.6, required=True),
            result("side", True, 0.3),
            result("extra", False, 0.1),
        ]
        evaluator = ReadinessIndicatorEvaluator()
        score, breakdown = evaluator.score(results, config)

        assert score == 90
        assert breakdown.base_score == 90
        assert breakdown.adaptive_bonus == 0.0
        assert evaluator.is_ready(score, breakdown)

    def test_adaptive_required_bonus(self) -> None:
        """Test all required passing adds a bonus capped at 5."""
        results = [
            result("main", True, 0.6, required=True),
            result("side", True, 0.3),
            result("extra", False, 0.1),
        ]
        score, breakdown = ReadinessIndicatorEvaluator().score(results, fast_config())

        # 1 of 3 required -> 3.33 bonus; 2/3 passed is below the local cutoff
        assert breakdown.base_score == 90
        assert breakdown.adaptive_bonus == pytest.approx(10 / 3)
        assert score == 93

    def test_environment_bonus(self) -> None:
        """Test the environment bonus applies once the pass fraction clears the cutoff."""
        results = [result(f"i{n}", n < 9, 0.1) for n in range(10)]
        score, breakdown = ReadinessIndicatorEvaluator().score(
            results, fast_config(Environment.CI)
        )

        assert breakdown.base_score == 90
        assert breakdown.adaptive_bonus == 2
        assert score == 92

    def test_score_is_clamped(self) -> None:
        """Test bonuses never push the score over 100."""
        results = [result("a", True, 0.5, required=True), result("b", True, 0.5, required=True)]
        score, _ = ReadinessIndicatorEvaluator().score(results, fast_config())
        assert score == 100

    def test_required_failure_blocks_readiness(self) -> None:
        """Test a failing required indicator prevents readiness regardless of score."""
        results = [result("gate", False, 0.05, required=True), result("rest", True, 0.95)]
        evaluator = ReadinessIndicatorEvaluator()
        score, breakdown = evaluator.score(results, fast_config())

        assert score >= 80
        assert breakdown.required_passed is False
        assert not evaluator.is_ready(score, breakdown)

    def test_zero_total_weight_scores_zero(self) -> None:
        """Test a batch with no weight scores 0 before bonuses."""
        config = fast_config(readiness_scoring={"adaptive_scoring": False})
        score, _ = ReadinessIndicatorEvaluator().score([result("z", True, 0.0)], config)
        assert score == 0

    def test_score_monotone_in_passing_indicators(self) -> None:
        """Test passing more indicators never lowers the score."""
        evaluator = ReadinessIndicatorEvaluator()
        config = fast_config()
        weights = [0.15, 0.2, 0.25, 0.2, 0.15, 0.05]
        previous = -1
        for passing in range(len(weights) + 1):
            results = [result(f"i{n}", n < passing, w) for n, w in enumerate(weights)]
            score, _ = evaluator.score(results, config)
            assert score >= previous
            previous = score

    def test_round_half_up(self) -> None:
        """Test halves round up."""
        assert round_half_up(92.5) == 93
        assert round_half_up(92.4) == 92
        assert round_half_up(0.5) == 1

    @pytest.mark.asyncio
    async def test_evaluate_once(self) -> None:
        """Test a single scored evaluation."""
        indicators = [constant(True, "a", weight=0.5), constant(False, "b", weight=0.5)]
        outcome = await ReadinessIndicatorEvaluator().evaluate_once(
            FakePage(), indicators, fast_config()
        )

        assert outcome.ready is False
        assert outcome.failed_indicators == ["b"]
        assert outcome.checks_performed == 1


class TestStandardIndicators:
    """Tests for the standard SPA indicators."""

    def test_default_set(self) -> None:
        """Test the default set, its weights and required flags."""
        indicators = create_spa_indicators()

        assert [i.name for i in indicators] == [
            "dom_ready",
            "framework_detected",
            "components_initialized",
            "navigation_rendered",
            "data_loaded",
            "network_quiet",
        ]
        assert [i.weight for i in indicators] == [0.15, 0.20, 0.25, 0.20, 0.15, 0.05]
        assert [i.name for i in indicators if i.required] == ["dom_ready", "navigation_rendered"]
        assert sum(i.weight for i in indicators) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_all_pass_on_ready_page(self) -> None:
        """Test the default set passes when every predicate holds."""
        page = FakePage(responses={VISIBLE_LOADERS_JS: 0, COMPONENTS_JS: {"total": 0}})
        outcome = await ReadinessIndicatorEvaluator().evaluate_once(
            page, create_spa_indicators(), fast_config()
        )

        assert outcome.ready is True
        assert outcome.score == 100

    @pytest.mark.asyncio
    async def test_dom_not_ready(self) -> None:
        """Test the required DOM indicator blocks readiness."""
        page = FakePage(
            responses={DOM_READY_JS: False, VISIBLE_LOADERS_JS: 0, COMPONENTS_JS: {"total": 0}}
        )
        outcome = await ReadinessIndicatorEvaluator().evaluate_once(
            page, create_spa_indicators(), fast_config()
        )

        assert outcome.ready is False
        assert outcome.failed_indicators == ["dom_ready"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            ({"total": 10, "initialized": 8}, True),
            ({"total": 10, "initialized": 7}, False),
            ({"total": 0, "initialized": 0}, True),
        ],
    )
    async def test_components_ratio(self, state: dict[str, int], expected: bool) -> None:
        """Test at least 80 percent of components must be populated."""
        page = FakePage(responses={COMPONENTS_JS: state})
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            page, [components_indicator()], fast_config()
        )
        assert outcome.passed is expected

    @pytest.mark.asyncio
    async def test_visible_loaders_fail_data_loaded(self) -> None:
        """Test visible loaders fail the data indicator."""
        page = FakePage(responses={VISIBLE_LOADERS_JS: 2})
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(
            page, [data_loaded_indicator()], fast_config()
        )

        assert outcome.passed is False
        assert page.calls[0][1][0] == ".loading"

    @pytest.mark.asyncio
    async def test_element_visible_passes_selector(self) -> None:
        """Test the element indicator sends its selector to the page."""
        page = FakePage()
        indicator = element_visible_indicator("#dashboard", required=True)
        (outcome,) = await ReadinessIndicatorEvaluator().evaluate(page, [indicator], fast_config())

        assert indicator.name == "visible:#dashboard"
        assert outcome.passed is True
        assert page.calls[0][1] == "#dashboard"

    def test_mobile_navigation_is_mobile_only(self) -> None:
        """Test the mobile navigation indicator targets mobile viewports."""
        assert mobile_navigation_indicator().viewport == ViewportType.MOBILE
