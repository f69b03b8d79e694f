"""
SmartTimeoutManager facade.

One manager owns a configuration, a metrics buffer and, optionally, an
error recovery manager. It exposes readiness waits, progressive
timeouts, condition-aware retries and recovery behind a single object.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from smartwait.timeouts.config import (
    SmartTimeoutConfig,
    TimeoutKind,
    create_default_config,
    merge_config,
)
from smartwait.timeouts.environment import Environment
from smartwait.timeouts.exceptions import ReadinessTimeoutError
from smartwait.timeouts.indicators import PageLike, ReadinessIndicator, ReadinessIndicatorEvaluator
from smartwait.timeouts.metrics import DEFAULT_CAPACITY, MetricsCollector, MetricsSummary
from smartwait.timeouts.models import ReadinessResult, TimeoutMetrics
from smartwait.timeouts.progressive import ProgressiveTimeoutConfig, ProgressiveTimeoutExecutor
from smartwait.timeouts.retry import (
    IntelligentRetryConfig,
    IntelligentRetryEngine,
    create_retry_presets,
)
from smartwait.timeouts.standard_indicators import create_spa_indicators

if TYPE_CHECKING:
    from smartwait.recovery.errors import TestError
    from smartwait.recovery.orchestrator import (
        ErrorRecoveryManager,
        RecoveryOperation,
        RecoveryResult,
        RecoveryStatistics,
    )

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SmartTimeoutManager:
    """
    Adaptive timeout manager for one test.

    The environment is fixed when the manager is created. Per-call
    overrides are merged into a copy of the configuration; the manager's
    own configuration only changes through ``update_config``.

    Usage:
        manager = SmartTimeoutManager()
        result = await manager.wait_for_readiness(page)
        if not result.ready:
            ...
    """

    def __init__(
        self,
        config: SmartTimeoutConfig | None = None,
        *,
        environ: Mapping[str, str] | None = None,
        metrics_capacity: int = DEFAULT_CAPACITY,
        recovery: ErrorRecoveryManager | None = None,
    ) -> None:
        self._config = config or create_default_config(environ=environ)
        self._metrics = MetricsCollector(metrics_capacity)
        self._evaluator = ReadinessIndicatorEvaluator()
        self._executor = ProgressiveTimeoutExecutor(self._evaluator, self._metrics)
        self._recovery = recovery
        self._log = logger.bind(component="smart_timeout_manager")

        self._log.debug(
            "Smart timeout manager initialized",
            environment=str(self._config.environment),
            score_threshold=self._config.score_threshold,
        )

    @property
    def config(self) -> SmartTimeoutConfig:
        return self._config

    @property
    def current_environment(self) -> Environment:
        return self._config.environment

    def update_config(self, **overrides: Any) -> SmartTimeoutConfig:
        """
        Replace the manager's configuration with a merged copy.

        Accepts the same keyword overrides as ``merge_config`` except
        ``environment``, which is fixed for the manager's lifetime.
        """
        if "environment" in overrides:
            raise TypeError("environment cannot be changed after the manager is created")
        self._config = merge_config(self._config, **overrides)
        return self._config

    def get_timeout_for_environment(self, kind: TimeoutKind = "normal") -> int:
        """Get the base timeout for an operation speed."""
        return self._config.timeout_for(kind)

    def _effective_config(self, overrides: Mapping[str, Any]) -> SmartTimeoutConfig:
        if not overrides:
            return self._config
        return merge_config(self._config, **overrides)

    async def wait_for_readiness(
        self,
        page: PageLike,
        indicators: Sequence[ReadinessIndicator] | None = None,
        **overrides: Any,
    ) -> ReadinessResult:
        """
        Wait until the page is ready according to the indicators.

        Args:
            page: Page handle
            indicators: Indicator batch (standard SPA indicators when omitted)
            **overrides: Per-call config overrides, as for ``merge_config``

        Returns:
            ReadinessResult; never raises for a page that is not ready
        """
        config = self._effective_config(overrides)
        return await self._executor.wait_for_readiness(
            page,
            list(indicators) if indicators is not None else create_spa_indicators(),
            config,
        )

    async def wait_until_ready(
        self,
        page: PageLike,
        indicators: Sequence[ReadinessIndicator] | None = None,
        context: str | None = None,
        **overrides: Any,
    ) -> ReadinessResult:
        """
        Wait for readiness and raise when it is not reached.

        Raises:
            ReadinessTimeoutError: Carrying the last ReadinessResult
        """
        result = await self.wait_for_readiness(page, indicators, **overrides)
        if not result.ready:
            self._log.warning(
                "Application not ready",
                context=context,
                score=result.score,
                reason=result.fallback_reason,
                failed=result.failed_indicators,
            )
            raise ReadinessTimeoutError(result, context)
        return result

    async def wait_with_progressive_timeout(
        self,
        operation: Callable[[], Awaitable[T]],
        config: ProgressiveTimeoutConfig,
    ) -> T:
        """Run an operation under a growing per-attempt timeout."""
        return await self._executor.wait_with_progressive_timeout(operation, config, self._config)

    async def wait_with_intelligent_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        configs: Sequence[IntelligentRetryConfig] | None = None,
        name: str = "unknown",
    ) -> T:
        """
        Run an operation with condition-aware retries.

        Uses the ``web_automation`` preset when no configs are given.
        """
        engine = IntelligentRetryEngine(
            environment=self._config.environment,
            metrics=self._metrics if self._config.performance.enable_metrics else None,
            log_diagnostics=self._config.performance.log_diagnostics,
        )
        retry_configs = configs if configs is not None else create_retry_presets()["web_automation"]
        return await engine.retry(operation, retry_configs, name)

    def _require_recovery(self) -> ErrorRecoveryManager:
        if self._recovery is None:
            from smartwait.recovery.orchestrator import ErrorRecoveryManager

            self._recovery = ErrorRecoveryManager()
        return self._recovery

    async def recover_from_error(
        self,
        error: TestError,
        operation: RecoveryOperation | None = None,
    ) -> RecoveryResult:
        """Attempt recovery of a test error, including mode fallback."""
        return await self._require_recovery().recover_from_error(error, operation)

    def get_recovery_history(self, test_id: str | None = None) -> Any:
        """Get recovery results for one test, or the whole history."""
        return self._require_recovery().get_recovery_history(test_id)

    def get_recovery_statistics(self) -> RecoveryStatistics:
        return self._require_recovery().get_recovery_statistics()

    def get_metrics(self) -> list[TimeoutMetrics]:
        """Get a copy of the retained metrics."""
        return self._metrics.get_metrics()

    def clear_metrics(self) -> None:
        self._metrics.clear()

    def metrics_summary(self) -> MetricsSummary:
        return self._metrics.summary()
