"""
Dual-mode error handling.

Entry point for test code: converts raw exceptions into TestErrors,
reports them, runs recovery and, when recovery fails, degrades
production-mode tests to isolated mode.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar, cast

import structlog
from pydantic import BaseModel, ConfigDict, Field

from smartwait.recovery.classification import ensure_test_error
from smartwait.recovery.errors import MODE_FALLBACK_CATEGORIES, TestError
from smartwait.recovery.orchestrator import (
    ErrorRecoveryManager,
    FallbackPolicy,
    RecoveryOperation,
    RecoveryResult,
    RecoveryRetryPolicy,
    RecoveryStatistics,
)
from smartwait.recovery.reporter import ErrorReporter, ErrorSummary, ReportingConfig
from smartwait.recovery.types import DataContext, DataContextFactory, TestConfig, TestMode

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RecoveryFailedError(Exception):
    """Raised when an error could not be recovered from."""

    def __init__(self, message: str, handling_result: ErrorHandlingResult) -> None:
        super().__init__(message)
        self.handling_result = handling_result


class ErrorHandlingConfig(BaseModel):
    """Settings for DualModeErrorHandler."""

    model_config = ConfigDict(frozen=True)

    retry_policy: RecoveryRetryPolicy = Field(default_factory=RecoveryRetryPolicy)
    fallback_policy: FallbackPolicy = Field(default_factory=FallbackPolicy)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    enable_graceful_degradation: bool = True
    enable_automatic_recovery: bool = True
    enable_error_reporting: bool = True
    max_concurrent_recoveries: int = Field(default=3, ge=1)


@dataclass
class ErrorHandlingResult:
    """Outcome of handling one error."""

    success: bool = False
    final_mode: TestMode | None = None
    final_context: DataContext | None = None
    error_report_id: str | None = None
    recovery_result: RecoveryResult | None = None
    warnings: list[str] = field(default_factory=list)
    execution_time_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class ErrorOccurrence:
    """One failed test, for batch handling."""

    error: BaseException
    test_id: str
    test_name: str
    test_config: TestConfig
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ErrorHandlingStatistics:
    recovery: RecoveryStatistics
    errors: ErrorSummary
    active_recoveries: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "recovery": self.recovery.to_dict(),
            "errors": self.errors.to_dict(),
            "active_recoveries": self.active_recoveries,
        }


class DualModeErrorHandler:
    """
    Error handling orchestrator for dual-mode tests.

    Usage:
        handler = DualModeErrorHandler(context_factory=factory)
        result = await handler.with_error_handling(
            run_scenario, "t-1", "assign ticket", test_config
        )
    """

    def __init__(
        self,
        config: ErrorHandlingConfig | None = None,
        context_factory: DataContextFactory | None = None,
        *,
        recovery_manager: ErrorRecoveryManager | None = None,
        reporter: ErrorReporter | None = None,
    ) -> None:
        self.config = config or ErrorHandlingConfig()
        self._context_factory = context_factory
        self.recovery_manager = recovery_manager or ErrorRecoveryManager(
            context_factory,
            retry_policy=self.config.retry_policy,
            fallback_policy=self.config.fallback_policy,
        )
        self.reporter = reporter or ErrorReporter(self.config.reporting)
        self._active: dict[str, asyncio.Task[RecoveryResult]] = {}
        self._log = logger.bind(component="dual_mode_error_handler")

    @property
    def active_recoveries(self) -> int:
        return len(self._active)

    async def handle_error(
        self,
        error: BaseException,
        test_id: str,
        test_name: str,
        test_config: TestConfig,
        operation: RecoveryOperation | None = None,
        *,
        data_context: DataContext | None = None,
        tags: Sequence[str] = (),
    ) -> ErrorHandlingResult:
        """
        Handle a test failure.

        Reports the error, runs recovery when an operation is given, then
        tries graceful degradation if the test is still failing. Failures
        inside the handling itself become warnings on the result.
        """
        start = time.perf_counter()
        result = ErrorHandlingResult()

        try:
            test_error = ensure_test_error(
                error,
                test_id,
                test_name,
                test_config.mode,
                data_context=data_context,
                tags=tags or test_config.tags,
            )

            if self.config.enable_error_reporting:
                result.error_report_id = await self.reporter.report_error(test_error)

            if self.config.enable_automatic_recovery and operation is not None:
                recovery = await self._recover(test_error, test_config, operation)
                result.recovery_result = recovery
                result.success = recovery.success
                result.final_mode = recovery.final_mode
                result.final_context = recovery.final_context
                result.warnings.extend(recovery.warnings)

                if self.config.enable_error_reporting:
                    await self.reporter.report_error(test_error, recovery)

            if not result.success and self.config.enable_graceful_degradation:
                degraded, context = await self._degrade(test_error, test_config)
                if degraded:
                    result.success = True
                    result.final_mode = TestMode.ISOLATED
                    result.final_context = context
                    result.warnings.append("Graceful degradation applied")

        except Exception as e:
            result.warnings.append(f"Error handling failed: {e}")
            self._log.exception("Error handling failed", test_id=test_id)
        finally:
            result.execution_time_ms = (time.perf_counter() - start) * 1000

        return result

    async def _recover(
        self,
        error: TestError,
        test_config: TestConfig,
        operation: RecoveryOperation,
    ) -> RecoveryResult:
        test_id = error.context.test_id
        existing = self._active.get(test_id)
        if existing is not None:
            self._log.info("Recovery already in progress, waiting", test_id=test_id)
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(
            self.recovery_manager.recover_from_error(error, operation, test_config)
        )
        self._active[test_id] = task
        try:
            return await task
        finally:
            if self._active.get(test_id) is task:
                del self._active[test_id]

    async def _degrade(
        self, error: TestError, test_config: TestConfig
    ) -> tuple[bool, DataContext | None]:
        """Move a failing production test with a data failure to isolated mode."""
        if (
            error.context.mode != TestMode.PRODUCTION
            or error.category.value not in MODE_FALLBACK_CATEGORIES
        ):
            return False, None

        self._log.warning("Degrading to isolated mode", test_id=error.context.test_id)
        if self._context_factory is None:
            # caller continues in isolated mode without a prepared context
            return True, None

        try:
            context = await self._context_factory.create_context(
                TestMode.ISOLATED, replace(test_config, mode=TestMode.ISOLATED)
            )
        except Exception as e:
            self._log.error("Graceful degradation failed", error=str(e))
            return False, None
        return True, context

    async def with_error_handling(
        self,
        operation: Callable[[DataContext | None], Awaitable[T]],
        test_id: str,
        test_name: str,
        test_config: TestConfig,
        data_context: DataContext | None = None,
    ) -> T:
        """
        Run an operation with error handling.

        On failure the error is handled and, if that succeeded, the
        operation is replayed against the recovered context. When a
        recovery action already ran the operation to completion, its
        result is returned without another run.

        Raises:
            RecoveryFailedError: If recovery or the replay failed; chained
                to the underlying exception
        """
        try:
            return await operation(data_context)
        except Exception as error:
            handled = await self.handle_error(
                error,
                test_id,
                test_name,
                test_config,
                operation,
                data_context=data_context,
            )
            if not handled.success:
                raise RecoveryFailedError(
                    self._summarize(error, test_config, handled), handled
                ) from error

            recovery = handled.recovery_result
            if recovery is not None and recovery.success and recovery.operation_completed:
                return cast(T, recovery.operation_result)

            context = handled.final_context if handled.final_context is not None else data_context
            try:
                return await operation(context)
            except Exception as retry_error:
                raise RecoveryFailedError(
                    self._summarize(retry_error, test_config, handled), handled
                ) from retry_error

    @staticmethod
    def _summarize(
        error: BaseException,
        test_config: TestConfig,
        handled: ErrorHandlingResult,
    ) -> str:
        lines = [
            str(error) or type(error).__name__,
            "Error Handling Summary:",
            f"  - Recovery Attempted: {handled.recovery_result is not None}",
            f"  - Recovery Success: {handled.success}",
            f"  - Final Mode: {handled.final_mode or test_config.mode}",
            f"  - Execution Time: {handled.execution_time_ms:.0f}ms",
            f"  - Report ID: {handled.error_report_id or 'N/A'}",
        ]
        if handled.warnings:
            lines.append("  - Warnings: " + "; ".join(handled.warnings))
        return "\n".join(lines)

    async def handle_multiple_errors(
        self,
        occurrences: Sequence[ErrorOccurrence],
        operation: RecoveryOperation | None = None,
    ) -> list[ErrorHandlingResult]:
        """Handle failures in batches of ``max_concurrent_recoveries``."""
        results: list[ErrorHandlingResult] = []
        limit = self.config.max_concurrent_recoveries

        for offset in range(0, len(occurrences), limit):
            batch = occurrences[offset : offset + limit]
            outcomes = await asyncio.gather(
                *(
                    self.handle_error(
                        item.error,
                        item.test_id,
                        item.test_name,
                        item.test_config,
                        operation,
                        tags=item.tags,
                    )
                    for item in batch
                ),
                return_exceptions=True,
            )
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    results.append(
                        ErrorHandlingResult(warnings=[f"Batch error handling failed: {outcome}"])
                    )
                else:
                    results.append(outcome)

        return results

    def statistics(self) -> ErrorHandlingStatistics:
        return ErrorHandlingStatistics(
            recovery=self.recovery_manager.get_recovery_statistics(),
            errors=self.reporter.error_summary(),
            active_recoveries=self.active_recoveries,
        )

    def clear_history(self) -> None:
        self.recovery_manager.clear_recovery_history()
        self.reporter.clear_reports()
