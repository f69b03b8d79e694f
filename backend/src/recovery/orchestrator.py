"""
Error recovery orchestration.

Takes a TestError through automated recovery actions and, for data
failures in production mode, a fallback to the next test mode. Every
recovery outcome is kept in a per-test history for statistics.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from smartwait.recovery.errors import ErrorCategory, RecoveryAction, TestError
from smartwait.recovery.types import DataContext, DataContextFactory, TestConfig, TestMode

logger = structlog.get_logger(__name__)

RecoveryOperation = Callable[[DataContext | None], Awaitable[Any]]
"""Operation replayed during recovery, given the context to run against."""

ConnectionCheck = Callable[[TestError], Awaitable[bool]]
MockContextFactory = Callable[[TestError], Awaitable[DataContext]]

_call_test_config: ContextVar[TestConfig | None] = ContextVar("_call_test_config", default=None)

# Actions that switch modes are carried out by the mode fallback stage
MODE_SWITCH_ACTIONS: frozenset[str] = frozenset({
    "fallback_to_isolated",
    "fallback_to_alternative_mode",
    "switch_testing_mode",
})


class RecoveryRetryPolicy(BaseModel):
    """Retry settings for recovery actions."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1, le=20)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    retryable_categories: tuple[ErrorCategory, ...] = (
        ErrorCategory.DATABASE_CONNECTION,
        ErrorCategory.NETWORK,
        ErrorCategory.DATA_CONTEXT,
        ErrorCategory.TEST_EXECUTION,
    )


class FallbackPolicy(BaseModel):
    """Mode fallback settings."""

    model_config = ConfigDict(frozen=True)

    enable_mode_fallback: bool = True
    fallback_chain: tuple[TestMode, ...] = (TestMode.PRODUCTION, TestMode.ISOLATED)
    preserve_test_data: bool = True
    notify_on_fallback: bool = True


@dataclass
class RecoveryResult:
    """Outcome of one recovery attempt for one error."""

    success: bool = False
    final_mode: TestMode | None = None
    final_context: DataContext | None = None
    attempts_used: int = 0
    recovery_actions: list[str] = field(default_factory=list)
    errors: list[TestError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    # set when a recovery step already ran the operation to completion
    operation_completed: bool = False
    operation_result: Any = None

    def absorb(self, other: RecoveryResult) -> None:
        """Accumulate attempts, actions, errors and warnings from a stage."""
        self.attempts_used += other.attempts_used
        self.recovery_actions.extend(other.recovery_actions)
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if other.final_context is not None:
            self.final_context = other.final_context
        if other.final_mode is not None:
            self.final_mode = other.final_mode
        if other.operation_completed:
            self.operation_completed = True
            self.operation_result = other.operation_result


async def _replay(
    operation: RecoveryOperation, context: DataContext | None, result: RecoveryResult
) -> None:
    result.operation_result = await operation(context)
    result.operation_completed = True


@dataclass(frozen=True, slots=True)
class RecoveryStatistics:
    """Aggregates over the recovery history."""

    total_recoveries: int
    successful_recoveries: int
    failed_recoveries: int
    most_common_errors: list[str]
    most_successful_actions: list[str]

    @property
    def success_rate(self) -> float:
        if self.total_recoveries == 0:
            return 0.0
        return self.successful_recoveries / self.total_recoveries

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_recoveries": self.total_recoveries,
            "successful_recoveries": self.successful_recoveries,
            "failed_recoveries": self.failed_recoveries,
            "success_rate": round(self.success_rate, 4),
            "most_common_errors": self.most_common_errors,
            "most_successful_actions": self.most_successful_actions,
        }


RecoveryHandler = Callable[
    [RecoveryAction, TestError, RecoveryOperation | None, RecoveryResult],
    Awaitable[bool],
]


class ErrorRecoveryManager:
    """
    Recovers from test errors.

    Flow per error:
    1. Non-retryable errors return immediately with a warning
    2. Automated recovery actions run in order until one succeeds
    3. If none succeeded, eligible production errors fall back to the
       next mode in the fallback chain and replay the operation once

    Usage:
        manager = ErrorRecoveryManager(context_factory=factory)
        result = await manager.recover_from_error(error, operation)
    """

    def __init__(
        self,
        context_factory: DataContextFactory | None = None,
        test_config: TestConfig | None = None,
        retry_policy: RecoveryRetryPolicy | None = None,
        fallback_policy: FallbackPolicy | None = None,
        *,
        connection_check: ConnectionCheck | None = None,
        mock_context_factory: MockContextFactory | None = None,
    ) -> None:
        self._context_factory = context_factory
        self._test_config = test_config
        self.retry_policy = retry_policy or RecoveryRetryPolicy()
        self.fallback_policy = fallback_policy or FallbackPolicy()
        self._connection_check = connection_check
        self._mock_context_factory = mock_context_factory
        self._history: dict[str, list[RecoveryResult]] = {}
        self._pending_cleanups: list[dict[str, Any]] = []
        self._log = logger.bind(component="error_recovery")

        self._handlers: dict[str, RecoveryHandler] = {
            "retry_with_backoff": self._retry_with_backoff,
            "retry_test_execution": self._retry_with_backoff,
            "retry_connection": self._retry_connection,
            "retry_context_setup": self._retry_context_setup,
            "refresh_test_data": self._refresh_test_data,
            "fallback_to_mock_data": self._fallback_to_mock_data,
            "force_cleanup": self._force_cleanup,
            "log_for_later_cleanup": self._log_for_later_cleanup,
        }

    def register_handler(self, action: str, handler: RecoveryHandler) -> None:
        """Register or replace the handler for a named recovery action."""
        self._handlers[action] = handler

    @property
    def pending_cleanups(self) -> list[dict[str, Any]]:
        """Resources logged for later cleanup."""
        return list(self._pending_cleanups)

    def _config_for(self, error: TestError, mode: TestMode | None = None) -> TestConfig:
        base = _call_test_config.get() or self._test_config or TestConfig(mode=error.context.mode)
        return replace(base, mode=mode) if mode is not None else base

    def is_retryable(self, error: TestError) -> bool:
        return error.retryable and error.category in self.retry_policy.retryable_categories

    def fallback_mode_for(self, mode: TestMode) -> TestMode:
        """Next mode in the fallback chain, or the same mode when there is none."""
        chain = self.fallback_policy.fallback_chain
        if mode not in chain:
            return mode
        index = chain.index(mode)
        if index == len(chain) - 1:
            return mode
        return chain[index + 1]

    def should_attempt_mode_fallback(self, error: TestError) -> bool:
        return (
            self.fallback_policy.enable_mode_fallback
            and error.should_trigger_mode_fallback()
            and self.fallback_mode_for(error.context.mode) != error.context.mode
        )

    async def recover_from_error(
        self,
        error: TestError,
        operation: RecoveryOperation | None = None,
        test_config: TestConfig | None = None,
    ) -> RecoveryResult:
        """
        Attempt to recover from a test error.

        Args:
            error: Error to recover from
            operation: Operation to replay; receives the data context to
                run against (None when the test has none)
            test_config: Configuration of the failing test; used for context
                creation and connection checks

        Returns:
            RecoveryResult with accumulated attempts, actions, errors and
            warnings. The result is also stored in the test's history.
        """
        token = _call_test_config.set(test_config)
        try:
            return await self._recover(error, operation)
        finally:
            _call_test_config.reset(token)

    async def _recover(
        self,
        error: TestError,
        operation: RecoveryOperation | None,
    ) -> RecoveryResult:
        test_id = error.context.test_id
        result = RecoveryResult(errors=[error])

        if not self.is_retryable(error):
            result.warnings.append(f"Error category {error.category} is not retryable")
            self._log.info(
                "Error not retryable",
                test_id=test_id,
                category=str(error.category),
                retryable=error.retryable,
            )
            self._store(test_id, result)
            return result

        automated = await self._attempt_automated_recovery(error, operation)
        result.absorb(automated)

        if automated.success:
            result.success = True
            result.final_mode = result.final_mode or error.context.mode
            result.final_context = result.final_context or error.context.data_context
            self._log.info(
                "Automated recovery succeeded",
                test_id=test_id,
                actions=result.recovery_actions,
            )
            self._store(test_id, result)
            return result

        if error.should_trigger_mode_fallback():
            if not self.fallback_policy.enable_mode_fallback:
                result.warnings.append("Mode fallback is disabled")
            else:
                fallback = await self._attempt_mode_fallback(error, operation)
                result.absorb(fallback)
                result.success = fallback.success

        if not result.success:
            self._log.warning(
                "Recovery failed",
                test_id=test_id,
                category=str(error.category),
                attempts=result.attempts_used,
                warnings=result.warnings,
            )

        self._store(test_id, result)
        return result

    async def _attempt_automated_recovery(
        self,
        error: TestError,
        operation: RecoveryOperation | None,
    ) -> RecoveryResult:
        result = RecoveryResult()

        for action in error.automated_actions():
            if action.action in MODE_SWITCH_ACTIONS:
                continue

            result.attempts_used += 1
            result.recovery_actions.append(action.action)

            try:
                succeeded = await self._execute_action(action, error, operation, result)
            except Exception as e:
                failure = (
                    e
                    if isinstance(e, TestError)
                    else TestError.test_execution_error(
                        f"Recovery action failed: {action.action}",
                        error.context.test_id,
                        error.context.test_name,
                        error.context.mode,
                        error.context.data_context,
                        original_error=e,
                    )
                )
                result.errors.append(failure)
                result.warnings.append(f"Recovery action '{action.action}' failed: {e}")
                self._log.warning(
                    "Recovery action failed",
                    action=action.action,
                    error=str(e),
                )
                continue

            if succeeded:
                result.success = True
                break

        return result

    async def _execute_action(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        handler = self._handlers.get(action.action)
        if handler is None:
            self._log.warning("Unknown recovery action", action=action.action)
            result.warnings.append(f"Unknown recovery action: {action.action}")
            return False
        return await handler(action, error, operation, result)

    async def _attempt_mode_fallback(
        self,
        error: TestError,
        operation: RecoveryOperation | None,
    ) -> RecoveryResult:
        result = RecoveryResult()
        current = error.context.mode
        target = self.fallback_mode_for(current)

        if target == current:
            result.warnings.append(f"No fallback mode available for {current}")
            return result

        result.attempts_used += 1
        result.recovery_actions.append(f"fallback_to_{target}")

        if self._context_factory is None:
            result.warnings.append(f"Mode fallback to {target} skipped: no data context factory")
            return result

        if self.fallback_policy.notify_on_fallback:
            self._log.warning(
                "Falling back to another test mode",
                from_mode=str(current),
                to_mode=str(target),
                reason=error.message,
            )

        try:
            context = await self._context_factory.create_context(
                target, self._config_for(error, target)
            )
            if operation is not None:
                await _replay(operation, context, result)
        except Exception as e:
            failure = (
                e
                if isinstance(e, TestError)
                else TestError.test_execution_error(
                    f"Mode fallback to {target} failed",
                    error.context.test_id,
                    error.context.test_name,
                    target,
                    original_error=e,
                )
            )
            result.errors.append(failure)
            result.warnings.append(f"Mode fallback to {target} failed: {e}")
            return result

        result.success = True
        result.final_mode = target
        result.final_context = context
        if self.fallback_policy.notify_on_fallback:
            self._log.info("Recovered using fallback mode", mode=str(target))
        return result

    async def _retry_with_backoff(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        if operation is None:
            result.warnings.append(f"Recovery action '{action.action}' needs an operation to replay")
            return False

        policy = self.retry_policy
        delay_ms = float(policy.base_delay_ms)
        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1:
                self._log.info(
                    "Retrying operation",
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    delay_ms=delay_ms,
                )
                await asyncio.sleep(delay_ms / 1000)
            try:
                await _replay(operation, error.context.data_context, result)
            except Exception:
                if attempt == policy.max_attempts:
                    raise
                delay_ms = min(delay_ms * policy.backoff_multiplier, float(policy.max_delay_ms))
            else:
                return True
        return False

    async def _retry_connection(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        self._log.info("Retrying database connection", test_id=error.context.test_id)
        if self._connection_check is not None:
            return await self._connection_check(error)
        return self._config_for(error).database_config is not None

    async def _retry_context_setup(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        if self._context_factory is None:
            result.warnings.append("Context setup retry skipped: no data context factory")
            return False

        self._log.info("Retrying context setup", mode=str(error.context.mode))
        context = await self._context_factory.create_context(
            error.context.mode, self._config_for(error)
        )
        if operation is not None:
            await _replay(operation, context, result)
        result.final_context = context
        return True

    async def _refresh_test_data(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        context = error.context.data_context
        if context is None:
            return False
        self._log.info("Refreshing test data", test_id=error.context.test_id)
        if operation is not None:
            await _replay(operation, context, result)
        return True

    async def _fallback_to_mock_data(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        if self._mock_context_factory is None:
            self._log.warning("No mock data available", test_id=error.context.test_id)
            result.warnings.append("Mock data fallback unavailable: no mock context factory")
            return False

        context = await self._mock_context_factory(error)
        if operation is not None:
            await _replay(operation, context, result)
        result.final_context = context
        return True

    async def _force_cleanup(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        context = error.context.data_context
        if context is not None:
            self._log.info("Forcing cleanup", test_id=error.context.test_id)
            await context.cleanup()
        return True

    async def _log_for_later_cleanup(
        self,
        action: RecoveryAction,
        error: TestError,
        operation: RecoveryOperation | None,
        result: RecoveryResult,
    ) -> bool:
        context = error.context.data_context
        entry = {
            "test_id": error.context.test_id,
            "mode": error.context.mode.value,
            "timestamp": datetime.now(UTC).isoformat(),
            "connection_info": dict(context.connection_info) if context is not None else None,
            "error": error.message,
        }
        self._pending_cleanups.append(entry)
        self._log.warning("Logged resources for later cleanup", **entry)
        return True

    def _store(self, test_id: str, result: RecoveryResult) -> None:
        self._history.setdefault(test_id, []).append(result)

    def get_recovery_history(
        self, test_id: str | None = None
    ) -> list[RecoveryResult] | dict[str, list[RecoveryResult]]:
        """Results for one test, or a copy of the whole history."""
        if test_id is not None:
            return list(self._history.get(test_id, []))
        return {key: list(results) for key, results in self._history.items()}

    def get_recovery_statistics(self, top: int = 5) -> RecoveryStatistics:
        """Totals plus the most common errors and most successful actions."""
        results = [r for history in self._history.values() for r in history]
        error_counts: Counter[str] = Counter()
        action_counts: Counter[str] = Counter()

        for result in results:
            for error in result.errors:
                error_counts[f"{error.category}:{error.message}"] += 1
            if result.success:
                action_counts.update(result.recovery_actions)

        successful = sum(1 for r in results if r.success)
        return RecoveryStatistics(
            total_recoveries=len(results),
            successful_recoveries=successful,
            failed_recoveries=len(results) - successful,
            most_common_errors=[key for key, _ in error_counts.most_common(top)],
            most_successful_actions=[key for key, _ in action_counts.most_common(top)],
        )

    def clear_recovery_history(self) -> None:
        self._history.clear()
        self._pending_cleanups.clear()
