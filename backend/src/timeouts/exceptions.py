"""
Exception types for the smart timeout engine.

Indicator-level failures never raise; they are absorbed into indicator
results. These exceptions cover configuration mistakes and operations
that exhaust their retry/timeout budget.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smartwait.timeouts.models import ReadinessResult


class SmartWaitError(Exception):
    """Base exception for smart timeout errors."""


class ConfigurationError(SmartWaitError, ValueError):
    """Raised when timeout, scoring or indicator configuration is invalid."""


class OperationTimeoutError(SmartWaitError, TimeoutError):
    """Raised when a single attempt of an operation exceeds its timeout."""

    def __init__(self, message: str, timeout_ms: float, attempt: int) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms
        self.attempt = attempt


class ProgressiveTimeoutError(SmartWaitError):
    """Raised when a progressive timeout operation exhausts all attempts."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        duration_ms: float,
        last_error: BaseException | None,
    ) -> None:
        last_message = str(last_error) if last_error else "Unknown error"
        super().__init__(
            f"Progressive timeout failed for operation: {operation} after "
            f"{attempts} attempts and {duration_ms:.2f}ms. Last error: {last_message}"
        )
        self.operation = operation
        self.attempts = attempts
        self.duration_ms = duration_ms
        self.last_error = last_error


class ReadinessTimeoutError(SmartWaitError, TimeoutError):
    """Raised when a page never reaches readiness within the wait budget."""

    def __init__(self, result: ReadinessResult, context: str | None = None) -> None:
        failing = [
            f"{name} ({outcome.error or 'not passed'})"
            for name, outcome in result.indicators.items()
            if not outcome.passed
        ]
        prefix = f"{context}: " if context else ""
        message = (
            f"{prefix}Application not ready after {result.duration_ms:.0f}ms "
            f"(score {result.score}/{result.score_breakdown.score_threshold}, "
            f"reason: {result.fallback_reason or 'unknown'})"
        )
        if failing:
            message += f". Failing indicators: {', '.join(failing)}"
        super().__init__(message)
        self.result = result
