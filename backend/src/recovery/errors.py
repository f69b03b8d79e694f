"""
Structured test errors.

A TestError carries its category, severity, the test context it was
raised in and the recovery actions that may resolve it. Each category
has a factory that fills in sensible default recovery actions.
"""

from __future__ import annotations

import json
import os
import traceback
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from smartwait.recovery.types import DataContext, TestMode

# Categories whose failures in production mode may fall back to another mode
MODE_FALLBACK_CATEGORIES: frozenset[str] = frozenset({
    "data_context",
    "database_connection",
    "mode_detection",
})


class ErrorCategory(StrEnum):
    """What part of the test lifecycle failed."""

    MODE_DETECTION = "mode_detection"
    DATA_CONTEXT = "data_context"
    DATABASE_CONNECTION = "database_connection"
    TEST_EXECUTION = "test_execution"
    CLEANUP = "cleanup"
    VALIDATION = "validation"
    NETWORK = "network"
    CONFIGURATION = "configuration"


class ErrorSeverity(StrEnum):
    """How bad a failure is."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return list(ErrorSeverity).index(self)


@dataclass(frozen=True, slots=True)
class RecoveryAction:
    """A named step that may resolve an error."""

    action: str
    description: str
    automated: bool
    estimated_time: str | None = None
    prerequisites: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "description": self.description,
            "automated": self.automated,
            "estimated_time": self.estimated_time,
            "prerequisites": list(self.prerequisites),
        }


@dataclass(slots=True)
class ErrorContext:
    """Where and when an error happened."""

    test_id: str
    test_name: str
    mode: TestMode
    data_context: DataContext | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    environment: dict[str, Any] = field(default_factory=dict)
    additional_info: dict[str, Any] = field(default_factory=dict)
    stack_trace: str | None = None


def _env_snapshot(*names: str) -> dict[str, Any]:
    return {name: os.environ.get(name) for name in names}


def _format_stack(error: BaseException | None) -> str | None:
    if error is None or error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


class TestError(Exception):
    """
    Test failure with category, severity, context and recovery options.

    Usage:
        raise TestError.data_context_error(
            "Failed to seed customers", "t-1", "assign ticket", TestMode.PRODUCTION
        ) from e
    """

    __test__ = False

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        severity: ErrorSeverity,
        context: ErrorContext,
        *,
        recovery_actions: list[RecoveryAction] | tuple[RecoveryAction, ...] = (),
        cleanup_required: bool = False,
        retryable: bool = False,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = ErrorCategory(category)
        self.severity = ErrorSeverity(severity)
        self.context = context
        self.recovery_actions: tuple[RecoveryAction, ...] = tuple(recovery_actions)
        self.cleanup_required = cleanup_required
        self.retryable = retryable
        self.original_error = original_error

        if original_error is not None:
            self.__cause__ = original_error
            if context.stack_trace is None:
                context.stack_trace = _format_stack(original_error)

    @classmethod
    def mode_detection_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        environment: Mapping[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Mode could not be determined. Falls back to isolated mode."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=TestMode.ISOLATED,
            environment=dict(environment or {}),
            additional_info={
                "available_modes": [m.value for m in TestMode],
                "environment_variables": _env_snapshot("TEST_MODE", "NODE_ENV"),
            },
        )
        actions = [
            RecoveryAction(
                "set_explicit_mode",
                "Set TEST_MODE environment variable explicitly",
                automated=False,
                estimated_time="1 minute",
                prerequisites=("Access to environment configuration",),
            ),
            RecoveryAction(
                "use_test_tags",
                "Add @isolated, @production, or @dual tags to test",
                automated=False,
                estimated_time="2 minutes",
            ),
            RecoveryAction(
                "fallback_to_isolated",
                "Automatically fallback to isolated mode",
                automated=True,
                estimated_time="immediate",
            ),
        ]
        return cls(
            message,
            ErrorCategory.MODE_DETECTION,
            ErrorSeverity.MEDIUM,
            context,
            recovery_actions=actions,
            retryable=True,
            original_error=original_error,
        )

    @classmethod
    def data_context_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        data_context: DataContext | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Test data context could not be set up."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            data_context=data_context,
            environment=_env_snapshot("NODE_ENV", "TEST_MODE"),
            additional_info={
                "context_mode": str(data_context.mode) if data_context else None,
                "has_test_data": bool(data_context and data_context.test_data),
                "connection_info": dict(data_context.connection_info) if data_context else None,
            },
        )
        actions = [
            RecoveryAction(
                "retry_context_setup",
                "Retry data context setup with exponential backoff",
                automated=True,
                estimated_time="30 seconds",
            ),
            RecoveryAction(
                "fallback_to_alternative_mode",
                "Switch to alternative testing mode",
                automated=True,
                estimated_time="1 minute",
            ),
            RecoveryAction(
                "check_database_connectivity",
                "Verify database connection and permissions",
                automated=False,
                estimated_time="5 minutes",
                prerequisites=("Database access credentials", "Network connectivity"),
            ),
        ]
        return cls(
            message,
            ErrorCategory.DATA_CONTEXT,
            ErrorSeverity.HIGH,
            context,
            recovery_actions=actions,
            cleanup_required=True,
            retryable=True,
            original_error=original_error,
        )

    @classmethod
    def database_connection_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        connection_info: Mapping[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Database could not be reached."""
        info = connection_info or {}
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            environment={
                "NODE_ENV": os.environ.get("NODE_ENV"),
                "DATABASE_URL": "[REDACTED]" if os.environ.get("DATABASE_URL") else "not set",
            },
            additional_info={
                "connection_info": {
                    "host": info.get("host", "unknown"),
                    "database": info.get("database", "unknown"),
                    "is_test_connection": bool(info.get("is_test_connection", False)),
                },
                "network_status": "unknown",
            },
        )
        actions = [
            RecoveryAction(
                "retry_connection",
                "Retry database connection with exponential backoff",
                automated=True,
                estimated_time="1 minute",
            ),
            RecoveryAction(
                "check_network_connectivity",
                "Verify network connectivity to database host",
                automated=False,
                estimated_time="2 minutes",
            ),
            RecoveryAction(
                "validate_credentials",
                "Verify database credentials and permissions",
                automated=False,
                estimated_time="5 minutes",
                prerequisites=("Database administrator access",),
            ),
            RecoveryAction(
                "fallback_to_mock_data",
                "Use mock data for testing if database unavailable",
                automated=True,
                estimated_time="30 seconds",
            ),
        ]
        return cls(
            message,
            ErrorCategory.DATABASE_CONNECTION,
            ErrorSeverity.HIGH,
            context,
            recovery_actions=actions,
            retryable=True,
            original_error=original_error,
        )

    @classmethod
    def test_execution_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        data_context: DataContext | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Test body failed."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            data_context=data_context,
            environment=_env_snapshot("NODE_ENV", "TEST_MODE"),
            additional_info={
                "test_data_available": bool(data_context and data_context.test_data),
            },
        )
        actions = [
            RecoveryAction(
                "retry_test_execution",
                "Retry test execution with same context",
                automated=True,
                estimated_time="30 seconds",
            ),
            RecoveryAction(
                "refresh_test_data",
                "Refresh test data and retry execution",
                automated=True,
                estimated_time="1 minute",
            ),
            RecoveryAction(
                "switch_testing_mode",
                "Switch to alternative testing mode and retry",
                automated=True,
                estimated_time="2 minutes",
            ),
        ]
        return cls(
            message,
            ErrorCategory.TEST_EXECUTION,
            ErrorSeverity.MEDIUM,
            context,
            recovery_actions=actions,
            cleanup_required=True,
            retryable=True,
            original_error=original_error,
        )

    @classmethod
    def cleanup_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        data_context: DataContext | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Test resources could not be released."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            data_context=data_context,
            environment=_env_snapshot("NODE_ENV"),
            additional_info={
                "cleanup_attempted": True,
                "context_still_active": data_context is not None,
            },
        )
        actions = [
            RecoveryAction(
                "force_cleanup",
                "Force cleanup with elevated permissions",
                automated=True,
                estimated_time="1 minute",
            ),
            RecoveryAction(
                "manual_cleanup",
                "Perform manual cleanup of test resources",
                automated=False,
                estimated_time="10 minutes",
                prerequisites=("Database administrator access", "System administrator access"),
            ),
            RecoveryAction(
                "log_for_later_cleanup",
                "Log resources for scheduled cleanup",
                automated=True,
                estimated_time="immediate",
            ),
        ]
        return cls(
            message,
            ErrorCategory.CLEANUP,
            ErrorSeverity.CRITICAL,
            context,
            recovery_actions=actions,
            retryable=True,
            original_error=original_error,
        )

    @classmethod
    def network_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        endpoint: str | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Request to the application under test failed."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            environment=_env_snapshot("NODE_ENV"),
            additional_info={
                "endpoint": endpoint,
                "network_timeout": os.environ.get("NETWORK_TIMEOUT", "default"),
            },
        )
        actions = [
            RecoveryAction(
                "retry_with_backoff",
                "Retry network request with exponential backoff",
                automated=True,
                estimated_time="2 minutes",
            ),
            RecoveryAction(
                "check_network_connectivity",
                "Verify network connectivity and DNS resolution",
                automated=False,
                estimated_time="3 minutes",
            ),
            RecoveryAction(
                "use_alternative_endpoint",
                "Switch to alternative API endpoint if available",
                automated=True,
                estimated_time="30 seconds",
            ),
        ]
        return cls(
            message,
            ErrorCategory.NETWORK,
            ErrorSeverity.MEDIUM,
            context,
            recovery_actions=actions,
            retryable=True,
            original_error=original_error,
        )

    @classmethod
    def validation_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        details: Mapping[str, Any] | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Test data or results failed validation. Not retryable."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            environment=_env_snapshot("NODE_ENV", "TEST_MODE"),
            additional_info=dict(details or {}),
        )
        actions = [
            RecoveryAction(
                "review_validation_rules",
                "Review the failing validation and the test data it checked",
                automated=False,
                estimated_time="5 minutes",
            ),
        ]
        return cls(
            message,
            ErrorCategory.VALIDATION,
            ErrorSeverity.MEDIUM,
            context,
            recovery_actions=actions,
            original_error=original_error,
        )

    @classmethod
    def configuration_error(
        cls,
        message: str,
        test_id: str,
        test_name: str,
        mode: TestMode,
        setting: str | None = None,
        original_error: BaseException | None = None,
    ) -> TestError:
        """Test configuration is invalid. Not retryable."""
        context = ErrorContext(
            test_id=test_id,
            test_name=test_name,
            mode=mode,
            environment=_env_snapshot("NODE_ENV", "TEST_MODE", "TEST_TIMEOUT", "TEST_RETRIES"),
            additional_info={"setting": setting},
        )
        actions = [
            RecoveryAction(
                "fix_configuration",
                "Correct the configuration value and rerun",
                automated=False,
                estimated_time="2 minutes",
                prerequisites=("Access to environment configuration",),
            ),
        ]
        return cls(
            message,
            ErrorCategory.CONFIGURATION,
            ErrorSeverity.HIGH,
            context,
            recovery_actions=actions,
            original_error=original_error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "error": {
                "name": type(self).__name__,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "retryable": self.retryable,
                "cleanup_required": self.cleanup_required,
            },
            "context": {
                "test_id": self.context.test_id,
                "test_name": self.context.test_name,
                "mode": self.context.mode.value,
                "timestamp": self.context.timestamp.isoformat(),
                "environment": self.context.environment,
                "additional_info": self.context.additional_info,
            },
            "recovery_actions": [action.to_dict() for action in self.recovery_actions],
            "original_error": (
                {
                    "name": type(self.original_error).__name__,
                    "message": str(self.original_error),
                    "stack": self.context.stack_trace,
                }
                if self.original_error is not None
                else None
            ),
        }

    def to_log_format(self) -> str:
        """Format the error and its context as indented JSON."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def summary(self) -> str:
        """One-line human readable summary."""
        category = self.category.value.replace("_", " ").upper()
        return (
            f"[{self.severity.value.upper()}] {category} in "
            f"{self.context.mode.value.upper()} mode: {self.message}"
        )

    def primary_recovery_action(self) -> RecoveryAction | None:
        """First automated action, else the first action."""
        for action in self.recovery_actions:
            if action.automated:
                return action
        return self.recovery_actions[0] if self.recovery_actions else None

    def automated_actions(self) -> list[RecoveryAction]:
        return [action for action in self.recovery_actions if action.automated]

    def should_trigger_mode_fallback(self) -> bool:
        """Retryable data failures in production mode may fall back to isolated."""
        return (
            self.retryable
            and self.category.value in MODE_FALLBACK_CATEGORIES
            and self.context.mode == TestMode.PRODUCTION
        )

    def fallback_mode(self) -> TestMode:
        """Isolated for production, otherwise the current mode (no fallback)."""
        if self.context.mode == TestMode.PRODUCTION:
            return TestMode.ISOLATED
        return self.context.mode
