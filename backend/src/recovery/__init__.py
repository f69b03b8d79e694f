"""
Test error taxonomy and recovery.

Provides:
- TestError with categories, severities and recovery actions
- Keyword classification of raw exceptions
- ErrorRecoveryManager for automated recovery and mode fallback
- ErrorReporter and DualModeErrorHandler
- Test-data configuration loaded from TEST_* variables
"""

from smartwait.recovery.classification import classify_error, ensure_test_error
from smartwait.recovery.errors import (
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    RecoveryAction,
    TestError,
)
from smartwait.recovery.handler import (
    DualModeErrorHandler,
    ErrorHandlingConfig,
    ErrorHandlingResult,
    ErrorOccurrence,
    RecoveryFailedError,
)
from smartwait.recovery.orchestrator import (
    ErrorRecoveryManager,
    FallbackPolicy,
    RecoveryResult,
    RecoveryRetryPolicy,
    RecoveryStatistics,
)
from smartwait.recovery.reporter import ErrorReport, ErrorReporter, ReportingConfig
from smartwait.recovery.types import (
    ConfigValidationError,
    DataContext,
    DataContextFactory,
    DatabaseConfig,
    TestConfig,
    TestMode,
    load_test_config,
)

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "RecoveryAction",
    "TestError",
    "classify_error",
    "ensure_test_error",
    # Recovery
    "ErrorRecoveryManager",
    "FallbackPolicy",
    "RecoveryResult",
    "RecoveryRetryPolicy",
    "RecoveryStatistics",
    # Reporting and handling
    "DualModeErrorHandler",
    "ErrorHandlingConfig",
    "ErrorHandlingResult",
    "ErrorOccurrence",
    "ErrorReport",
    "ErrorReporter",
    "RecoveryFailedError",
    "ReportingConfig",
    # Test data
    "ConfigValidationError",
    "DataContext",
    "DataContextFactory",
    "DatabaseConfig",
    "TestConfig",
    "TestMode",
    "load_test_config",
]
