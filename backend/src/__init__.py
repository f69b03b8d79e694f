"""
SmartWait.

Adaptive timeouts, readiness detection and error recovery for browser
end-to-end tests.
"""

__version__ = "1.0.0"

from smartwait.recovery import (
    DualModeErrorHandler,
    ErrorCategory,
    ErrorRecoveryManager,
    ErrorReporter,
    ErrorSeverity,
    RecoveryFailedError,
    RecoveryResult,
    TestConfig,
    TestError,
    TestMode,
    load_test_config,
)
from smartwait.timeouts import (
    ConfigurationError,
    Environment,
    ProgressiveTimeoutError,
    ReadinessIndicator,
    ReadinessResult,
    ReadinessTimeoutError,
    SmartTimeoutConfig,
    SmartTimeoutManager,
    create_default_config,
    create_progressive_timeout_config,
    create_readiness_indicator,
    create_spa_indicators,
    load_smart_timeout_config,
)

__all__ = [
    "__version__",
    # Timeouts
    "ConfigurationError",
    "Environment",
    "ProgressiveTimeoutError",
    "ReadinessIndicator",
    "ReadinessResult",
    "ReadinessTimeoutError",
    "SmartTimeoutConfig",
    "SmartTimeoutManager",
    "create_default_config",
    "create_progressive_timeout_config",
    "create_readiness_indicator",
    "create_spa_indicators",
    "load_smart_timeout_config",
    # Recovery
    "DualModeErrorHandler",
    "ErrorCategory",
    "ErrorRecoveryManager",
    "ErrorReporter",
    "ErrorSeverity",
    "RecoveryFailedError",
    "RecoveryResult",
    "TestConfig",
    "TestError",
    "TestMode",
    "load_test_config",
]
