"""
Adaptive timeouts and readiness detection.

Provides:
- SmartTimeoutManager facade
- Environment profiles and configuration merging
- Weighted readiness indicators and scoring
- Progressive timeouts with escalation strategies
- Condition-aware retries and timeout metrics
"""

from smartwait.timeouts.config import (
    BaseTimeouts,
    PerformanceSettings,
    ProgressiveStrategy,
    ReadinessScoring,
    ScoreThresholds,
    SmartTimeoutConfig,
    create_default_config,
    create_environment_profiles,
    load_smart_timeout_config,
    merge_config,
)
from smartwait.timeouts.environment import (
    Environment,
    ViewportType,
    detect_environment,
    detect_viewport_type,
)
from smartwait.timeouts.escalation import (
    ESCALATION_STRATEGIES,
    AdaptiveEscalationStrategy,
    KeywordEscalationStrategy,
    TimeoutEscalationStrategy,
    create_escalation_strategies,
    get_escalation_strategy,
)
from smartwait.timeouts.exceptions import (
    ConfigurationError,
    OperationTimeoutError,
    ProgressiveTimeoutError,
    ReadinessTimeoutError,
    SmartWaitError,
)
from smartwait.timeouts.indicators import (
    PageLike,
    ReadinessIndicator,
    ReadinessIndicatorEvaluator,
    create_readiness_indicator,
)
from smartwait.timeouts.manager import SmartTimeoutManager
from smartwait.timeouts.metrics import MetricsCollector, MetricsSummary
from smartwait.timeouts.models import (
    IndicatorResult,
    ReadinessResult,
    ScoreBreakdown,
    TimeoutMetrics,
)
from smartwait.timeouts.progressive import (
    ProgressiveTimeoutConfig,
    ProgressiveTimeoutExecutor,
    create_progressive_timeout_config,
)
from smartwait.timeouts.retry import (
    BackoffStrategy,
    IntelligentRetryConfig,
    IntelligentRetryEngine,
    RetryConditionType,
    calculate_retry_delay,
    create_intelligent_retry_config,
    create_retry_presets,
)
from smartwait.timeouts.standard_indicators import create_spa_indicators

__all__ = [
    # Manager
    "SmartTimeoutManager",
    # Configuration
    "BaseTimeouts",
    "Environment",
    "PerformanceSettings",
    "ProgressiveStrategy",
    "ReadinessScoring",
    "ScoreThresholds",
    "SmartTimeoutConfig",
    "ViewportType",
    "create_default_config",
    "create_environment_profiles",
    "detect_environment",
    "detect_viewport_type",
    "load_smart_timeout_config",
    "merge_config",
    # Readiness
    "IndicatorResult",
    "PageLike",
    "ReadinessIndicator",
    "ReadinessIndicatorEvaluator",
    "ReadinessResult",
    "ScoreBreakdown",
    "create_readiness_indicator",
    "create_spa_indicators",
    # Progressive timeouts
    "ESCALATION_STRATEGIES",
    "AdaptiveEscalationStrategy",
    "KeywordEscalationStrategy",
    "ProgressiveTimeoutConfig",
    "ProgressiveTimeoutExecutor",
    "TimeoutEscalationStrategy",
    "create_escalation_strategies",
    "create_progressive_timeout_config",
    "get_escalation_strategy",
    # Retry
    "BackoffStrategy",
    "IntelligentRetryConfig",
    "IntelligentRetryEngine",
    "RetryConditionType",
    "calculate_retry_delay",
    "create_intelligent_retry_config",
    "create_retry_presets",
    # Metrics
    "MetricsCollector",
    "MetricsSummary",
    "TimeoutMetrics",
    # Exceptions
    "ConfigurationError",
    "OperationTimeoutError",
    "ProgressiveTimeoutError",
    "ReadinessTimeoutError",
    "SmartWaitError",
]
