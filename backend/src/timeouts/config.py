"""
Configuration models for smart timeouts.

Provides typed configuration for:
- Base timeouts per operation speed
- Progressive readiness polling
- Performance goals and diagnostics
- Readiness scoring thresholds per environment
- Environment profiles and environment variable support
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal, TypeVar

import structlog
import yaml

from smartwait.timeouts.environment import (
    Environment,
    detect_environment,
    diagnostics_requested,
)
from smartwait.timeouts.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

TimeoutKind = Literal["fast", "normal", "slow"]

MAX_WAIT_BY_ENVIRONMENT: Mapping[Environment, int] = MappingProxyType({
    Environment.LOCAL: 8000,
    Environment.CI: 15000,
    Environment.REMOTE: 25000,
})

TARGET_REDUCTION_BY_ENVIRONMENT: Mapping[Environment, int] = MappingProxyType({
    Environment.LOCAL: 70,
    Environment.CI: 50,
    Environment.REMOTE: 30,
})

# Cap on the interval between two readiness polls
MAX_CHECK_INTERVAL_MS = 2000


@dataclass(frozen=True, slots=True)
class BaseTimeouts:
    """Base timeouts in milliseconds by operation speed."""

    fast: int = 2000
    """Quick feedback operations."""

    normal: int = 5000
    """Balanced default."""

    slow: int = 10000
    """Conservative, for slow or unstable pages."""

    def validate(self) -> None:
        """Validate timeouts are positive and ordered."""
        if min(self.fast, self.normal, self.slow) <= 0:
            raise ConfigurationError("base timeouts must be positive")
        if not self.fast <= self.normal <= self.slow:
            raise ConfigurationError("base timeouts must satisfy fast <= normal <= slow")


@dataclass(frozen=True, slots=True)
class ProgressiveStrategy:
    """Polling strategy used while waiting for readiness."""

    initial_wait_ms: int = 100
    """Wait before the first readiness check."""

    max_wait_ms: int = 15000
    """Wall-clock budget for the whole readiness wait."""

    backoff_factor: float = 1.5
    """Multiplier applied to the check interval after each poll."""

    check_interval_ms: int = 250
    """Interval before the second poll."""

    max_checks: int = 40
    """Maximum number of readiness polls."""

    def validate(self) -> None:
        """Validate polling values."""
        if self.initial_wait_ms < 0:
            raise ConfigurationError("initial_wait_ms must be non-negative")
        if self.max_wait_ms <= 0:
            raise ConfigurationError("max_wait_ms must be positive")
        if self.backoff_factor < 1.0:
            raise ConfigurationError("backoff_factor must be at least 1.0")
        if self.check_interval_ms < 0:
            raise ConfigurationError("check_interval_ms must be non-negative")
        if self.max_checks < 1:
            raise ConfigurationError("max_checks must be at least 1")


@dataclass(frozen=True, slots=True)
class PerformanceSettings:
    """Performance goals and diagnostics switches."""

    target_reduction: int = 50
    """Targeted timeout reduction in percent."""

    enable_metrics: bool = True
    """Record TimeoutMetrics for each operation."""

    log_diagnostics: bool = False
    """Emit debug logs from the polling loops."""

    def validate(self) -> None:
        """Validate performance settings."""
        if not 0 <= self.target_reduction <= 100:
            raise ConfigurationError("target_reduction must be between 0 and 100")


@dataclass(frozen=True, slots=True)
class ScoreThresholds:
    """Readiness score required per environment."""

    local: int = 80
    ci: int = 70
    remote: int = 60

    def for_environment(self, environment: Environment) -> int:
        """Get the threshold for an environment."""
        match environment:
            case Environment.LOCAL:
                return self.local
            case Environment.CI:
                return self.ci
            case Environment.REMOTE:
                return self.remote
            case _:
                raise ConfigurationError(f"Unknown environment: {environment}")

    def validate(self) -> None:
        """Validate thresholds are percentages."""
        for name in ("local", "ci", "remote"):
            value = getattr(self, name)
            if not 0 <= value <= 100:
                raise ConfigurationError(
                    f"score threshold for {name} must be between 0 and 100"
                )


@dataclass(frozen=True, slots=True)
class ReadinessScoring:
    """Readiness scoring configuration."""

    score_thresholds: ScoreThresholds = field(default_factory=ScoreThresholds)
    """Score required per environment."""

    required_indicator_weight: float = 0.1
    """Weight below which a required indicator triggers a warning."""

    fallback_on_low_score: bool = True
    """Annotate results with a fallback reason when not ready."""

    adaptive_scoring: bool = True
    """Apply required/environment bonuses to the base score."""

    def validate(self) -> None:
        """Validate scoring values."""
        self.score_thresholds.validate()
        if not 0.0 <= self.required_indicator_weight <= 1.0:
            raise ConfigurationError("required_indicator_weight must be between 0 and 1")


@dataclass(frozen=True, slots=True)
class SmartTimeoutConfig:
    """
    Complete configuration for one SmartTimeoutManager.

    Immutable; per-call overrides produce a new instance via merge_config.
    """

    environment: Environment = Environment.REMOTE
    base_timeouts: BaseTimeouts = field(default_factory=BaseTimeouts)
    progressive_strategy: ProgressiveStrategy = field(default_factory=ProgressiveStrategy)
    performance: PerformanceSettings = field(default_factory=PerformanceSettings)
    readiness_scoring: ReadinessScoring = field(default_factory=ReadinessScoring)

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not isinstance(self.environment, Environment):
            try:
                object.__setattr__(self, "environment", Environment(self.environment))
            except ValueError as e:
                raise ConfigurationError(f"Unknown environment: {self.environment}") from e
        self.base_timeouts.validate()
        self.progressive_strategy.validate()
        self.performance.validate()
        self.readiness_scoring.validate()

    @property
    def score_threshold(self) -> int:
        """Score threshold for this config's environment."""
        return self.readiness_scoring.score_thresholds.for_environment(self.environment)

    def timeout_for(self, kind: TimeoutKind = "normal") -> int:
        """Get the base timeout for an operation speed."""
        if kind not in ("fast", "normal", "slow"):
            raise ConfigurationError(f"Unknown timeout kind: {kind}")
        return getattr(self.base_timeouts, kind)


GroupT = TypeVar("GroupT")


def _merge_group(
    group: GroupT,
    overrides: GroupT | Mapping[str, Any] | None,
    group_name: str,
) -> GroupT:
    """Merge one config group. Instances replace the group, mappings patch it."""
    if overrides is None:
        return group
    if isinstance(overrides, type(group)):
        return overrides
    if not isinstance(overrides, Mapping):
        raise ConfigurationError(
            f"{group_name} overrides must be a mapping or {type(group).__name__}"
        )

    valid = {f.name for f in fields(group)}
    unknown = sorted(set(overrides) - valid)
    if unknown:
        raise ConfigurationError(f"Unknown {group_name} option(s): {', '.join(unknown)}")

    return replace(group, **overrides)


def merge_config(
    base: SmartTimeoutConfig,
    *,
    environment: Environment | str | None = None,
    base_timeouts: BaseTimeouts | Mapping[str, Any] | None = None,
    progressive_strategy: ProgressiveStrategy | Mapping[str, Any] | None = None,
    performance: PerformanceSettings | Mapping[str, Any] | None = None,
    readiness_scoring: ReadinessScoring | Mapping[str, Any] | None = None,
) -> SmartTimeoutConfig:
    """
    Create a new config with each nested group merged independently.

    Mapping overrides patch only the keys they name; group instances
    replace the whole group. The base config is never mutated.

    Args:
        base: Config to start from
        environment: Environment override
        base_timeouts: Override for base timeouts
        progressive_strategy: Override for polling strategy
        performance: Override for performance settings
        readiness_scoring: Override for scoring; a nested
            ``score_thresholds`` mapping is merged as well

    Returns:
        New SmartTimeoutConfig
    """
    scoring_overrides = readiness_scoring
    if isinstance(readiness_scoring, Mapping) and isinstance(
        readiness_scoring.get("score_thresholds"), Mapping
    ):
        scoring_overrides = {
            **readiness_scoring,
            "score_thresholds": _merge_group(
                base.readiness_scoring.score_thresholds,
                readiness_scoring["score_thresholds"],
                "score_thresholds",
            ),
        }

    return SmartTimeoutConfig(
        environment=Environment(environment) if environment else base.environment,
        base_timeouts=_merge_group(base.base_timeouts, base_timeouts, "base_timeouts"),
        progressive_strategy=_merge_group(
            base.progressive_strategy, progressive_strategy, "progressive_strategy"
        ),
        performance=_merge_group(base.performance, performance, "performance"),
        readiness_scoring=_merge_group(
            base.readiness_scoring, scoring_overrides, "readiness_scoring"
        ),
    )


def create_default_config(
    environment: Environment | None = None,
    environ: Mapping[str, str] | None = None,
) -> SmartTimeoutConfig:
    """
    Build the default manager configuration for an environment.

    Args:
        environment: Environment to build for (detected when omitted)
        environ: Environment mapping used for detection and diagnostics

    Returns:
        Default SmartTimeoutConfig
    """
    env = environment or detect_environment(environ)
    return SmartTimeoutConfig(
        environment=env,
        base_timeouts=BaseTimeouts(fast=2000, normal=5000, slow=10000),
        progressive_strategy=ProgressiveStrategy(
            initial_wait_ms=100,
            max_wait_ms=MAX_WAIT_BY_ENVIRONMENT[env],
            backoff_factor=1.5,
            check_interval_ms=250,
            max_checks=40,
        ),
        performance=PerformanceSettings(
            target_reduction=TARGET_REDUCTION_BY_ENVIRONMENT[env],
            enable_metrics=True,
            log_diagnostics=diagnostics_requested(environ),
        ),
        readiness_scoring=ReadinessScoring(),
    )


def create_environment_profiles() -> Mapping[Environment, SmartTimeoutConfig]:
    """
    Create the built-in local/ci/remote profiles.

    Base timeouts increase and target reductions decrease from local to
    remote. Each call returns fresh instances in a read-only mapping.
    """
    base_timeouts = {
        Environment.LOCAL: BaseTimeouts(fast=1000, normal=3000, slow=6000),
        Environment.CI: BaseTimeouts(fast=2000, normal=5000, slow=10000),
        Environment.REMOTE: BaseTimeouts(fast=3000, normal=8000, slow=15000),
    }

    profiles = {
        env: SmartTimeoutConfig(
            environment=env,
            base_timeouts=base_timeouts[env],
            progressive_strategy=ProgressiveStrategy(max_wait_ms=MAX_WAIT_BY_ENVIRONMENT[env]),
            performance=PerformanceSettings(
                target_reduction=TARGET_REDUCTION_BY_ENVIRONMENT[env],
                enable_metrics=True,
                log_diagnostics=env == Environment.LOCAL,
            ),
            readiness_scoring=ReadinessScoring(),
        )
        for env in Environment
    }
    return MappingProxyType(profiles)


def _load_config_file(config_file: str | Path) -> dict[str, Any]:
    """Load overrides from a YAML file."""
    path = Path(config_file)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    with path.open() as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return data


def load_smart_timeout_config(
    env_prefix: str = "SMARTWAIT_",
    environ: Mapping[str, str] | None = None,
    config_file: str | Path | None = None,
    defaults: SmartTimeoutConfig | None = None,
) -> SmartTimeoutConfig:
    """
    Load smart timeout configuration from a YAML file and environment variables.

    Environment variables win over the file. All are optional:
    - SMARTWAIT_ENVIRONMENT: local/ci/remote (skips detection)
    - SMARTWAIT_MAX_WAIT_MS: Readiness wall-clock budget
    - SMARTWAIT_CHECK_INTERVAL_MS: Initial poll interval
    - SMARTWAIT_MAX_CHECKS: Maximum readiness polls
    - SMARTWAIT_BACKOFF_FACTOR: Poll interval multiplier
    - SMARTWAIT_ENABLE_METRICS: Enable/disable metrics
    - SMARTWAIT_LOG_DIAGNOSTICS: Enable/disable diagnostic logs
    - SMARTWAIT_ADAPTIVE_SCORING: Enable/disable adaptive bonuses

    Args:
        env_prefix: Prefix for environment variables
        environ: Environment mapping (defaults to os.environ)
        config_file: Optional YAML file with one mapping per config group
        defaults: Config to use as base (built from the environment if omitted)

    Returns:
        Loaded and validated SmartTimeoutConfig
    """
    env = os.environ if environ is None else environ

    def get_raw(key: str) -> str | None:
        return env.get(f"{env_prefix}{key}")

    def get_int(key: str) -> int | None:
        value = get_raw(key)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid integer value for config", key=key, value=value)
            return None

    def get_float(key: str) -> float | None:
        value = get_raw(key)
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            logger.warning("Invalid float value for config", key=key, value=value)
            return None

    def get_bool(key: str) -> bool | None:
        value = get_raw(key)
        if value is None:
            return None
        return value.lower() in ("true", "1", "yes", "on")

    environment: Environment | None = None
    env_name = get_raw("ENVIRONMENT")
    if env_name:
        try:
            environment = Environment(env_name.lower())
        except ValueError:
            logger.warning("Invalid environment for config", value=env_name)

    base = defaults or create_default_config(environment, environ=env)

    file_config = _load_config_file(config_file) if config_file else {}
    if file_config:
        base = merge_config(
            base,
            environment=file_config.get("environment"),
            base_timeouts=file_config.get("base_timeouts"),
            progressive_strategy=file_config.get("progressive_strategy"),
            performance=file_config.get("performance"),
            readiness_scoring=file_config.get("readiness_scoring"),
        )

    progressive = {
        key: value
        for key, value in {
            "max_wait_ms": get_int("MAX_WAIT_MS"),
            "check_interval_ms": get_int("CHECK_INTERVAL_MS"),
            "max_checks": get_int("MAX_CHECKS"),
            "backoff_factor": get_float("BACKOFF_FACTOR"),
        }.items()
        if value is not None
    }
    performance = {
        key: value
        for key, value in {
            "enable_metrics": get_bool("ENABLE_METRICS"),
            "log_diagnostics": get_bool("LOG_DIAGNOSTICS"),
        }.items()
        if value is not None
    }
    scoring = {}
    adaptive = get_bool("ADAPTIVE_SCORING")
    if adaptive is not None:
        scoring["adaptive_scoring"] = adaptive

    return merge_config(
        base,
        environment=environment,
        progressive_strategy=progressive or None,
        performance=performance or None,
        readiness_scoring=scoring or None,
    )
