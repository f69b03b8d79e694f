"""
Test-data collaborator types.

Test modes, the data context protocol consumed by recovery, and the
test configuration loaded from TEST_* environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog

logger = structlog.get_logger(__name__)

_MISSING = object()

DEFAULT_BACKUP_PATH = ".smartwait/test-data/isolated/"


class TestMode(StrEnum):
    """Where a test gets its data from."""

    __test__ = False

    ISOLATED = "isolated"
    """Restored local database snapshot."""

    PRODUCTION = "production"
    """Prefixed test records in the live system."""

    DUAL = "dual"
    """Runs in both modes."""


class ConfigValidationError(ValueError):
    """Raised when test configuration values are invalid."""

    def __init__(self, message: str, field: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.field = field
        self.value = value


@runtime_checkable
class DataContext(Protocol):
    """Live test-data context for one test."""

    mode: TestMode
    test_data: Any
    connection_info: Mapping[str, Any]
    metadata: Mapping[str, Any]

    async def cleanup(self) -> None: ...


@dataclass(frozen=True, slots=True)
class DatabaseConfig:
    """Connection settings for isolated-mode databases."""

    connection_string: str = "sqlite://test.db"
    backup_path: str = DEFAULT_BACKUP_PATH
    restore_timeout_ms: int = 60000


@dataclass(frozen=True, slots=True)
class TestConfig:
    """Resolved configuration for a test run."""

    __test__ = False

    mode: TestMode = TestMode.ISOLATED
    tags: tuple[str, ...] = ()
    retries: int = 3
    timeout_ms: int = 30000
    database_config: DatabaseConfig | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class DataContextFactory(Protocol):
    """Builds data contexts for a mode."""

    async def create_context(self, mode: TestMode, config: TestConfig) -> DataContext: ...


DEFAULT_TEST_CONFIG: Mapping[str, Any] = {
    "mode": TestMode.ISOLATED,
    "tags": (),
    "retries": 3,
    "timeout_ms": 30000,
}


def _load_test_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}

    mode = env.get("TEST_MODE")
    if mode:
        try:
            values["mode"] = TestMode(mode.lower())
        except ValueError as e:
            raise ConfigValidationError(
                f"Invalid TEST_MODE value: {mode}. Valid values are: "
                f"{', '.join(m.value for m in TestMode)}",
                "TEST_MODE",
                mode,
            ) from e

    timeout = env.get("TEST_TIMEOUT")
    if timeout:
        try:
            timeout_value = int(timeout)
        except ValueError:
            timeout_value = 0
        if timeout_value <= 0:
            raise ConfigValidationError(
                f"Invalid TEST_TIMEOUT value: {timeout}. Must be a positive number",
                "TEST_TIMEOUT",
                timeout,
            )
        values["timeout_ms"] = timeout_value

    retries = env.get("TEST_RETRIES")
    if retries:
        try:
            retries_value = int(retries)
        except ValueError:
            retries_value = -1
        if retries_value < 0:
            raise ConfigValidationError(
                f"Invalid TEST_RETRIES value: {retries}. Must be a non-negative number",
                "TEST_RETRIES",
                retries,
            )
        values["retries"] = retries_value

    tags = env.get("TEST_TAGS")
    if tags:
        values["tags"] = tuple(tag.strip() for tag in tags.split(",") if tag.strip())

    database_url = env.get("TEST_DATABASE_URL")
    if database_url:
        values["database_config"] = DatabaseConfig(
            connection_string=database_url,
            backup_path=env.get("TEST_DATABASE_BACKUP_PATH", DEFAULT_BACKUP_PATH),
        )

    return values


def load_test_config(
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> TestConfig:
    """
    Load test configuration from defaults, TEST_* variables and overrides.

    Later sources win. An override that explicitly sets ``mode`` to None
    suppresses the defaults, so the mode must then come from TEST_MODE.

    Raises:
        ConfigValidationError: On invalid environment values or a missing mode
    """
    env = os.environ if environ is None else environ
    overrides = dict(overrides or {})
    env_values = _load_test_env(env)

    if "mode" in overrides and overrides["mode"] is None:
        overrides.pop("mode")
        merged = {**env_values, **overrides}
    else:
        merged = {**DEFAULT_TEST_CONFIG, **env_values, **overrides}

    mode = merged.pop("mode", _MISSING)
    if mode is _MISSING or mode is None:
        raise ConfigValidationError("Test mode is required", "mode")
    try:
        mode = TestMode(mode)
    except ValueError as e:
        raise ConfigValidationError(f"Invalid test mode: {mode}", "mode", mode) from e

    timeout_ms = merged.pop("timeout_ms", DEFAULT_TEST_CONFIG["timeout_ms"])
    if not isinstance(timeout_ms, int) or timeout_ms <= 0:
        raise ConfigValidationError("Timeout must be a positive number", "timeout_ms", timeout_ms)

    retries = merged.pop("retries", DEFAULT_TEST_CONFIG["retries"])
    if not isinstance(retries, int) or retries < 0:
        raise ConfigValidationError("Retries must be a non-negative number", "retries", retries)

    tags = merged.pop("tags", ())
    if isinstance(tags, str) or not all(isinstance(tag, str) for tag in tags):
        raise ConfigValidationError("Tags must be a list of strings", "tags", tags)

    config = TestConfig(
        mode=mode,
        tags=tuple(tags),
        retries=retries,
        timeout_ms=timeout_ms,
        database_config=merged.pop("database_config", None),
        extra=merged,
    )
    logger.debug("Loaded test config", mode=str(config.mode), tags=list(config.tags))
    return config
