"""Pytest fixtures for SmartWait tests."""

from __future__ import annotations

import tempfile
from collections.abc import Generator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from smartwait.recovery.types import TestConfig, TestMode
from smartwait.timeouts.config import SmartTimeoutConfig, create_default_config, merge_config
from smartwait.timeouts.environment import Environment


class FakePage:
    """Page double answering ``evaluate`` from a script table."""

    def __init__(
        self,
        responses: Mapping[str, Any] | None = None,
        viewport: Mapping[str, int] | None = None,
        default: Any = True,
    ) -> None:
        self.responses = dict(responses or {})
        self.default = default
        self._viewport = dict(viewport) if viewport is not None else {"width": 1280, "height": 720}
        self.calls: list[tuple[str, Any]] = []

    @property
    def viewport_size(self) -> Mapping[str, int] | None:
        return self._viewport

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        self.calls.append((expression, arg))
        return self.responses.get(expression, self.default)


@dataclass
class FakeDataContext:
    """In-memory data context."""

    mode: TestMode
    test_data: Any = field(default_factory=lambda: {"customers": [{"id": 1}]})
    connection_info: Mapping[str, Any] = field(default_factory=lambda: {"host": "db.test"})
    metadata: Mapping[str, Any] = field(default_factory=dict)
    cleaned_up: bool = False

    async def cleanup(self) -> None:
        self.cleaned_up = True


class FakeContextFactory:
    """Data context factory recording the modes it was asked for."""

    def __init__(self, fail_modes: tuple[TestMode, ...] = ()) -> None:
        self.fail_modes = fail_modes
        self.created: list[tuple[TestMode, TestConfig]] = []

    async def create_context(self, mode: TestMode, config: TestConfig) -> FakeDataContext:
        self.created.append((mode, config))
        if mode in self.fail_modes:
            raise RuntimeError(f"cannot create {mode} context")
        return FakeDataContext(mode=mode)


def fast_config(environment: Environment = Environment.LOCAL, **overrides: Any) -> SmartTimeoutConfig:
    """Default config with near-zero polling delays."""
    base = create_default_config(environment, environ={})
    progressive = {
        "initial_wait_ms": 0,
        "check_interval_ms": 1,
        "max_wait_ms": 2000,
        "max_checks": 5,
        **overrides.pop("progressive_strategy", {}),
    }
    return merge_config(base, progressive_strategy=progressive, **overrides)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test artifacts."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def page() -> FakePage:
    """Desktop page on which every check passes."""
    return FakePage()


@pytest.fixture
def local_config() -> SmartTimeoutConfig:
    """Local environment config with fast polling."""
    return fast_config(Environment.LOCAL)


@pytest.fixture
def context_factory() -> FakeContextFactory:
    return FakeContextFactory()


@pytest.fixture
def production_config() -> TestConfig:
    return TestConfig(mode=TestMode.PRODUCTION, tags=("smoke",))
