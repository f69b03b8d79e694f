"""
Timeout escalation strategies.

A strategy decides, after a failed attempt, whether the next attempt
gets a longer timeout and how many attempts the operation may use in
total. Strategies are stateless and shared through an immutable registry.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Protocol, runtime_checkable

import structlog

from smartwait.timeouts.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


@runtime_checkable
class TimeoutEscalationStrategy(Protocol):
    """Policy for growing an operation's timeout after a failure."""

    name: str
    description: str

    def should_escalate(self, error: BaseException, attempt: int, duration_ms: float) -> bool: ...

    def get_next_timeout(self, current_ms: float, attempt: int, error: BaseException) -> float: ...

    def get_max_retries(self, error: BaseException) -> int: ...

    def on_escalation(self, error: BaseException, attempt: int, new_timeout_ms: float) -> None: ...


def message_contains(error: BaseException, keywords: tuple[str, ...]) -> bool:
    """Case-insensitive substring match of any keyword against the error message."""
    message = str(error).lower()
    return any(keyword in message for keyword in keywords)


@dataclass(frozen=True, slots=True)
class KeywordEscalationStrategy:
    """Escalates by a fixed multiplier when the error message mentions a keyword."""

    name: str
    description: str
    keywords: tuple[str, ...]
    multiplier: float
    max_retries: int

    def should_escalate(self, error: BaseException, attempt: int, duration_ms: float) -> bool:
        return message_contains(error, self.keywords)

    def get_next_timeout(self, current_ms: float, attempt: int, error: BaseException) -> float:
        return current_ms * self.multiplier

    def get_max_retries(self, error: BaseException) -> int:
        return self.max_retries

    def on_escalation(self, error: BaseException, attempt: int, new_timeout_ms: float) -> None:
        logger.info(
            "Escalating timeout",
            strategy=self.name,
            attempt=attempt,
            new_timeout_ms=round(new_timeout_ms, 2),
        )


@dataclass(frozen=True, slots=True)
class AdaptiveEscalationStrategy:
    """
    Escalates while failures are early and fast.

    The multiplier grows with the attempt number. Errors that look
    recoverable (network or timeout) get a higher retry ceiling.
    """

    name: str = "adaptive"
    description: str = "Adaptive escalation based on error patterns"
    max_escalating_attempt: int = 6
    max_attempt_duration_ms: float = 5000.0
    base_multiplier: float = 1.5
    multiplier_step: float = 0.2
    recoverable_keywords: tuple[str, ...] = ("network", "timeout")
    recoverable_max_retries: int = 8
    default_max_retries: int = 5

    def should_escalate(self, error: BaseException, attempt: int, duration_ms: float) -> bool:
        return attempt <= self.max_escalating_attempt and duration_ms < self.max_attempt_duration_ms

    def get_next_timeout(self, current_ms: float, attempt: int, error: BaseException) -> float:
        return current_ms * (self.base_multiplier + attempt * self.multiplier_step)

    def get_max_retries(self, error: BaseException) -> int:
        if message_contains(error, self.recoverable_keywords):
            return self.recoverable_max_retries
        return self.default_max_retries

    def on_escalation(self, error: BaseException, attempt: int, new_timeout_ms: float) -> None:
        logger.info(
            "Adaptive escalation",
            attempt=attempt,
            new_timeout_ms=round(new_timeout_ms, 2),
            error=str(error),
        )


def create_escalation_strategies() -> Mapping[str, TimeoutEscalationStrategy]:
    """Build the registry of built-in escalation strategies, keyed like ``network_error``."""
    strategies: dict[str, TimeoutEscalationStrategy] = {
        "network_error": KeywordEscalationStrategy(
            name="network-error",
            description="Escalation for network-related errors",
            keywords=("network", "connection"),
            multiplier=2.5,
            max_retries=8,
        ),
        "element_error": KeywordEscalationStrategy(
            name="element-error",
            description="Escalation for element-related errors",
            keywords=("element", "selector"),
            multiplier=1.8,
            max_retries=6,
        ),
        "browser_error": KeywordEscalationStrategy(
            name="browser-error",
            description="Escalation for browser-related errors",
            keywords=("crash", "disconnected"),
            multiplier=3.0,
            max_retries=4,
        ),
        "timeout_error": KeywordEscalationStrategy(
            name="timeout-error",
            description="Escalation for timeout-related errors",
            keywords=("timeout",),
            multiplier=2.0,
            max_retries=5,
        ),
        "adaptive": AdaptiveEscalationStrategy(),
    }
    return MappingProxyType(strategies)


ESCALATION_STRATEGIES = create_escalation_strategies()


def get_escalation_strategy(name: str) -> TimeoutEscalationStrategy:
    """
    Look up a built-in strategy by registry key or strategy name.

    Raises:
        ConfigurationError: If no strategy has that key or name
    """
    if name in ESCALATION_STRATEGIES:
        return ESCALATION_STRATEGIES[name]
    for strategy in ESCALATION_STRATEGIES.values():
        if strategy.name == name:
            return strategy
    raise ConfigurationError(
        f"Unknown escalation strategy: {name}. "
        f"Available: {', '.join(sorted(ESCALATION_STRATEGIES))}"
    )
