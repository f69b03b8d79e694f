"""
Standard readiness indicators for single-page applications.

Each factory returns a ReadinessIndicator whose check evaluates a small
DOM predicate in the page.
"""

from __future__ import annotations

from typing import Any

from smartwait.timeouts.environment import ViewportType
from smartwait.timeouts.indicators import (
    PageLike,
    ReadinessIndicator,
    create_readiness_indicator,
)

COMPONENT_INITIALIZED_RATIO = 0.8

DOM_READY_JS = """
() => document.readyState === 'complete' || document.readyState === 'interactive'
"""

FRAMEWORK_JS = """
() => {
  if (window.React || window.__REACT_DEVTOOLS_GLOBAL_HOOK__ ||
      document.querySelector('[data-reactroot]') ||
      document.querySelector('[data-react-checksum]')) {
    return 'React';
  }
  if (window.Vue || document.querySelector('[data-v-app]') ||
      document.querySelector('.v-application')) {
    return 'Vue';
  }
  if (window.ng || window.angular || document.querySelector('[ng-app]') ||
      document.querySelector('[data-ng-app]') || document.querySelector('app-root') ||
      document.querySelector('[ng-version]')) {
    return 'Angular';
  }
  return null;
}
"""

COMPONENTS_JS = """
() => {
  const selectors = [
    '[data-component]', '[data-react-component]', '[data-vue-component]',
    '[data-ng-component]', '.component', '[class*="component"]', '[id*="component"]'
  ];
  let total = 0;
  let initialized = 0;
  for (const selector of selectors) {
    for (const el of document.querySelectorAll(selector)) {
      total += 1;
      if (el.children.length > 0 || (el.textContent || '').trim() ||
          el.classList.length > 1 || el.hasAttribute('data-initialized')) {
        initialized += 1;
      }
    }
  }
  return { total, initialized };
}
"""

NAVIGATION_JS = """
() => {
  const selectors = ['nav', '[role="navigation"]', '.navigation', '.navbar', '.nav-menu', '.main-nav'];
  return selectors.some((selector) => {
    const el = document.querySelector(selector);
    return !!el && (el.children.length > 0 || !!(el.textContent || '').trim());
  });
}
"""

VISIBLE_LOADERS_JS = """
(selectors) => {
  const isVisible = (el) => el.offsetParent !== null && !el.hidden &&
    getComputedStyle(el).display !== 'none';
  return Array.from(document.querySelectorAll(selectors.join(','))).filter(isVisible).length;
}
"""

ELEMENT_VISIBLE_JS = """
(selector) => {
  const el = document.querySelector(selector);
  return !!el && el.offsetParent !== null && getComputedStyle(el).visibility !== 'hidden';
}
"""

MOBILE_NAV_JS = """
() => {
  const selectors = ['.mobile-nav', '.hamburger', '[aria-label*="menu" i]', 'button.navbar-toggler',
                     '[data-testid*="mobile-menu"]', 'nav'];
  return selectors.some((selector) => {
    const el = document.querySelector(selector);
    return !!el && el.offsetParent !== null && getComputedStyle(el).display !== 'none';
  });
}
"""

DATA_LOADER_SELECTORS: tuple[str, ...] = (
    ".loading",
    ".spinner",
    ".loader",
    '[data-loading="true"]',
    ".skeleton",
    ".placeholder",
)

NETWORK_LOADER_SELECTORS: tuple[str, ...] = (
    ".loading",
    ".spinner",
    ".loader",
    '[data-loading="true"]',
)


async def _evaluate_bool(page: PageLike, expression: str, arg: Any = None) -> bool:
    return bool(await page.evaluate(expression, arg))


async def _no_visible_loaders(page: PageLike, selectors: tuple[str, ...]) -> bool:
    visible = await page.evaluate(VISIBLE_LOADERS_JS, list(selectors))
    return int(visible or 0) == 0


async def _components_initialized(page: PageLike) -> bool:
    state = await page.evaluate(COMPONENTS_JS) or {}
    total = int(state.get("total", 0))
    if total == 0:
        return True
    return int(state.get("initialized", 0)) / total >= COMPONENT_INITIALIZED_RATIO


def dom_ready_indicator(weight: float = 0.15, required: bool = True) -> ReadinessIndicator:
    """Document has reached interactive or complete."""
    return create_readiness_indicator(
        "dom_ready",
        "Document readyState is interactive or complete",
        lambda page: _evaluate_bool(page, DOM_READY_JS),
        timeout_ms=1000,
        required=required,
        weight=weight,
    )


def framework_indicator(weight: float = 0.20, required: bool = False) -> ReadinessIndicator:
    """A React, Vue or Angular runtime is present."""
    return create_readiness_indicator(
        "framework_detected",
        "JavaScript framework (React, Vue or Angular) detected",
        lambda page: _evaluate_bool(page, FRAMEWORK_JS),
        timeout_ms=1000,
        required=required,
        weight=weight,
    )


def components_indicator(weight: float = 0.25, required: bool = False) -> ReadinessIndicator:
    """Most component nodes have content, or the page has none."""
    return create_readiness_indicator(
        "components_initialized",
        "At least 80% of component nodes are populated",
        _components_initialized,
        timeout_ms=2000,
        required=required,
        weight=weight,
    )


def navigation_indicator(weight: float = 0.20, required: bool = True) -> ReadinessIndicator:
    """A navigation landmark is rendered with content."""
    return create_readiness_indicator(
        "navigation_rendered",
        "Navigation element rendered with content",
        lambda page: _evaluate_bool(page, NAVIGATION_JS),
        timeout_ms=2000,
        required=required,
        weight=weight,
    )


def data_loaded_indicator(weight: float = 0.15, required: bool = False) -> ReadinessIndicator:
    """No loading placeholder is visible."""
    return create_readiness_indicator(
        "data_loaded",
        "No visible loaders, spinners or skeletons",
        lambda page: _no_visible_loaders(page, DATA_LOADER_SELECTORS),
        timeout_ms=3000,
        required=required,
        weight=weight,
    )


def network_quiet_indicator(weight: float = 0.05, required: bool = False) -> ReadinessIndicator:
    """No network activity indicator is visible."""
    return create_readiness_indicator(
        "network_quiet",
        "No visible network activity indicators",
        lambda page: _no_visible_loaders(page, NETWORK_LOADER_SELECTORS),
        timeout_ms=1000,
        required=required,
        weight=weight,
    )


def element_visible_indicator(
    selector: str,
    *,
    name: str | None = None,
    weight: float = 0.5,
    required: bool = False,
    timeout_ms: int = 2000,
    viewport: ViewportType | str = ViewportType.ALL,
) -> ReadinessIndicator:
    """Element matching a CSS selector is visible."""
    return create_readiness_indicator(
        name or f"visible:{selector}",
        f"Element {selector} is visible",
        lambda page: _evaluate_bool(page, ELEMENT_VISIBLE_JS, selector),
        timeout_ms=timeout_ms,
        required=required,
        weight=weight,
        viewport=viewport,
    )


def mobile_navigation_indicator(weight: float = 0.2, required: bool = False) -> ReadinessIndicator:
    """Mobile menu trigger is visible. Only applies to mobile viewports."""
    return create_readiness_indicator(
        "mobile_navigation",
        "Mobile navigation trigger is visible",
        lambda page: _evaluate_bool(page, MOBILE_NAV_JS),
        timeout_ms=2000,
        required=required,
        weight=weight,
        viewport=ViewportType.MOBILE,
    )


def create_spa_indicators() -> list[ReadinessIndicator]:
    """
    Default indicator set for a single-page application.

    DOM readiness and navigation are required; the remaining indicators
    only contribute to the score.
    """
    return [
        dom_ready_indicator(),
        framework_indicator(),
        components_indicator(),
        navigation_indicator(),
        data_loaded_indicator(),
        network_quiet_indicator(),
    ]
