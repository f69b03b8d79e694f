"""
Environment and viewport classification.

The run environment decides which timeout profile and score threshold
apply. It is derived once from process environment signals.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import StrEnum


class Environment(StrEnum):
    """Where the test run is executing."""

    LOCAL = "local"
    CI = "ci"
    REMOTE = "remote"


class ViewportType(StrEnum):
    """Viewport buckets used to filter readiness indicators."""

    MOBILE = "mobile"
    TABLET = "tablet"
    DESKTOP = "desktop"
    ALL = "all"


MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024

# Variables whose mere presence marks a CI run
CI_PRESENCE_VARS: tuple[str, ...] = (
    "JENKINS_URL",
    "BUILDKITE",
    "CIRCLECI",
    "GITLAB_CI",
    "TF_BUILD",
)

# Variables that mark a CI run when set to "true"
CI_FLAG_VARS: tuple[str, ...] = ("CI", "GITHUB_ACTIONS")

LOCAL_HOST_MARKERS: tuple[str, ...] = ("localhost", "127.0.0.1", "0.0.0.0")


def is_ci(environ: Mapping[str, str]) -> bool:
    """Check whether any CI signal is present."""
    if any(environ.get(var, "").lower() == "true" for var in CI_FLAG_VARS):
        return True
    return any(environ.get(var) for var in CI_PRESENCE_VARS)


def detect_environment(environ: Mapping[str, str] | None = None) -> Environment:
    """
    Classify the run as local, CI or remote.

    Rule order:
    1. Any CI signal -> ci
    2. BASE_URL on a loopback host, or NODE_ENV=development -> local
    3. Otherwise -> remote

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Detected Environment
    """
    env = os.environ if environ is None else environ

    if is_ci(env):
        return Environment.CI

    base_url = env.get("BASE_URL", "")
    if any(marker in base_url for marker in LOCAL_HOST_MARKERS):
        return Environment.LOCAL
    if env.get("NODE_ENV") == "development":
        return Environment.LOCAL

    return Environment.REMOTE


def diagnostics_requested(environ: Mapping[str, str] | None = None) -> bool:
    """Check whether diagnostic logging was requested through the environment."""
    env = os.environ if environ is None else environ
    return env.get("NODE_ENV") == "development" or env.get("DEBUG") == "true"


def detect_viewport_type(viewport: Mapping[str, int] | None) -> ViewportType:
    """Map a viewport size to its bucket. Unknown viewports count as desktop."""
    if not viewport:
        return ViewportType.DESKTOP

    width = viewport.get("width", 0)
    if width <= MOBILE_MAX_WIDTH:
        return ViewportType.MOBILE
    if width <= TABLET_MAX_WIDTH:
        return ViewportType.TABLET
    return ViewportType.DESKTOP
