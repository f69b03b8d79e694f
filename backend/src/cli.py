"""
Command-line interface for SmartWait.

Provides commands for inspecting environment profiles, listing escalation
strategies and retry presets, and probing a page for readiness.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from typing import Any

import structlog

from smartwait import __version__
from smartwait.settings import SmartWaitSettings
from smartwait.timeouts.config import (
    SmartTimeoutConfig,
    create_environment_profiles,
    load_smart_timeout_config,
)
from smartwait.timeouts.environment import Environment
from smartwait.timeouts.escalation import create_escalation_strategies
from smartwait.timeouts.manager import SmartTimeoutManager
from smartwait.timeouts.retry import create_retry_presets

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    from dotenv import load_dotenv

    load_dotenv()

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130
    except Exception as e:
        logger.error("Command failed", error=str(e))
        if args.verbose:
            raise
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="smartwait",
        description="SmartWait - adaptive timeouts and readiness detection for e2e tests",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"smartwait {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    profile_parser = subparsers.add_parser(
        "profile", help="Show the detected environment and its timeout profile"
    )
    profile_parser.add_argument(
        "--environment", "-e",
        choices=[env.value for env in Environment],
        help="Show this environment's profile instead of the detected one",
    )
    profile_parser.add_argument(
        "--config-file",
        help="YAML file with config overrides",
    )
    profile_parser.set_defaults(func=cmd_profile)

    strategies_parser = subparsers.add_parser(
        "strategies", help="List escalation strategies and retry presets"
    )
    strategies_parser.set_defaults(func=cmd_strategies)

    probe_parser = subparsers.add_parser("probe", help="Probe a page for readiness")
    probe_parser.add_argument(
        "url",
        nargs="?",
        help="Page URL (defaults to SMARTWAIT_BASE_URL)",
    )
    probe_parser.add_argument(
        "--headed",
        action="store_true",
        help="Show the browser window",
    )
    probe_parser.add_argument(
        "--config-file",
        help="YAML file with config overrides",
    )
    probe_parser.set_defaults(func=cmd_probe)

    return parser


def configure_logging(verbose: bool) -> None:
    """Configure structured logging."""
    level = "DEBUG" if verbose else "INFO"
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if verbose else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    import logging

    logging.basicConfig(level=getattr(logging, level), stream=sys.stderr)


def _config_file(args: argparse.Namespace, settings: SmartWaitSettings) -> Any:
    return args.config_file or settings.config_file


def cmd_profile(args: argparse.Namespace) -> int:
    """Print the environment profile as JSON."""
    settings = SmartWaitSettings()

    if args.environment:
        config = create_environment_profiles()[Environment(args.environment)]
    else:
        config = load_smart_timeout_config(config_file=_config_file(args, settings))

    output = {
        "environment": config.environment.value,
        "score_threshold": config.score_threshold,
        "config": dataclasses.asdict(config),
    }
    print(json.dumps(output, indent=2, default=str))
    return 0


def cmd_strategies(args: argparse.Namespace) -> int:
    """List escalation strategies and retry presets."""
    strategies = [
        {"key": key, "name": strategy.name, "description": strategy.description}
        for key, strategy in create_escalation_strategies().items()
    ]
    presets = {
        name: [
            {
                "condition": config.condition_type.value,
                "max_retries": config.max_retries,
                "backoff": config.backoff_strategy.value,
                "base_delay_ms": config.base_delay_ms,
                "max_delay_ms": config.max_delay_ms,
            }
            for config in configs
        ]
        for name, configs in create_retry_presets().items()
    }
    print(json.dumps({"escalation_strategies": strategies, "retry_presets": presets}, indent=2))
    return 0


def cmd_probe(args: argparse.Namespace) -> int:
    """Open a page and run the standard readiness indicators."""
    settings = SmartWaitSettings()
    url = args.url or settings.base_url
    if not url:
        print("Error: a URL or SMARTWAIT_BASE_URL is required", file=sys.stderr)
        return 1

    config = load_smart_timeout_config(config_file=_config_file(args, settings))
    headless = settings.headless and not args.headed
    result = asyncio.run(_probe(url, config, settings, headless))

    print(json.dumps(result, indent=2, default=str))
    return 0 if result["ready"] else 1


async def _probe(
    url: str,
    config: SmartTimeoutConfig,
    settings: SmartWaitSettings,
    headless: bool,
) -> dict[str, Any]:
    from playwright.async_api import async_playwright

    manager = SmartTimeoutManager(config)
    logger.info("Probing page", url=url, environment=str(manager.current_environment))

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=headless)
        try:
            page = await browser.new_page(
                viewport={"width": settings.viewport_width, "height": settings.viewport_height}
            )
            await page.goto(url, timeout=settings.navigation_timeout_ms)
            result = await manager.wait_for_readiness(page)
        finally:
            await browser.close()

    return result.to_dict()


if __name__ == "__main__":
    sys.exit(main())
