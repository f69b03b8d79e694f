"""
Error reporting for test failures.

Builds a formatted report for each TestError with recommendations derived
from its category, severity and recovery outcome, tracks related errors
by category and mode, and writes reports to the log and optionally to
JSON files.
"""

from __future__ import annotations

import json
import uuid
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from smartwait.recovery.errors import ErrorCategory, ErrorSeverity, TestError
from smartwait.recovery.types import TestMode

if TYPE_CHECKING:
    from smartwait.recovery.orchestrator import RecoveryResult

logger = structlog.get_logger(__name__)

SEPARATOR = "=" * 80
PATTERN_HISTORY = 50
RECURRING_THRESHOLD = 2

CATEGORY_RECOMMENDATIONS: dict[ErrorCategory, tuple[str, ...]] = {
    ErrorCategory.MODE_DETECTION: (
        "Set TEST_MODE explicitly (isolated, production, or dual)",
        "Add mode tags (@isolated, @production, @dual) to the test scenarios",
    ),
    ErrorCategory.DATA_CONTEXT: (
        "Verify database connectivity and permissions",
        "Check that test data exists and is accessible",
    ),
    ErrorCategory.DATABASE_CONNECTION: (
        "Check network connectivity to the database host",
        "Verify database credentials and connection string",
        "Ensure the database service is running and accessible",
    ),
    ErrorCategory.NETWORK: (
        "Check network connectivity and DNS resolution",
        "Consider increasing network timeout values",
        "Retry the operation after a brief delay",
    ),
    ErrorCategory.TEST_EXECUTION: (
        "Review test data setup and validation",
        "Try refreshing test data and retrying",
    ),
    ErrorCategory.CLEANUP: (
        "Manually verify and clean up test resources",
        "Check cleanup logs for additional details",
        "Monitor for resource leaks in subsequent tests",
    ),
}

PRODUCTION_RECOMMENDATIONS: dict[ErrorCategory, str] = {
    ErrorCategory.DATA_CONTEXT: "Consider falling back to isolated mode for this test",
    ErrorCategory.TEST_EXECUTION: "Consider running in isolated mode to isolate the issue",
}


class ReportingConfig(BaseModel):
    """Reporter output settings."""

    model_config = ConfigDict(frozen=True)

    enable_log_reporting: bool = True
    enable_file_reporting: bool = False
    reporting_level: ErrorSeverity = ErrorSeverity.LOW
    include_stack_trace: bool = True
    include_environment: bool = True
    include_recovery_actions: bool = True
    output_directory: Path | None = None
    max_reports: int = Field(default=1000, ge=1)


@dataclass(slots=True)
class ErrorReport:
    """One reported error."""

    id: str
    timestamp: datetime
    error: TestError
    formatted_message: str
    recommendations: list[str]
    related_errors: int
    recovery_result: RecoveryResult | None = None

    def to_dict(self) -> dict[str, Any]:
        recovery = self.recovery_result
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error.to_dict(),
            "recovery_result": (
                {
                    "success": recovery.success,
                    "final_mode": str(recovery.final_mode) if recovery.final_mode else None,
                    "attempts_used": recovery.attempts_used,
                    "recovery_actions": list(recovery.recovery_actions),
                    "warnings": list(recovery.warnings),
                }
                if recovery is not None
                else None
            ),
            "recommendations": self.recommendations,
            "related_errors_count": self.related_errors,
        }


@dataclass(slots=True)
class ErrorSummary:
    """Aggregates over the stored reports."""

    total_errors: int = 0
    errors_by_category: dict[str, int] = field(default_factory=dict)
    errors_by_severity: dict[str, int] = field(default_factory=dict)
    errors_by_mode: dict[str, int] = field(default_factory=dict)
    recovery_success_rate: float = 0.0
    most_common_errors: list[tuple[str, int]] = field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_errors": self.total_errors,
            "errors_by_category": self.errors_by_category,
            "errors_by_severity": self.errors_by_severity,
            "errors_by_mode": self.errors_by_mode,
            "recovery_success_rate": round(self.recovery_success_rate, 4),
            "most_common_errors": [
                {"error": error, "count": count} for error, count in self.most_common_errors
            ],
            "time_range": {
                "start": self.start.isoformat() if self.start else None,
                "end": self.end.isoformat() if self.end else None,
            },
        }


class ErrorReporter:
    """
    Collects and outputs error reports.

    Usage:
        reporter = ErrorReporter(ReportingConfig(reporting_level=ErrorSeverity.HIGH))
        report_id = await reporter.report_error(error, recovery_result)
    """

    def __init__(self, config: ReportingConfig | None = None) -> None:
        self.config = config or ReportingConfig()
        self._reports: dict[str, ErrorReport] = {}
        self._patterns: dict[str, deque[TestError]] = {}
        self._log = logger.bind(component="error_reporter")

    @staticmethod
    def _pattern_key(error: TestError) -> str:
        return f"{error.category}:{error.context.mode}"

    def related_errors(self, error: TestError) -> list[TestError]:
        """Earlier errors with the same category and mode."""
        return list(self._patterns.get(self._pattern_key(error), ()))

    def should_report(self, severity: ErrorSeverity) -> bool:
        return severity.rank >= self.config.reporting_level.rank

    async def report_error(
        self,
        error: TestError,
        recovery_result: RecoveryResult | None = None,
    ) -> str:
        """
        Report an error.

        Args:
            error: The error to report
            recovery_result: Outcome of recovery, when it was attempted

        Returns:
            Report id
        """
        report_id = f"error-{uuid.uuid4().hex[:12]}"
        related = self.related_errors(error)
        report = ErrorReport(
            id=report_id,
            timestamp=datetime.now(UTC),
            error=error,
            formatted_message=self.format_error(error),
            recommendations=self.recommendations(error, recovery_result, related),
            related_errors=len(related),
            recovery_result=recovery_result,
        )

        self._store(report)
        self._track_pattern(error)

        if self.should_report(error.severity):
            self._output(report)

        return report_id

    def _store(self, report: ErrorReport) -> None:
        self._reports[report.id] = report
        while len(self._reports) > self.config.max_reports:
            del self._reports[next(iter(self._reports))]

    def _track_pattern(self, error: TestError) -> None:
        key = self._pattern_key(error)
        self._patterns.setdefault(key, deque(maxlen=PATTERN_HISTORY)).append(error)

    def format_error(self, error: TestError) -> str:
        """Multi-line text report for an error."""
        ctx = error.context
        lines = [
            SEPARATOR,
            "DUAL-MODE TEST ERROR REPORT",
            SEPARATOR,
            f"Error: {error.message}",
            f"Category: {error.category.value.replace('_', ' ').upper()}",
            f"Severity: {error.severity.value.upper()}",
            f"Mode: {ctx.mode.value.upper()}",
            f"Test: {ctx.test_name} ({ctx.test_id})",
            f"Timestamp: {ctx.timestamp.isoformat()}",
            "",
        ]

        if self.config.include_environment and ctx.environment:
            lines.append("Environment:")
            lines.extend(f"  {key}: {value}" for key, value in ctx.environment.items())
            lines.append("")

        if ctx.additional_info:
            lines.append("Additional Context:")
            for key, value in ctx.additional_info.items():
                rendered = json.dumps(value, indent=2, default=str).replace("\n", "\n    ")
                lines.append(f"  {key}: {rendered}")
            lines.append("")

        if ctx.data_context is not None:
            data = ctx.data_context
            lines.append("Data Context:")
            lines.append(f"  Mode: {data.mode}")
            lines.append(f"  Connection: {data.connection_info.get('host', 'unknown')}")
            lines.append("")

        if self.config.include_recovery_actions and error.recovery_actions:
            lines.append("Available Recovery Actions:")
            for index, action in enumerate(error.recovery_actions, start=1):
                lines.append(f"  {index}. {action.description}")
                lines.append(f"     Action: {action.action}")
                lines.append(f"     Automated: {'Yes' if action.automated else 'No'}")
                if action.estimated_time:
                    lines.append(f"     Estimated Time: {action.estimated_time}")
                if action.prerequisites:
                    lines.append(f"     Prerequisites: {', '.join(action.prerequisites)}")
                lines.append("")

        if self.config.include_stack_trace and ctx.stack_trace:
            lines.append("Stack Trace:")
            lines.append(ctx.stack_trace.rstrip())
            lines.append("")

        if error.original_error is not None:
            lines.append("Original Error:")
            lines.append(f"  Name: {type(error.original_error).__name__}")
            lines.append(f"  Message: {error.original_error}")
            lines.append("")

        lines.append(SEPARATOR)
        return "\n".join(lines)

    def recommendations(
        self,
        error: TestError,
        recovery_result: RecoveryResult | None = None,
        related: list[TestError] | None = None,
    ) -> list[str]:
        """Suggested next steps for an error."""
        result: list[str] = []
        mode = error.context.mode

        if recovery_result is not None:
            if recovery_result.success:
                result.append(
                    "Error was recovered using: " + ", ".join(recovery_result.recovery_actions)
                )
                if recovery_result.final_mode and recovery_result.final_mode != mode:
                    result.append(
                        f"Test continued in {recovery_result.final_mode} mode instead of {mode}"
                    )
            else:
                result.append(f"Recovery failed after {recovery_result.attempts_used} attempts")
                if recovery_result.warnings:
                    result.append("Recovery warnings: " + "; ".join(recovery_result.warnings))

        result.extend(CATEGORY_RECOMMENDATIONS.get(error.category, ()))
        if mode == TestMode.PRODUCTION and error.category in PRODUCTION_RECOMMENDATIONS:
            result.append(PRODUCTION_RECOMMENDATIONS[error.category])

        if error.severity == ErrorSeverity.CRITICAL:
            result.append("Critical error: consider stopping test execution")
            result.append("Notify the development team immediately")
        elif error.severity == ErrorSeverity.HIGH:
            result.append("This error may affect test reliability; investigate promptly")

        if mode == TestMode.PRODUCTION and error.retryable:
            result.append("Consider automatic fallback to isolated mode")

        if related is None:
            related = self.related_errors(error)
        if len(related) > RECURRING_THRESHOLD:
            result.append(
                f"This error has occurred {len(related)} times; investigate the root cause"
            )

        return result

    def _output(self, report: ErrorReport) -> None:
        if self.config.enable_log_reporting:
            severity = report.error.severity
            if severity.rank >= ErrorSeverity.HIGH.rank:
                log = self._log.error
            elif severity == ErrorSeverity.MEDIUM:
                log = self._log.warning
            else:
                log = self._log.info
            log(
                "Test error reported",
                report_id=report.id,
                category=str(report.error.category),
                severity=str(severity),
                report=report.formatted_message,
                recommendations=report.recommendations,
            )

        if self.config.enable_file_reporting and self.config.output_directory is not None:
            self._write_file(report, self.config.output_directory)

    def _write_file(self, report: ErrorReport, directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
            stamp = report.timestamp.strftime("%Y%m%dT%H%M%S")
            path = directory / f"{report.id}-{stamp}.json"
            path.write_text(json.dumps(report.to_dict(), indent=2, default=str))
        except OSError as e:
            self._log.error("Failed to write error report", report_id=report.id, error=str(e))
            return
        self._log.debug("Wrote error report", path=str(path))

    def error_summary(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> ErrorSummary:
        """Counts by category, severity and mode, plus the ten most common errors."""
        reports = [
            r
            for r in self._reports.values()
            if (start is None or r.timestamp >= start) and (end is None or r.timestamp <= end)
        ]
        summary = ErrorSummary(total_errors=len(reports))
        if not reports:
            return summary

        by_category: Counter[str] = Counter()
        by_severity: Counter[str] = Counter()
        by_mode: Counter[str] = Counter()
        messages: Counter[str] = Counter()
        recoveries = 0
        recovered = 0

        for report in reports:
            error = report.error
            by_category[error.category.value] += 1
            by_severity[error.severity.value] += 1
            by_mode[error.context.mode.value] += 1
            messages[f"{error.category}: {error.message}"] += 1
            if report.recovery_result is not None:
                recoveries += 1
                recovered += int(report.recovery_result.success)

        summary.errors_by_category = dict(by_category)
        summary.errors_by_severity = dict(by_severity)
        summary.errors_by_mode = dict(by_mode)
        summary.most_common_errors = messages.most_common(10)
        summary.recovery_success_rate = recovered / recoveries if recoveries else 0.0
        summary.start = min(r.timestamp for r in reports)
        summary.end = max(r.timestamp for r in reports)
        return summary

    def get_report(self, report_id: str) -> ErrorReport | None:
        return self._reports.get(report_id)

    def get_all_reports(self) -> list[ErrorReport]:
        return list(self._reports.values())

    def export_reports(self) -> str:
        """All reports and the summary as a JSON document."""
        return json.dumps(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "total_reports": len(self._reports),
                "reports": [report.to_dict() for report in self._reports.values()],
                "summary": self.error_summary().to_dict(),
            },
            indent=2,
            default=str,
        )

    def clear_reports(self) -> None:
        self._reports.clear()
        self._patterns.clear()
