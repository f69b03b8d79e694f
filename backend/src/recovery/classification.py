"""
Keyword classification of raw exceptions into test errors.

The rules are ordered tables: the first rule whose keywords appear in
the lowercased message (or exception type name, for connection errors)
decides the category.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

from smartwait.recovery.errors import ErrorCategory, ErrorContext, ErrorSeverity, TestError
from smartwait.recovery.types import DataContext, TestMode

CATEGORY_RULES: tuple[tuple[tuple[str, ...], ErrorCategory], ...] = (
    (("connection", "econnrefused"), ErrorCategory.DATABASE_CONNECTION),
    (("network", "timeout", "fetch"), ErrorCategory.NETWORK),
    (("context", "data", "setup"), ErrorCategory.DATA_CONTEXT),
    (("cleanup", "teardown"), ErrorCategory.CLEANUP),
    (("mode", "detection"), ErrorCategory.MODE_DETECTION),
    (("validation", "invalid"), ErrorCategory.VALIDATION),
)

CRITICAL_KEYWORDS: tuple[str, ...] = ("critical", "fatal")
HIGH_SEVERITY_KEYWORDS: tuple[str, ...] = ("failed to",)

RETRYABLE_KEYWORDS: tuple[str, ...] = (
    "timeout",
    "connection",
    "network",
    "temporary",
    "transient",
    "econnrefused",
    "enotfound",
)


def _contains(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def classify_error(error: BaseException) -> ErrorCategory:
    """Assign a category to a raw exception. Defaults to test_execution."""
    message = str(error).lower()
    type_name = type(error).__name__.lower()

    for keywords, category in CATEGORY_RULES:
        if _contains(message, keywords):
            return category
        if category == ErrorCategory.DATABASE_CONNECTION and "connection" in type_name:
            return category
    return ErrorCategory.TEST_EXECUTION


def determine_severity(error: BaseException, category: ErrorCategory) -> ErrorSeverity:
    """Severity from message keywords and category. Defaults to medium."""
    message = str(error).lower()

    if _contains(message, CRITICAL_KEYWORDS) or category == ErrorCategory.CLEANUP:
        return ErrorSeverity.CRITICAL
    if category in (ErrorCategory.DATABASE_CONNECTION, ErrorCategory.DATA_CONTEXT):
        return ErrorSeverity.HIGH
    if _contains(message, HIGH_SEVERITY_KEYWORDS):
        return ErrorSeverity.HIGH
    return ErrorSeverity.MEDIUM


def is_retryable_error(error: BaseException) -> bool:
    """Transient-looking failures are retryable."""
    return _contains(str(error).lower(), RETRYABLE_KEYWORDS)


def requires_cleanup(error: BaseException, mode: TestMode) -> bool:
    """Data failures always need cleanup; database failures only in isolated mode."""
    message = str(error).lower()
    if _contains(message, ("context", "data")):
        return True
    return mode == TestMode.ISOLATED and "database" in message


def ensure_test_error(
    error: BaseException,
    test_id: str,
    test_name: str,
    mode: TestMode,
    *,
    data_context: DataContext | None = None,
    tags: Sequence[str] = (),
) -> TestError:
    """
    Convert a raw exception into a TestError.

    TestErrors pass through unchanged. Other exceptions are classified by
    message and keep a reference to the original error.
    """
    if isinstance(error, TestError):
        return error

    category = classify_error(error)
    additional_info: dict[str, Any] = {
        "original_error_type": type(error).__name__,
        "tags": list(tags),
    }
    context = ErrorContext(
        test_id=test_id,
        test_name=test_name,
        mode=mode,
        data_context=data_context,
        environment={
            "NODE_ENV": os.environ.get("NODE_ENV"),
            "TEST_MODE": os.environ.get("TEST_MODE"),
        },
        additional_info=additional_info,
    )
    return TestError(
        str(error) or type(error).__name__,
        category,
        determine_severity(error, category),
        context,
        retryable=is_retryable_error(error),
        cleanup_required=requires_cleanup(error, mode),
        original_error=error,
    )
