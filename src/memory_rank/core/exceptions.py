"""
Unified Exception Hierarchy for memory-rank.

Exception Hierarchy:
    MemoryRankError (base)
    ├── InputError                  (malformed candidate, dropped per item)
    ├── UpstreamError               (optional external call failed)
    │   ├── UpstreamTimeoutError
    │   └── UpstreamCancelledError
    ├── ConfigurationError          (invalid option, fails at load time)
    └── LearningStoreError          (persisted pattern stats unreadable)

Only ConfigurationError is meant to reach the caller of a ranking call.
Everything else is handled at the stage that raised it and degrades the
result instead of failing it.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    WARNING = auto()      # Recoverable, batch continues
    ERROR = auto()        # Stage failed, pipeline degrades
    CRITICAL = auto()     # Cannot continue
    TRANSIENT = auto()    # Temporary, may be retried


class ErrorCategory(Enum):
    """Categories for error classification."""
    INPUT = "input"
    UPSTREAM = "upstream"
    CONFIGURATION = "config"
    STORAGE = "storage"


@dataclass(frozen=True, slots=True)
class ErrorContext:
    """Structured context attached to every MemoryRankError."""
    operation: str | None = None
    input_value: Any = None
    suggestion: str | None = None
    retry_after: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class MemoryRankError(Exception):
    """
    Base exception for all memory-rank errors.

    Provides:
    - Structured error context
    - Severity classification
    - Retry guidance
    """

    __slots__ = ('context', 'severity', 'category', 'retryable')

    def __init__(
        self,
        message: str,
        *,
        context: ErrorContext | None = None,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        category: ErrorCategory = ErrorCategory.UPSTREAM,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.context = context or ErrorContext()
        self.severity = severity
        self.category = category
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "error": str(self),
            "category": self.category.value,
            "severity": self.severity.name.lower(),
            "retryable": self.retryable,
        }
        if self.context.operation:
            result["operation"] = self.context.operation
        if self.context.suggestion:
            result["suggestion"] = self.context.suggestion
        if self.context.retry_after:
            result["retry_after_seconds"] = self.context.retry_after
        return result


# =============================================================================
# Input Errors
# =============================================================================

class InputError(MemoryRankError):
    """Raised when a candidate entry is malformed (e.g. missing id)."""

    def __init__(
        self,
        message: str,
        *,
        value: Any = None,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext(
            operation="parse_candidate",
            input_value=value,
            suggestion="Each candidate needs a non-empty 'id' and a numeric 'score'",
        )
        super().__init__(
            message,
            context=ctx,
            severity=ErrorSeverity.WARNING,
            category=ErrorCategory.INPUT,
            retryable=False,
        )


# =============================================================================
# Upstream Errors
# =============================================================================

class UpstreamError(MemoryRankError):
    """Raised when an optional external call (search, re-rank) fails."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        retryable: bool = True,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context or ErrorContext(operation=operation),
            severity=ErrorSeverity.ERROR,
            category=ErrorCategory.UPSTREAM,
            retryable=retryable,
        )


class UpstreamTimeoutError(UpstreamError):
    """Raised when an external call exceeds its timeout."""

    def __init__(
        self,
        operation: str,
        timeout: float,
        *,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext(
            operation=operation,
            input_value=timeout,
            suggestion="Raise the stage timeout or disable the stage",
        )
        super().__init__(
            f"{operation} timed out after {timeout:.2f}s",
            operation=operation,
            retryable=True,
            context=ctx,
        )
        self.timeout = timeout
        self.severity = ErrorSeverity.TRANSIENT


class UpstreamCancelledError(UpstreamError):
    """Raised when the caller aborts while an external call is in flight."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"{operation} cancelled by caller",
            operation=operation,
            retryable=False,
        )


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(MemoryRankError):
    """Raised for invalid configuration values. Never raised mid-batch."""

    def __init__(
        self,
        message: str,
        *,
        option: str | None = None,
        value: Any = None,
        context: ErrorContext | None = None,
    ) -> None:
        ctx = context or ErrorContext(
            operation="load_config",
            input_value=value,
            metadata={"option": option} if option else {},
        )
        super().__init__(
            message,
            context=ctx,
            severity=ErrorSeverity.CRITICAL,
            category=ErrorCategory.CONFIGURATION,
            retryable=False,
        )
        self.option = option


class InvalidOptionError(ConfigurationError):
    """Raised when a single option value is out of range or mistyped."""

    def __init__(self, option: str, value: Any, expected: str) -> None:
        super().__init__(
            f"Invalid option '{option}': {value!r} (expected {expected})",
            option=option,
            value=value,
            context=ErrorContext(
                operation="load_config",
                input_value=value,
                suggestion=f"Expected {expected}",
                metadata={"option": option},
            ),
        )


# =============================================================================
# Storage Errors
# =============================================================================

class LearningStoreError(MemoryRankError):
    """Raised when the persisted pattern statistics cannot be read or written."""

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        super().__init__(
            message,
            context=context or ErrorContext(operation="learning_store", input_value=path),
            severity=ErrorSeverity.ERROR,
            category=ErrorCategory.STORAGE,
            retryable=False,
        )
        self.path = path


# =============================================================================
# Utilities
# =============================================================================

def is_retryable_error(error: Exception) -> bool:
    """Check if an error should be retried."""
    if isinstance(error, MemoryRankError):
        return error.retryable

    error_str = str(error).lower()
    transient_patterns = [
        "rate limit",
        "too many requests",
        "temporarily unavailable",
        "service unavailable",
        "connection reset",
        "timeout",
    ]
    return any(pattern in error_str for pattern in transient_patterns)


def get_retry_delay(error: Exception, attempt: int, base_delay: float = 0.5) -> float:
    """
    Calculate retry delay with exponential backoff.

    Args:
        error: The exception that occurred
        attempt: Current attempt number (0-based)
        base_delay: Delay for the first retry in seconds

    Returns:
        Delay in seconds before next retry
    """
    if isinstance(error, MemoryRankError) and error.context.retry_after:
        base_delay = error.context.retry_after

    delay = base_delay * (2 ** attempt)
    jitter = random.uniform(0, 0.1 * delay)

    # Cap at 10 seconds
    return min(delay + jitter, 10.0)
