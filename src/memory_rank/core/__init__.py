"""
Core module for memory-rank.

Provides:
- Unified exception hierarchy
- Timeout/cancellation boundary for optional external calls
- Retry helper for transient upstream failures
"""

from .exceptions import (
    # Base
    MemoryRankError,
    ErrorContext,
    ErrorSeverity,
    ErrorCategory,
    # Input errors
    InputError,
    # Upstream errors
    UpstreamError,
    UpstreamTimeoutError,
    UpstreamCancelledError,
    # Configuration errors
    ConfigurationError,
    InvalidOptionError,
    # Storage errors
    LearningStoreError,
    # Utilities
    is_retryable_error,
    get_retry_delay,
)

from .async_utils import (
    async_retry,
    bounded_call,
    timeout_with_fallback,
)

__all__ = [
    "MemoryRankError",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorCategory",
    "InputError",
    "UpstreamError",
    "UpstreamTimeoutError",
    "UpstreamCancelledError",
    "ConfigurationError",
    "InvalidOptionError",
    "LearningStoreError",
    "is_retryable_error",
    "get_retry_delay",
    "async_retry",
    "bounded_call",
    "timeout_with_fallback",
]
