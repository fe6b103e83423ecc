"""
Async Utilities for the optional external calls.

The ranking core is synchronous. The only suspension points are optional
external calls (LLM re-ranking, remote search) and they all go through the
helpers here:

- bounded_call: timeout + caller cancellation, failures mapped onto
  UpstreamError subclasses
- timeout_with_fallback: same boundary, returns a fallback instead of raising
- async_retry: retry transient failures with exponential backoff
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

from .exceptions import (
    UpstreamCancelledError,
    UpstreamError,
    UpstreamTimeoutError,
    get_retry_delay,
    is_retryable_error,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# Retry Decorator
# =============================================================================

def async_retry(
    max_attempts: int = 3,
    retryable_check: Callable[[Exception], bool] = is_retryable_error,
    base_delay: float = 0.5,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for async functions with automatic retry.

    Uses exponential backoff with jitter.

    Example:
        @async_retry(max_attempts=3)
        async def post_prompt(payload: dict) -> dict:
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Exception | None = None

            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    last_error = e

                    if not retryable_check(e):
                        raise

                    if attempt < max_attempts - 1:
                        delay = get_retry_delay(e, attempt, base_delay)
                        logger.warning(
                            f"Retry {attempt + 1}/{max_attempts} for {func.__name__}: "
                            f"{e} (waiting {delay:.1f}s)"
                        )
                        await asyncio.sleep(delay)

            if last_error:
                raise last_error
            raise RuntimeError("Unexpected retry loop exit")

        return wrapper
    return decorator


# =============================================================================
# Timeout / Cancellation Boundary
# =============================================================================

async def bounded_call(
    coro: Awaitable[T],
    *,
    timeout: float,
    operation: str,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """
    Run one external call under a timeout and an optional caller abort signal.

    The call runs in its own task. Whichever happens first wins:
    the call finishes, the timeout expires, or ``cancel_event`` is set.
    In the last two cases the in-flight task is cancelled before returning.

    Args:
        coro: Awaitable performing the external call
        timeout: Timeout in seconds
        operation: Name used in logs and error messages
        cancel_event: Optional event the caller sets to abort

    Returns:
        The call's result

    Raises:
        UpstreamTimeoutError: timeout expired
        UpstreamCancelledError: cancel_event was set first
        UpstreamError: the call itself raised
    """
    task = asyncio.ensure_future(coro)
    waiter: asyncio.Task[bool] | None = None
    if cancel_event is not None:
        waiter = asyncio.create_task(cancel_event.wait())

    try:
        pending: set[asyncio.Future[Any]] = {task}
        if waiter is not None:
            pending.add(waiter)
        done, _ = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)

        if task in done:
            exc = task.exception()
            if exc is None:
                return task.result()
            if isinstance(exc, UpstreamError):
                raise exc
            raise UpstreamError(f"{operation} failed: {exc}", operation=operation) from exc

        if waiter is not None and waiter in done:
            logger.info(f"{operation}: cancelled by caller")
            raise UpstreamCancelledError(operation)

        logger.warning(f"{operation}: timed out after {timeout:.2f}s")
        raise UpstreamTimeoutError(operation, timeout)
    finally:
        for pending_task in (task, waiter):
            if pending_task is not None and not pending_task.done():
                pending_task.cancel()


async def timeout_with_fallback(
    coro: Awaitable[T],
    timeout: float,
    fallback: T | Callable[[], T],
    *,
    operation: str = "external call",
    cancel_event: asyncio.Event | None = None,
) -> tuple[T, UpstreamError | None]:
    """
    Execute coroutine with timeout and fallback.

    Args:
        coro: Coroutine to execute
        timeout: Timeout in seconds
        fallback: Value or callable to return on timeout/failure/cancel
        operation: Name used in logs
        cancel_event: Optional caller abort signal

    Returns:
        (result, None) on success, (fallback, error) otherwise
    """
    try:
        return await bounded_call(coro, timeout=timeout, operation=operation, cancel_event=cancel_event), None
    except UpstreamError as e:
        logger.warning(f"{operation}: falling back to previous stage output ({e})")
        value = fallback() if callable(fallback) else fallback
        return value, e
