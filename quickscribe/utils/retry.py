"""Retry utility with exponential backoff and jitter.

retry_with_backoff() runs an async operation until it succeeds, the error
is classified as permanent, or max_retries is exhausted. The original
exception is always re-raised unmodified. with_retry() is the decorator
form used for storage calls.
"""

import asyncio
import errno
import logging
import random
import socket
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

import httpx

from quickscribe.utils.errors import PipelineError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 30.0
JITTER_RATIO = 0.2

RETRYABLE_STATUS_CODES = {408, 429}
RETRYABLE_ERRNOS = {
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
}


def is_transient_error(exc: BaseException) -> bool:
    """Default retryability classification.

    Retries typed pipeline errors flagged retryable, httpx transport
    errors, HTTP 408/429/5xx responses, and transient socket errors
    (connection reset/refused, timeouts, DNS failures).
    """
    if isinstance(exc, PipelineError):
        return exc.retryable
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status in RETRYABLE_STATUS_CODES or status >= 500
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, (socket.gaierror, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, OSError):
        return exc.errno in RETRYABLE_ERRNOS
    return False


async def retry_with_backoff(
    operation_name: str,
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    is_retryable: Callable[[BaseException], bool] | None = None,
) -> T:
    """Run an async operation, retrying transient failures.

    Wait before each retry is min(backoff + jitter, max_backoff), where
    jitter is up to 20% of the current backoff. The backoff doubles after
    every retry, capped at max_backoff.

    Args:
        operation_name: Name used in log messages.
        operation: Zero-argument callable returning an awaitable.
        max_retries: Retries after the first attempt (default 3).
        initial_backoff: Seconds to wait before the first retry.
        max_backoff: Upper bound in seconds for any single wait.
        is_retryable: Optional predicate overriding is_transient_error.

    Returns:
        The operation's result.

    Raises:
        The last exception raised by the operation, unmodified.
    """
    classify = is_retryable or is_transient_error
    attempts = 0
    backoff = initial_backoff

    while True:
        try:
            return await operation()
        except Exception as exc:
            attempts += 1
            if attempts > max_retries or not classify(exc):
                if attempts > 1:
                    logger.error(
                        "Giving up on %s after %d attempt(s): %s",
                        operation_name,
                        attempts,
                        exc,
                    )
                raise

            jitter = random.uniform(0, backoff * JITTER_RATIO)
            delay = min(backoff + jitter, max_backoff)
            logger.warning(
                "Retry %d/%d for %s after %.1fs: %s",
                attempts,
                max_retries,
                operation_name,
                delay,
                exc,
                extra={"attempt": attempts},
            )
            await asyncio.sleep(delay)
            backoff = min(backoff * 2, max_backoff)


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    is_retryable: Callable[[BaseException], bool] | None = None,
) -> Callable:
    """Decorator form of retry_with_backoff for async functions.

    The wrapped function's name is used as the operation name.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await retry_with_backoff(
                func.__name__,
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                initial_backoff=initial_backoff,
                max_backoff=max_backoff,
                is_retryable=is_retryable,
            )

        return wrapper

    return decorator
