"""Exponential backoff for transient I/O failures.

Only wrap operations that are safe to repeat. The provider call and the
claim update are never retried here: a transcription request is billed per
call and a repeated claim would read as a lost race.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELAY = 30.0


def backoff_delay(attempt: int, base_delay: float, max_delay: float = DEFAULT_MAX_DELAY) -> float:
    """Delay before retry number ``attempt + 1``: base_delay * 2^attempt, capped."""
    return min(base_delay * (2**attempt), max_delay)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> Callable[[Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Any]]]:
    """Retry an async callable when it raises a transient error.

    Args:
        max_retries: Retries after the first call.
        base_delay: Seconds before the first retry; doubles each time.
        retryable_exceptions: Exception types worth retrying. None retries
            everything. Other exceptions propagate at once.
        max_delay: Upper bound on a single wait.

    The raised exception carries ``_retry_count``, the number of retries
    spent before giving up.
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    transient = retryable_exceptions is None or isinstance(
                        exc, retryable_exceptions
                    )
                    if not transient or attempt >= max_retries:
                        exc._retry_count = attempt  # type: ignore[attr-defined]
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay)
                    attempt += 1
                    logger.warning(
                        "%s failed (%s); retry %d/%d in %.1fs",
                        func.__name__,
                        exc,
                        attempt,
                        max_retries,
                        delay,
                        extra={"stage": "retry", "attempts": attempt},
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
