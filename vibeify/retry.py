"""Bounded retry with exponential backoff for outbound Spotify calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryableStatus(Exception):
    """Raised inside a retried operation to ask for another attempt.

    Carries the response so the caller can build its final error once the
    attempts run out.
    """

    def __init__(self, response: httpx.Response) -> None:
        super().__init__(f"retryable status {response.status_code}")
        self.response = response


def is_transient_status(status: int) -> bool:
    return status >= 500


def is_transient_error(exc: BaseException) -> bool:
    """Network failures, timeouts, and 5xx are worth another attempt; 4xx never is."""
    if isinstance(exc, RetryableStatus):
        return True
    return isinstance(exc, httpx.TransportError)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    sleep: Sleep = asyncio.sleep,
    label: str = "request",
) -> T:
    """Run ``operation`` up to ``attempts`` times.

    The delay before attempt ``n`` (1-based, n > 1) is
    ``base_delay * 2 ** (n - 2)`` capped at ``max_delay``. Exceptions for which
    ``is_retryable`` is false propagate immediately; the last retryable one
    propagates once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    delay = base_delay
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e) or attempt == attempts:
                raise
            logger.warning(
                "retrying %s",
                label,
                extra={
                    "meta": {
                        "attempt": attempt,
                        "max_attempts": attempts,
                        "delay": delay,
                        "error_type": type(e).__name__,
                    }
                },
            )
            await sleep(delay)
            delay = min(delay * 2, max_delay)
    raise AssertionError("unreachable")
