"""Exponential backoff retry for classified, transient provider errors."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import ErrorKind, ModelCallError, classify_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds: ``max_retries`` retries means ``max_retries + 1`` attempts.

    Delay before retry *n* (0-based) is
    ``min(base_delay * 2**n + jitter, max_delay)`` with jitter drawn from
    ``[0, jitter_ratio * base_delay)``. A provider ``retry_after`` hint
    replaces the computed delay (still capped at ``max_delay``).
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter_ratio: float = 0.1
    retry_rate_limited: bool = False
    max_invalid_response_retries: int = 1

    def compute_delay(self, attempt: int, retry_after: float | None = None) -> float:
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        jitter = random.random() * self.jitter_ratio * self.base_delay
        return min(self.base_delay * (2 ** attempt) + jitter, self.max_delay)

    def should_retry(self, error: ModelCallError, invalid_retries_used: int) -> bool:
        if error.kind is ErrorKind.RATE_LIMITED:
            return self.retry_rate_limited
        if error.kind is ErrorKind.INVALID_RESPONSE:
            return invalid_retries_used < self.max_invalid_response_retries
        return error.is_retryable


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    classify: Callable[[BaseException], ModelCallError] = classify_error,
    label: str = "",
) -> T:
    """Execute an async callable, retrying classified transient failures.

    Args:
        coro_factory: Zero-arg callable that returns a fresh awaitable each attempt.
        policy: Retry bounds; defaults to 3 retries / 1s base / 60s cap.
        classify: Maps raw exceptions into the error taxonomy.
        label: Prefix for log lines (usually the model id).

    Returns:
        The result of the first successful call.

    Raises:
        ModelCallError: The classified error of the last attempt when retries are
            exhausted, or the first non-retryable error.
    """
    policy = policy or RetryPolicy()
    invalid_retries = 0
    attempt = 0
    while True:
        try:
            return await coro_factory()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = classify(exc)
            if attempt >= policy.max_retries or not policy.should_retry(error, invalid_retries):
                if error is not exc:
                    raise error from exc
                raise
            if error.kind is ErrorKind.INVALID_RESPONSE:
                invalid_retries += 1
            delay = policy.compute_delay(attempt, error.retry_after)
            attempt += 1
            logger.warning(
                "%sRetry %d/%d after %.1fs (%s): %s",
                f"[{label}] " if label else "",
                attempt, policy.max_retries, delay, error.kind.value, error.message,
            )
            await asyncio.sleep(delay)
