"""
Retry policy for Tessera SDK calls.

with_retry() re-runs an async call with exponential backoff. Errors that
cannot succeed on retry are raised immediately.

Invariants:
    - Identity, ownership, missing-workspace, version-conflict and
      patch-apply errors are never retried
    - Delay doubles per attempt and is capped at max_delay_ms
    - The last error is re-raised unchanged after the final attempt
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import (
    AccessDeniedError,
    NotFoundError,
    PatchApplyError,
    UnauthenticatedError,
    VersionConflictError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

NON_RETRYABLE = (
    UnauthenticatedError,
    AccessDeniedError,
    NotFoundError,
    VersionConflictError,
    PatchApplyError,
)


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    max_delay_ms: int = 10000,
) -> T:
    """Call fn until it succeeds or attempts run out.

    Args:
        fn: Zero-argument coroutine function
        max_attempts: Total attempts including the first
        base_delay_ms: Delay before the second attempt
        max_delay_ms: Upper bound for any single delay

    Returns:
        fn's result

    Raises:
        The non-retryable error immediately, or the last error after
        max_attempts
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await fn()
        except NON_RETRYABLE:
            raise
        except Exception as e:
            if attempt >= max_attempts:
                raise

            delay_ms = min(base_delay_ms * 2 ** (attempt - 1), max_delay_ms)
            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed, retrying in {delay_ms}ms: {e}",
                extra={"attempt": attempt, "delay_ms": delay_ms},
            )
            await asyncio.sleep(delay_ms / 1000)
            attempt += 1
