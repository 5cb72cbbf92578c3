"""Bounded exponential-backoff retry for fallible async operations."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sprintpilot.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    *,
    label: str = "",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Call ``operation`` until it succeeds or ``max_attempts`` calls have failed.

    Waits ``base_delay_ms * 2**attempt`` between attempts (1s, 2s, ... with the
    defaults); there is no wait after the last attempt. The operation is not
    assumed idempotent: a retried LLM call may be billed twice.

    Raises RetryExhaustedError chained to the last underlying error.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    last_error: Exception | None = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            if attempt == max_attempts - 1:
                break
            delay_ms = base_delay_ms * (2 ** attempt)
            logger.warning(
                "%s attempt %d/%d failed, retrying in %dms: %s",
                label or "operation", attempt + 1, max_attempts, delay_ms, exc,
            )
            await sleep(delay_ms / 1000)

    raise RetryExhaustedError(max_attempts, last_error) from last_error
