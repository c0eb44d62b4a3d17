from __future__ import annotations

import asyncio
from typing import Callable, Awaitable, TypeVar

import httpx
import structlog

logger = structlog.get_logger()
T = TypeVar("T")

RETRYABLE = (httpx.TimeoutException, httpx.HTTPStatusError, httpx.ConnectError)


async def with_retry(
    coro_factory: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    operation: str = "",
) -> T:
    """Retry an async HTTP call with exponential backoff.

    Only transient httpx errors are retried; anything else propagates on
    the first attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    for attempt in range(max_attempts):
        try:
            return await coro_factory()
        except RETRYABLE as e:
            if attempt == max_attempts - 1:
                logger.error("http_failed", op=operation, error=str(e),
                             attempts=attempt + 1)
                raise
            delay = base_delay * (2 ** attempt)
            logger.warning("http_retry", op=operation, attempt=attempt + 1,
                           delay=delay, error=str(e))
            await asyncio.sleep(delay)
    raise RuntimeError("unreachable")
