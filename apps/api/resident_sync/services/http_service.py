"""HTTP helpers with retry/backoff for the source-system client."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Jittered exponential delay for a zero-based attempt index."""
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
    return delay


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
    label: str = "request",
    sleep: Sleep = asyncio.sleep,
) -> httpx.Response:
    """
    Execute an HTTP request with exponential backoff retries.

    Transport errors are re-raised after the last attempt; a retryable status
    on the last attempt is returned to the caller as-is.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES
    attempts = max(max_attempts, 1)

    for attempt in range(attempts):
        is_last = attempt >= attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if is_last:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning("%s failed (%s), retrying", label, type(exc).__name__)
            if delay:
                await sleep(delay)
            continue

        if response.status_code in statuses and not is_last:
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning("%s returned %s, retrying", label, response.status_code)
            if delay:
                await sleep(delay)
            continue

        return response

    return response
