"""Async retry helper with exponential backoff for external calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_backoff(
    call_fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 2,
    base_delay: float = 1.0,
    max_delay: float = 8.0,
    should_retry: Callable[[Exception], bool] | None = None,
    label: str = "external call",
) -> T:
    """
    Await ``call_fn`` and retry failures with exponential backoff.

    ``max_retries`` counts retries, so the call runs at most
    ``max_retries + 1`` times. Errors rejected by ``should_retry`` are
    raised immediately. The last error is re-raised once retries run out.
    """
    attempts = max(max_retries, 0) + 1

    for attempt in range(attempts):
        try:
            return await call_fn()
        except Exception as exc:
            if should_retry is not None and not should_retry(exc):
                raise
            if attempt >= attempts - 1:
                raise
            delay = min(max_delay, base_delay * (2**attempt))
            logger.warning(
                "%s failed (attempt %s/%s), retrying in %.2fs: %s",
                label,
                attempt + 1,
                attempts,
                delay,
                exc,
            )
            if delay:
                await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
