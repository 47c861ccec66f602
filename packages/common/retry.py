"""Bounded retry with exponential backoff for idempotent async calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from packages.common.logging import get_logger

logger = get_logger(module=__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    retry_on: tuple[type[BaseException], ...],
    label: str,
) -> T:
    """Run ``operation`` up to ``attempts`` times, sleeping ``base_delay * 2**n`` between tries.

    Only exceptions listed in ``retry_on`` are retried; anything else, or the
    last failure, propagates unchanged. Never use this for writes: a write
    that timed out may still have been applied.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == attempts:
                logger.warning(
                    "retry_exhausted",
                    operation=label,
                    attempts=attempts,
                    error=str(exc),
                )
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.info(
                "retrying_operation",
                operation=label,
                attempt=attempt,
                delay_seconds=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
