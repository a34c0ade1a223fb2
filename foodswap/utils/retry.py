"""Retry utilities - Bounded retry with backoff for store and storage writes."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from foodswap.config import settings
from foodswap.errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    callback: Callable[..., Awaitable[T]],
    *args,
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
    label: str = "store call",
    **kwargs,
) -> T:
    """
    Execute an async callback, retrying transient failures with backoff.

    Args:
        callback: Async function to call
        *args: Positional arguments for callback
        max_attempts: Total attempts including the first (default from settings)
        base_delay: Delay before the first retry, doubled after each failure
        retry_on: Exception types that are worth retrying
        label: Description for logging
        **kwargs: Keyword arguments for callback

    Returns:
        The callback's result.

    Raises:
        The last exception once attempts are exhausted, or immediately for
        exceptions not listed in ``retry_on``.
    """
    attempts = max_attempts or settings.store_retry_attempts
    delay = settings.store_retry_base_delay if base_delay is None else base_delay

    for attempt in range(attempts):
        try:
            result = await callback(*args, **kwargs)
            if attempt > 0:
                logger.info(f"{label} succeeded on attempt {attempt + 1}")
            return result
        except retry_on as e:
            if attempt >= attempts - 1:
                logger.error(f"{label} failed after {attempts} attempts: {e}")
                raise
            logger.warning(f"{label} failed: {e}, attempt {attempt + 1}/{attempts}")

        await asyncio.sleep(delay)
        delay *= 2

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{label}: retry loop exited without a result")
