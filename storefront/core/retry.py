"""Async retry logic with exponential backoff for REST calls."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from storefront.core.constants import NON_RETRYABLE_STATUSES
from storefront.core.exceptions import ApiException

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


def is_retryable(error: BaseException) -> bool:
    """Transport errors and 5xx are worth another try; client errors are not."""
    if isinstance(error, ApiException):
        return error.status is None or error.status not in NON_RETRYABLE_STATUSES
    return isinstance(error, (asyncio.TimeoutError, ConnectionError, OSError))


async def retry_call(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 4.0,
    exponential_base: float = 2.0,
    exceptions: tuple = (ApiException, asyncio.TimeoutError, OSError),
    sleep: Sleep | None = None,
    **kwargs: Any,
) -> T:
    """Call ``func`` with bounded exponential backoff.

    Non-retryable errors (see :func:`is_retryable`) propagate on the first
    failure. After ``max_attempts`` the last error is re-raised.
    """
    sleeper = sleep or asyncio.sleep
    delay = initial_delay
    attempts = max(1, max_attempts)
    name = getattr(func, "__name__", repr(func))

    for attempt in range(attempts):
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            if not is_retryable(e) or attempt == attempts - 1:
                if attempt:
                    logger.error("%s failed after %d attempts: %s", name, attempt + 1, e)
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                name,
                attempt + 1,
                attempts,
                e,
                delay,
            )
            await sleeper(delay)
            delay = min(delay * exponential_base, max_delay)

    raise RuntimeError("unreachable")  # pragma: no cover
