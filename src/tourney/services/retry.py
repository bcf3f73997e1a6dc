"""
Retry shell for storage operations.

Mutating operations are re-run from scratch when the database reports a
transient failure (dropped connection, lock timeout, failover). Business
rule failures are never retried: they would fail the same way again.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from tourney.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """True for storage errors worth retrying with a fresh connection."""
    if isinstance(error, (OperationalError, InterfaceError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


async def with_retry(
    coro_func: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    description: str = "Operation",
) -> T:
    """
    Execute an async operation with exponential backoff on transient errors.

    Pass a callable that creates the coroutine, not the coroutine itself:
    each attempt needs a fresh one.

    Args:
        coro_func: Callable returning a coroutine (e.g. lambda: self._start(...))
        max_attempts: Maximum attempts (default from settings)
        base_delay: Initial delay between attempts, doubled each time
            (default from settings)
        description: Description for logging

    Returns:
        Result of the coroutine

    Raises:
        Exception: Any non-transient error immediately, or the last transient
            error once attempts are exhausted
    """
    if max_attempts is None:
        max_attempts = settings.db_max_retries
    if base_delay is None:
        base_delay = settings.db_retry_base_delay

    for attempt in range(max_attempts):
        try:
            return await coro_func()
        except Exception as e:
            if not is_transient(e) or attempt >= max_attempts - 1:
                raise

            delay = base_delay * (2 ** attempt)
            # Jitter so concurrent retries don't line up
            delay += random.uniform(0, base_delay)

            logger.warning(
                "[Retry %d/%d] %s failed: %s. Retrying in %.2fs...",
                attempt + 1, max_attempts, description, e, delay,
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"{description}: max_attempts must be at least 1")
