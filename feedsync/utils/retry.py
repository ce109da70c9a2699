"""Retry with exponential backoff for awaited collaborator calls.

Usage:
    from feedsync.utils.retry import retry_async

    page = await retry_async(
        lambda: source.query_feed_page(author_ids, cursor, 10),
        max_attempts=3,
        delay=0.5,
        exceptions=(TransientError,),
    )
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

from ..errors import TransientError

if TYPE_CHECKING:
    from ..config import FeedConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    description: str | None = None,
) -> T:
    """Await ``func()`` until it succeeds, retrying with exponential backoff.

    Args:
        func: Zero-argument callable returning a fresh awaitable per attempt
        max_attempts: Maximum number of attempts (default: 3)
        delay: Initial delay between attempts in seconds (default: 1.0)
        backoff: Multiplier for delay on each retry (default: 2.0)
        exceptions: Exception types that trigger a retry; anything else propagates
        description: Name used in log messages

    Returns:
        The result of the first successful attempt

    Raises:
        The last exception once max_attempts is reached
    """
    name = description or getattr(func, "__name__", "call")
    attempt = 0
    current_delay = delay

    while True:
        try:
            return await func()
        except exceptions as e:
            attempt += 1
            if attempt >= max_attempts:
                logger.error(f"{name} failed after {max_attempts} attempts. Last error: {e}")
                raise

            logger.warning(
                f"Attempt {attempt}/{max_attempts} failed for {name}: {e}. "
                f"Retrying in {current_delay:.1f}s...",
            )
            await asyncio.sleep(current_delay)
            current_delay *= backoff


async def call_remote(
    func: Callable[[], Awaitable[T]],
    config: "FeedConfig",
    description: str,
) -> T:
    """Await a collaborator call under the configured timeout and retry policy.

    Each attempt is bounded by ``config.request_timeout``; a timeout counts as
    a TransientError. Only TransientError is retried.
    """

    async def attempt() -> Any:
        try:
            return await asyncio.wait_for(func(), timeout=config.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransientError(
                f"{description} timed out after {config.request_timeout:.1f}s"
            ) from e

    return await retry_async(
        attempt,
        max_attempts=config.retry_attempts,
        delay=config.retry_delay,
        backoff=config.retry_backoff,
        exceptions=(TransientError,),
        description=description,
    )
