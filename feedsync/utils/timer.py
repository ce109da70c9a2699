"""Cancellable one-shot timer for debouncing on the event loop."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class CancellableTimer:
    """Runs a coroutine function once after a delay.

    Scheduling again before the delay elapses restarts the countdown, so a
    burst of ``schedule()`` calls produces a single run.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        """Initialize timer.

        Args:
            delay: Seconds to wait after the last schedule() call
            callback: Coroutine function to run when the timer fires
        """
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self) -> None:
        """Start or restart the countdown. Must be called from the event loop."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run())

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        # Detach before running so the callback may reschedule the timer.
        self._task = None
        try:
            await self.callback()
        except Exception as e:
            logger.error(f"Timer callback failed: {e}", exc_info=True)
