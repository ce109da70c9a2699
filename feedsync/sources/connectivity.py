"""Connectivity monitors that report online/offline transitions."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


class ConnectivityMonitor(ABC):
    """Source of online/offline transitions.

    ``stream()`` yields only on transitions; it is consumed, never polled.
    """

    @abstractmethod
    def stream(self) -> AsyncIterator[bool]:
        """Yield True when the device goes online and False when it goes offline."""
        pass


class QueueConnectivityMonitor(ConnectivityMonitor):
    """Monitor fed by a platform callback through ``publish()``.

    Repeated reports of the same state are swallowed so that consumers
    see transitions only.
    """

    _CLOSED = object()

    def __init__(self, initial: Optional[bool] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._last: Optional[bool] = initial

    @property
    def online(self) -> Optional[bool]:
        return self._last

    def publish(self, online: bool) -> None:
        """Report the current connectivity state."""
        if online == self._last:
            return
        self._last = online
        logger.debug(f"Connectivity changed: {'online' if online else 'offline'}")
        self._queue.put_nowait(online)

    def close(self) -> None:
        self._queue.put_nowait(self._CLOSED)

    async def stream(self) -> AsyncIterator[bool]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
