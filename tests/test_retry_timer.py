"""Tests for retry and the cancellable timer."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from feedsync.config import FeedConfig
from feedsync.errors import FatalError, TransientError
from feedsync.utils.retry import call_remote, retry_async
from feedsync.utils.timer import CancellableTimer


class TestRetryAsync:
    """Tests for retry_async."""

    @pytest.mark.asyncio
    async def test_succeeds_after_retries(self):
        func = AsyncMock(side_effect=[TransientError("1"), TransientError("2"), "ok"])

        with patch("feedsync.utils.retry.asyncio.sleep", new=AsyncMock()) as mock_sleep:
            result = await retry_async(
                func, max_attempts=3, delay=1.0, backoff=2.0, exceptions=(TransientError,)
            )

        assert result == "ok"
        assert func.await_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self):
        func = AsyncMock(side_effect=TransientError("down"))

        with pytest.raises(TransientError):
            await retry_async(func, max_attempts=2, delay=0, exceptions=(TransientError,))

        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_other_exceptions_not_retried(self):
        func = AsyncMock(side_effect=FatalError("bad"))

        with pytest.raises(FatalError):
            await retry_async(func, max_attempts=3, delay=0, exceptions=(TransientError,))

        assert func.await_count == 1


class TestCallRemote:
    """Tests for the timeout and retry wrapper used for collaborator calls."""

    @pytest.mark.asyncio
    async def test_timeout_becomes_transient(self):
        config = FeedConfig(request_timeout=0.01, retry_attempts=2, retry_delay=0)
        calls = []

        async def hang():
            calls.append(1)
            await asyncio.sleep(1)

        with pytest.raises(TransientError, match="timed out"):
            await call_remote(hang, config, "hang")

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_returns_value(self):
        config = FeedConfig(retry_attempts=1)

        assert await call_remote(AsyncMock(return_value=42), config, "answer") == 42


class TestCancellableTimer:
    """Tests for the debounce primitive."""

    @pytest.mark.asyncio
    async def test_fires_once_after_delay(self):
        callback = AsyncMock()
        timer = CancellableTimer(0.02, callback)

        timer.schedule()
        assert timer.pending
        await asyncio.sleep(0.06)

        callback.assert_awaited_once()
        assert not timer.pending

    @pytest.mark.asyncio
    async def test_reschedule_restarts_countdown(self):
        callback = AsyncMock()
        timer = CancellableTimer(0.05, callback)

        for _ in range(4):
            timer.schedule()
            await asyncio.sleep(0.02)
        callback.assert_not_awaited()
        await asyncio.sleep(0.1)

        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancel(self):
        callback = AsyncMock()
        timer = CancellableTimer(0.02, callback)

        timer.schedule()
        timer.cancel()
        await asyncio.sleep(0.05)

        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_callback_errors_are_logged(self):
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        timer = CancellableTimer(0, callback)

        with patch("feedsync.utils.timer.logger") as mock_logger:
            timer.schedule()
            await asyncio.sleep(0.01)

        mock_logger.error.assert_called_once()
