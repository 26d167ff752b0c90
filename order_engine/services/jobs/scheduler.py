"""
Interval ticker for periodic background jobs.

Owns one asyncio task that awaits the callback, then sleeps for the
interval. A callback error is logged and the loop keeps ticking.
"""

import asyncio
from collections.abc import Awaitable, Callable

from shared.config.logging import get_logger

logger = get_logger(__name__)


class IntervalTicker:
    """Runs an async callback every ``interval_seconds`` until stopped."""

    def __init__(self, interval_seconds: float, name: str = "ticker"):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._interval = interval_seconds
        self._name = name
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: Callable[[], Awaitable[object]]) -> None:
        """Start ticking. Calling start on a running ticker is a no-op."""
        if self.running:
            logger.warning("Ticker already running", ticker=self._name)
            return
        self._task = asyncio.create_task(self._run(callback), name=self._name)
        logger.info("Ticker started", ticker=self._name, interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the loop and wait until it has exited."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Ticker stopped", ticker=self._name)

    async def _run(self, callback: Callable[[], Awaitable[object]]) -> None:
        while True:
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Ticker callback failed", ticker=self._name, error=str(e), exc_info=True)
            await asyncio.sleep(self._interval)
