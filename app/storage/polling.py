"""
Cancellable polling timer used by local-mode subscriptions.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PollingTimer:
    """
    Runs ``tick`` every ``interval`` seconds on the running event loop.

    The first tick happens one interval after ``start()``. ``tick`` is
    expected to handle its own errors; anything that escapes is logged
    and the timer keeps going.
    """

    def __init__(
        self,
        interval: float,
        tick: Callable[[], Awaitable[None]],
        name: str = "poll",
    ):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name
        self._tick = tick
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._cancelled:
            raise RuntimeError(f"Timer '{self.name}' was cancelled")
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"poll:{self.name}"
        )

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self.interval)
            if self._cancelled:
                return
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Polling tick '{self.name}' failed")

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
