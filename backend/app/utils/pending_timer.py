"""
Single-slot delayed callback on the running event loop.

    timer = PendingTimer(2.0, flush)
    timer.arm()            # schedules flush in 2s
    timer.arm()            # no-op, already pending
    timer.arm(restart=True)  # debounce: restart the countdown
    timer.cancel()
    await timer.drain()    # also waits for a callback already running

The slot is cleared before the callback runs, so a callback may re-arm
or cancel its own timer.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from app.core.logging_config import logger


TimerCallback = Callable[[], Union[None, Awaitable[Any]]]


class PendingTimer:
    """At most one pending invocation of `callback`, `delay` seconds out"""

    def __init__(self, delay: float, callback: TimerCallback, name: str = "timer"):
        self.delay = delay
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._running: Optional[asyncio.Task] = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, restart: bool = False, delay: Optional[float] = None) -> bool:
        """
        Schedule the callback. Returns False when a callback was already
        pending and restart is not set.
        """
        if self.armed:
            if not restart:
                return False
            self._task.cancel()
        wait = self.delay if delay is None else delay
        self._task = asyncio.get_running_loop().create_task(self._run(wait), name=self.name)
        return True

    def cancel(self) -> None:
        """Drop a pending callback; one already running is left to finish"""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def drain(self) -> None:
        """Drop a pending callback and wait for one already running to finish"""
        self.cancel()
        running = self._running
        if running is not None and running is not asyncio.current_task() and not running.done():
            await asyncio.wait([running])

    async def _run(self, wait: float) -> None:
        await asyncio.sleep(wait)
        self._task = None
        self._running = asyncio.current_task()
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.log_error_with_context(e, context=f"PendingTimer:{self.name}")
        finally:
            if self._running is asyncio.current_task():
                self._running = None
