"""
Proctoring Timers - Scheduler seam and session-scoped timer slots

Sessions never create threads. All delayed work (face-loss grace period,
notice auto-dismiss, delayed auto-submit, the countdown ticker) goes
through a Scheduler, which in production is the asyncio event loop.
Callbacks therefore run one at a time on the loop thread. Blocking work
(result persistence) goes to the loop's default executor.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Schedules callbacks on the session's event loop"""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    def time(self) -> float:
        ...

    def run_in_background(self, func: Callable[..., Any], *args) -> Any:
        """Run blocking work off the loop; returns a future"""
        ...


class AsyncioScheduler:
    """
    Scheduler backed by an asyncio event loop.

    The loop is resolved lazily so the scheduler can be created outside
    of a running loop (e.g. at application import time).
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)

    def time(self) -> float:
        return self.loop.time()

    def run_in_background(self, func: Callable[..., Any], *args) -> asyncio.Future:
        return self.loop.run_in_executor(None, func, *args)


class TimerSlot:
    """
    Holds at most one pending timer.

    Arming a slot replaces (cancels) whatever was pending in it; the
    callback clears the slot before running.
    """

    def __init__(self, scheduler: Scheduler, name: str):
        self._scheduler = scheduler
        self.name = name
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[[], None]):
        self.cancel()

        def _fire():
            self._handle = None
            callback()

        self._handle = self._scheduler.call_later(delay, _fire)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class Ticker:
    """
    Calls ``callback`` every ``interval`` seconds until it returns False
    or ``stop`` is called.
    """

    def __init__(self, scheduler: Scheduler, callback: Callable[[], bool], interval: float = 1.0):
        self._slot = TimerSlot(scheduler, "ticker")
        self._callback = callback
        self.interval = interval
        self.running = False

    def start(self):
        if self.running:
            return
        self.running = True
        self._slot.arm(self.interval, self._fire)

    def stop(self):
        self.running = False
        self._slot.cancel()

    def _fire(self):
        if not self.running:
            return
        try:
            keep_going = self._callback()
        except Exception:
            logger.exception("Ticker callback failed, stopping ticker")
            self.running = False
            raise
        if keep_going and self.running:
            self._slot.arm(self.interval, self._fire)
        else:
            self.running = False
