"""
Cancellable timers scheduled on the running event loop.

Timers must be started from the loop thread. A generation counter makes
cancel() final even if the loop already dequeued the callback.
"""

import asyncio
from typing import Callable, Optional


class OneShotTimer:
    """Restartable one-shot timer."""

    def __init__(self, name: str, callback: Callable[[], None]):
        self.name = name
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._generation = 0

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self, delay: float):
        """(Re)start the timer; any pending expiry is discarded."""
        self.cancel()
        generation = self._generation
        self._handle = asyncio.get_running_loop().call_later(delay, self._fire, generation)

    def cancel(self):
        """Stop the timer. Safe to call at any time, any number of times."""
        self._generation += 1
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, generation: int):
        if generation != self._generation:
            return
        self._handle = None
        self._callback()


class PeriodicTimer:
    """Fires a callback every interval until cancelled."""

    def __init__(self, name: str, callback: Callable[[], None]):
        self.name = name
        self._callback = callback
        self._interval = 0.0
        self._timer = OneShotTimer(name, self._tick)

    @property
    def active(self) -> bool:
        return self._timer.active

    def start(self, interval: float):
        self._interval = interval
        self._timer.start(interval)

    def cancel(self):
        self._timer.cancel()

    def _tick(self):
        self._timer.start(self._interval)
        self._callback()
