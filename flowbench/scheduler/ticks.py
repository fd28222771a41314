"""The "next externally-scheduled tick" primitive.

The update scheduler never talks to a rendering runtime directly. It
asks a TickSource for one callback on the next tick and may cancel that
request. AsyncioFrameTicker approximates a display refresh with
``loop.call_later``; ManualTicker lets a host (or a test) decide exactly
when a frame happens.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Callable
from typing import Any, Protocol

TickCallback = Callable[[], None]


class TickSource(Protocol):
    """Schedules one callback for the next tick."""

    def request(self, callback: TickCallback) -> Any:
        """Run *callback* once on the next tick and return a cancel handle."""
        ...

    def cancel(self, handle: Any) -> None:
        """Withdraw a request that has not fired yet."""
        ...


class AsyncioFrameTicker:
    """Ticks every *interval_ms* on the running asyncio loop."""

    def __init__(
        self,
        interval_ms: float = 16.0,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._interval = interval_ms / 1000
        self._loop = loop

    @property
    def interval_ms(self) -> float:
        return self._interval * 1000

    def request(self, callback: TickCallback) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self._interval, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


class ManualTicker:
    """A tick source driven by explicit ``fire()`` calls.

    Callbacks requested while a tick is firing wait for the next one,
    the same way a frame callback registered during a frame runs on the
    following frame.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._queue: dict[int, TickCallback] = {}
        self.ticks = 0

    @property
    def pending(self) -> int:
        """Number of callbacks waiting for the next tick."""
        return len(self._queue)

    def request(self, callback: TickCallback) -> int:
        handle = next(self._ids)
        self._queue[handle] = callback
        return handle

    def cancel(self, handle: int) -> None:
        self._queue.pop(handle, None)

    def fire(self) -> int:
        """Run one tick. Returns the number of callbacks that ran."""
        self.ticks += 1
        due = list(self._queue.items())
        ran = 0
        for handle, callback in due:
            # A callback earlier in this tick may have cancelled this one
            if self._queue.pop(handle, None) is None:
                continue
            callback()
            ran += 1
        return ran
