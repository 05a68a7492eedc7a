"""Cancellable timer handles over a pluggable clock.

:class:`AsyncioTimers` schedules on the running event loop;
:class:`ManualTimers` keeps a virtual clock that only moves when
:meth:`ManualTimers.advance` is called, which makes debounce and sweep
behaviour deterministic under test.  Times are in seconds.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Callable, Protocol

Callback = Callable[[], None]


class TimerHandle(Protocol):
    @property
    def cancelled(self) -> bool: ...

    def cancel(self) -> None: ...


class TimerScheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callback) -> TimerHandle: ...


# -- asyncio ------------------------------------------------------------------


class _LoopHandle:
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()

    def cancel(self) -> None:
        self._handle.cancel()


class _RepeatingHandle:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval: float, callback: Callback) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval, self._fire)
        self._callback()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class AsyncioTimers:
    """Timers on the running asyncio loop."""

    def now(self) -> float:
        return asyncio.get_running_loop().time()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        return _LoopHandle(asyncio.get_running_loop().call_later(delay, callback))

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        return _RepeatingHandle(asyncio.get_running_loop(), interval, callback)


# -- manual clock ---------------------------------------------------------------


class _ManualHandle:
    def __init__(self, due: float, callback: Callback, interval: float | None) -> None:
        self.due = due
        self.callback = callback
        self.interval = interval
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class ManualTimers:
    """Virtual clock; callbacks run synchronously inside :meth:`advance`."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, _ManualHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        return self._push(_ManualHandle(self._now + delay, callback, None))

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        return self._push(_ManualHandle(self._now + interval, callback, interval))

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that comes due."""
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = due
            if handle.interval is not None:
                handle.due = due + handle.interval
                heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
            handle.callback()
        self._now = target

    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def _push(self, handle: _ManualHandle) -> _ManualHandle:
        heapq.heappush(self._queue, (handle.due, next(self._seq), handle))
        return handle
