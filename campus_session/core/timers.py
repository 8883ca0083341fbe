"""
Clock and timer facility.

Both the session manager and the audit logger schedule their delayed work
through a ``Scheduler`` so that production code runs on the asyncio event loop
while tests drive a ``ManualClock`` deterministically.
"""

import asyncio
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Any]


class TimerHandle:
    """Handle to a pending one-shot or periodic timer."""

    def __init__(self, when: float, interval: Optional[float] = None):
        self.when = when
        self.interval = interval
        self._cancelled = False
        self._native: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def periodic(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        """Cancel the timer. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._native is not None:
            self._native.cancel()
            self._native = None

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        state = "cancelled" if self._cancelled else "pending"
        return f"<TimerHandle when={self.when:.3f} interval={self.interval} {state}>"


class Scheduler(ABC):
    """
    Abstract clock plus delayed/periodic callbacks.

    Callbacks may be plain callables or coroutine functions. Instants are epoch
    seconds as returned by ``now()``.
    """

    @abstractmethod
    def now(self) -> float:
        """Current instant in epoch seconds."""
        pass

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds (negative delays run asap)."""
        pass

    @abstractmethod
    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until cancelled."""
        pass


class AsyncioScheduler(Scheduler):
    """Wall-clock scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Future] = set()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            # Raises RuntimeError outside a running loop
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.time()

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = self._get_loop()
        delay = max(0.0, delay)
        handle = TimerHandle(when=self.now() + delay)

        def _fire() -> None:
            if handle.cancelled:
                return
            handle._native = None
            self._run(callback)

        handle._native = loop.call_later(delay, _fire)
        return handle

    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        loop = self._get_loop()
        handle = TimerHandle(when=self.now() + interval, interval=interval)

        def _tick() -> None:
            if handle.cancelled:
                return
            handle.when = self.now() + interval
            handle._native = loop.call_later(interval, _tick)
            self._run(callback)

        handle._native = loop.call_later(interval, _tick)
        return handle

    def _run(self, callback: TimerCallback) -> None:
        try:
            result = callback()
        except Exception:
            logger.exception("Timer callback failed")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result, loop=self._get_loop())
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Timer task failed", exc_info=task.exception())


class ManualClock(Scheduler):
    """
    Virtual clock for tests and simulations.

    Time only moves when ``advance`` is awaited. Due timers fire in due-time
    order (ties in registration order); coroutine callbacks are awaited before
    the next timer fires. Exceptions raised by callbacks propagate to the
    caller of ``advance``.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = start
        self._timers: List[TimerHandle] = []
        self._order = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        handle = TimerHandle(when=self._now + max(0.0, delay))
        self._register(handle, callback)
        return handle

    def call_every(self, interval: float, callback: TimerCallback) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle(when=self._now + interval, interval=interval)
        self._register(handle, callback)
        return handle

    def _register(self, handle: TimerHandle, callback: TimerCallback) -> None:
        handle._callback = callback  # type: ignore[attr-defined]
        handle._seq = next(self._order)  # type: ignore[attr-defined]
        self._timers.append(handle)

    def pending(self) -> List[TimerHandle]:
        """Live (not cancelled, not yet fired) timers."""
        return [t for t in self._timers if not t.cancelled]

    def _next_due(self, target: float) -> Optional[TimerHandle]:
        due = [t for t in self._timers if not t.cancelled and t.when <= target]
        if not due:
            return None
        return min(due, key=lambda t: (t.when, t._seq))

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due on the way."""
        if seconds < 0:
            raise ValueError("cannot move a clock backwards")
        target = self._now + seconds

        while True:
            timer = self._next_due(target)
            if timer is None:
                break

            self._now = max(self._now, timer.when)
            if timer.periodic:
                timer.when += timer.interval
                timer._seq = next(self._order)  # type: ignore[attr-defined]
            else:
                self._timers.remove(timer)

            result = timer._callback()  # type: ignore[attr-defined]
            if inspect.isawaitable(result):
                await result

        self._now = target
        self._timers = [t for t in self._timers if not t.cancelled]
