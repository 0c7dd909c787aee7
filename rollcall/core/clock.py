"""Clocks and cancellable timers.

Every timed transition in the engine (session expiry, the focus countdown,
the two verification challenge timers) is scheduled through a ``Clock`` so
that production code runs against the asyncio loop while tests drive time
explicitly with ``ManualClock``.

Timer callbacks may be plain functions or coroutine functions. When a
callback returns an awaitable the clock takes care of running it.
"""
import asyncio
import heapq
import inspect
import itertools
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Set, Tuple

from rollcall.core.logging_config import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[..., Any]


class TimerHandle:
    """Handle returned by ``Clock.call_later``; cancelling it is idempotent."""

    def __init__(self, cancel_fn: Optional[Callable[[], None]] = None):
        self._cancel_fn = cancel_fn
        self._cancelled = False
        self._fired = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._cancel_fn is not None:
            self._cancel_fn()
            self._cancel_fn = None

    def _mark_fired(self) -> None:
        self._fired = True


class Clock(ABC):
    """Source of wall-clock time and one-shot timers."""

    @abstractmethod
    def now_ms(self) -> int:
        """Current time as epoch milliseconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: TimerCallback, *args: Any) -> TimerHandle:
        """Run ``callback(*args)`` after ``delay`` seconds."""


class SystemClock(Clock):
    """Clock backed by ``time.time`` and the running asyncio loop."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def call_later(self, delay: float, callback: TimerCallback, *args: Any) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = TimerHandle()
        loop_handle = loop.call_later(max(delay, 0), self._fire, handle, callback, args)
        handle._cancel_fn = loop_handle.cancel
        return handle

    def _fire(self, handle: TimerHandle, callback: TimerCallback, args: Tuple[Any, ...]) -> None:
        if handle.cancelled:
            return
        handle._mark_fired()
        result = callback(*args)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            # Keep a strong reference until the task finishes
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("timer_callback_failed", error=str(exc), error_type=type(exc).__name__)


class ManualClock(Clock):
    """Virtual clock for tests.

    Time only moves when ``advance`` is awaited. Timers due within the
    advanced span fire in due order, each one seeing ``now_ms`` equal to its
    own due time. Awaitable callback results are awaited before the next
    timer fires, which keeps every scenario deterministic.
    """

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self._now_ms = start_ms
        self._seq = itertools.count()
        self._queue: List[Tuple[int, int, TimerHandle, TimerCallback, Tuple[Any, ...]]] = []

    def now_ms(self) -> int:
        return self._now_ms

    def call_later(self, delay: float, callback: TimerCallback, *args: Any) -> TimerHandle:
        handle = TimerHandle()
        due = self._now_ms + max(int(round(delay * 1000)), 0)
        heapq.heappush(self._queue, (due, next(self._seq), handle, callback, args))
        return handle

    @property
    def pending(self) -> int:
        """Number of timers that are still armed."""
        return sum(1 for _, _, handle, _, _ in self._queue if handle.active)

    async def advance(self, seconds: float) -> None:
        """Move time forward, firing every timer that falls due."""
        target = self._now_ms + int(round(seconds * 1000))
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback, args = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now_ms = max(self._now_ms, due)
            handle._mark_fired()
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        self._now_ms = target
        # Let tasks spawned by callbacks make progress
        await asyncio.sleep(0)


async def maybe_await(result: Any) -> Any:
    """Await ``result`` if it is awaitable, otherwise return it unchanged."""
    if inspect.isawaitable(result):
        return await result
    return result
