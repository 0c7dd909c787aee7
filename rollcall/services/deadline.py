"""Clock/Deadline service.

Pure deadline arithmetic plus ``Countdown``, which produces the 1 Hz "time
remaining" ticks and the one-shot "due" signal of a session deadline. The
owner console and the focus view both build on it instead of running their
own interval loops. The verification challenge needs two one-shot timers
rather than a ticking countdown, so it arms them on the clock directly.
"""
from typing import Any, Callable, Optional

from rollcall.core.clock import Clock, TimerHandle, maybe_await
from rollcall.core.constants import COUNTDOWN_INTERVAL_SECONDS


def remaining_ms(deadline_ms: int, now_ms: int) -> int:
    """Milliseconds left until the deadline, never negative."""
    return max(deadline_ms - now_ms, 0)


def is_due(deadline_ms: int, now_ms: int) -> bool:
    return now_ms >= deadline_ms


def format_remaining(ms: int) -> str:
    """Format milliseconds as ``mm:ss``, clamped at ``00:00``."""
    ms = max(ms, 0)
    minutes, rem = divmod(ms, 60_000)
    seconds = rem // 1000
    return f"{minutes:02d}:{seconds:02d}"


class Countdown:
    """Ticks once per interval until a deadline, then fires ``on_due`` once.

    ``on_tick`` receives the ``mm:ss`` label. When the deadline is reached the
    final tick reports ``00:00``, ``on_due`` runs, and ticking stops. After
    ``cancel`` no callback fires again.
    """

    def __init__(
        self,
        clock: Clock,
        deadline_ms: int,
        on_tick: Optional[Callable[[str], Any]] = None,
        on_due: Optional[Callable[[], Any]] = None,
        interval: float = COUNTDOWN_INTERVAL_SECONDS,
    ):
        self.clock = clock
        self.deadline_ms = deadline_ms
        self._on_tick = on_tick
        self._on_due = on_due
        self._interval = interval
        self._handle: Optional[TimerHandle] = None
        self._started = False
        self._cancelled = False
        self._due_fired = False

    @property
    def remaining_label(self) -> str:
        return format_remaining(remaining_ms(self.deadline_ms, self.clock.now_ms()))

    @property
    def running(self) -> bool:
        return self._started and not (self._cancelled or self._due_fired)

    @property
    def fired(self) -> bool:
        return self._due_fired

    def start(self) -> "Countdown":
        if self._started:
            return self
        self._started = True
        self._schedule()
        return self

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self.clock.call_later(self._interval, self._tick)

    async def _tick(self) -> None:
        self._handle = None
        if self._cancelled or self._due_fired:
            return

        left = remaining_ms(self.deadline_ms, self.clock.now_ms())
        if left <= 0:
            self._due_fired = True
            if self._on_tick is not None:
                await maybe_await(self._on_tick(format_remaining(0)))
            if self._on_due is not None and not self._cancelled:
                await maybe_await(self._on_due())
            return

        if self._on_tick is not None:
            await maybe_await(self._on_tick(format_remaining(left)))
        if not self._cancelled:
            self._schedule()
