"""
One-shot timer scheduler polled from the main loop.

Timers never fire on their own thread: the owner calls run_due() once per
loop iteration, so callbacks run on the same thread as everything else in
the core. The clock is injectable so tests can step time by hand.
"""

import heapq
import itertools
import time
from typing import Callable, List, Optional


class TimerHandle:
    """A scheduled callback. cancel() is idempotent."""

    def __init__(self, due: float, callback: Callable[[], None], name: str = ""):
        self.due = due
        self.callback = callback
        self.name = name
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)

    def __repr__(self):
        return f"TimerHandle({self.name or self.callback!r}, due={self.due:.3f})"


class TimerScheduler:
    """
    Min-heap of one-shot timers keyed on due time.

    Usage:
        scheduler = TimerScheduler()
        handle = scheduler.call_later(3.0, retry)
        ...
        scheduler.run_due()   # from the main loop
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self.clock = clock or time.monotonic
        self._heap: List[tuple] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self.clock()

    def call_later(self, delay_s: float, callback: Callable[[], None], name: str = "") -> TimerHandle:
        """Schedule callback to run once, delay_s seconds from now."""
        handle = TimerHandle(self.now() + max(0.0, delay_s), callback, name)
        heapq.heappush(self._heap, (handle.due, next(self._seq), handle))
        return handle

    def run_due(self) -> int:
        """
        Fire every pending timer whose due time has passed.

        Timers scheduled by a callback during this call wait for the next
        call, even with zero delay, so a self-rescheduling timer cannot spin.

        Returns:
            Number of callbacks fired
        """
        now = self.now()
        due = []
        while self._heap and self._heap[0][0] <= now:
            due.append(heapq.heappop(self._heap)[2])

        fired = 0
        for handle in due:
            if handle.cancelled:
                continue
            handle.fired = True
            handle.callback()
            fired += 1
        return fired
