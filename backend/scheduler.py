"""
Cancellable timers run on one background thread
"""

import heapq
import itertools
import logging
import threading
import time
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    """Handle for a pending one-shot or repeating timer"""

    def __init__(self, scheduler: "Scheduler", callback: Callable[..., Any],
                 args: tuple, interval: Optional[float] = None):
        self._scheduler = scheduler
        self.callback = callback
        self.args = args
        self.interval = interval
        self.deadline = 0.0
        self.cancelled = False

    @property
    def repeating(self) -> bool:
        return self.interval is not None

    def cancel(self):
        self.cancelled = True


class Scheduler:
    """
    Runs timer callbacks in deadline order. Timers due at the same instant
    run in registration order; a repeating timer keeps the order it was
    registered with for all its firings.

    start() runs callbacks on a daemon thread. Without start(), call
    run_pending() yourself, e.g. with a manual clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, name: str = "scheduler"):
        self.clock = clock
        self.name = name
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()
        self._cond = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        handle = TimerHandle(self, callback, args)
        self._push(handle, self.clock() + max(0.0, delay), next(self._seq))
        return handle

    def call_every(self, interval: float, callback: Callable[..., Any], *args) -> TimerHandle:
        """First call happens one interval from now."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle(self, callback, args, interval=interval)
        self._push(handle, self.clock() + interval, next(self._seq))
        return handle

    def _push(self, handle: TimerHandle, deadline: float, order: int):
        with self._cond:
            handle.deadline = deadline
            heapq.heappush(self._heap, (deadline, order, handle))
            self._cond.notify()

    def next_deadline(self) -> Optional[float]:
        with self._cond:
            self._drop_cancelled()
            return self._heap[0][0] if self._heap else None

    def _drop_cancelled(self):
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)

    def _pop_due(self) -> Optional[TimerHandle]:
        with self._cond:
            self._drop_cancelled()
            if not self._heap or self._heap[0][0] > self.clock():
                return None
            deadline, order, handle = heapq.heappop(self._heap)
            if handle.repeating:
                # Anchored on the previous deadline so ticks do not drift
                handle.deadline = deadline + handle.interval
                heapq.heappush(self._heap, (handle.deadline, order, handle))
            return handle

    def run_pending(self) -> int:
        """Run every callback that is due now. Returns how many ran."""
        ran = 0
        while True:
            handle = self._pop_due()
            if handle is None:
                return ran
            if handle.cancelled:
                continue
            try:
                handle.callback(*handle.args)
            except Exception:
                logger.exception("Timer callback %r failed", handle.callback)
            ran += 1

    def pending(self) -> int:
        with self._cond:
            return sum(1 for _, _, h in self._heap if not h.cancelled)

    def start(self):
        """Start the background timer thread"""
        with self._cond:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self):
        with self._cond:
            self._running = False
            self._cond.notify()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=2)
        self._thread = None

    def _loop(self):
        while True:
            with self._cond:
                if not self._running:
                    return
                self._drop_cancelled()
                if self._heap:
                    timeout = max(0.0, self._heap[0][0] - self.clock())
                else:
                    timeout = None
                if timeout is None or timeout > 0:
                    self._cond.wait(timeout)
                    continue
            self.run_pending()
