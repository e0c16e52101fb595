import threading
import time

import pytest

from conftest import advance
from scheduler import Scheduler


def test_callbacks_run_in_deadline_order(scheduler, clock):
    calls = []
    scheduler.call_later(2, calls.append, "b")
    scheduler.call_later(1, calls.append, "a")
    scheduler.call_later(2, calls.append, "c")

    advance(scheduler, clock, 5)

    assert calls == ["a", "b", "c"]


def test_nothing_runs_before_deadline(scheduler, clock):
    calls = []
    scheduler.call_later(1.5, calls.append, "x")

    advance(scheduler, clock, 1)
    assert calls == []
    advance(scheduler, clock, 0.5)
    assert calls == ["x"]


def test_cancelled_timer_never_runs(scheduler, clock):
    calls = []
    handle = scheduler.call_later(1, calls.append, "x")
    handle.cancel()

    advance(scheduler, clock, 2)

    assert calls == []
    assert scheduler.pending() == 0


def test_repeating_timer_keeps_its_order_on_ties(scheduler, clock):
    calls = []
    scheduler.call_every(1, calls.append, "tick")
    scheduler.call_later(3, calls.append, "done")

    advance(scheduler, clock, 3)

    assert calls == ["tick", "tick", "tick", "done"]


def test_repeating_timer_stops_when_cancelled_from_callback(scheduler, clock):
    calls = []

    def tick():
        calls.append(clock.now)
        if len(calls) == 2:
            handle.cancel()

    handle = scheduler.call_every(0.5, tick)
    advance(scheduler, clock, 10)

    assert calls == [0.5, 1.0]


def test_failing_callback_does_not_stop_others(scheduler, clock):
    calls = []

    def boom():
        raise RuntimeError("boom")

    scheduler.call_later(1, boom)
    scheduler.call_later(1, calls.append, "after")
    advance(scheduler, clock, 1)

    assert calls == ["after"]


def test_call_every_rejects_non_positive_interval(scheduler):
    with pytest.raises(ValueError):
        scheduler.call_every(0, lambda: None)


def test_background_thread_fires_timers():
    scheduler = Scheduler()
    fired = threading.Event()
    scheduler.start()
    try:
        started = time.monotonic()
        scheduler.call_later(0.05, fired.set)
        assert fired.wait(2)
        assert time.monotonic() - started >= 0.04
    finally:
        scheduler.stop()
