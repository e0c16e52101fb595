import json

import pytest

from alert_orchestrator import AlertOrchestrator
from config import AlertConfig
from connection_manager import ConnectionManager
from errors import ResourceInitError
from scheduler import Scheduler


class ManualClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def advance(scheduler: Scheduler, clock: ManualClock, seconds: float):
    """Move the clock forward, firing timers deadline by deadline."""
    target = clock.now + seconds
    while True:
        deadline = scheduler.next_deadline()
        if deadline is None or deadline > target:
            break
        clock.now = max(clock.now, deadline)
        scheduler.run_pending()
    clock.now = target


class FakeSocket:
    def __init__(self, url, handlers):
        self.url = url
        self.handlers = handlers
        self.sent = []
        self.closed = False

    # socket interface
    def send(self, text):
        self.sent.append(text)

    def close(self):
        self.closed = True

    # drive events from the test
    def open(self):
        self.handlers.on_open()

    def message(self, payload):
        if not isinstance(payload, (str, bytes)):
            payload = json.dumps(payload)
        self.handlers.on_message(payload)

    def error(self, exc=None):
        self.handlers.on_error(exc or OSError("connection reset"))

    def remote_close(self, reason=""):
        self.handlers.on_close(reason)


class FakeSocketFactory:
    def __init__(self):
        self.sockets = []
        self.fail = False

    def __call__(self, url, handlers):
        if self.fail:
            raise OSError("network unreachable")
        socket = FakeSocket(url, handlers)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


class FakeAudio:
    def __init__(self, fail_load=False, fail_play=False):
        self.fail_load = fail_load
        self.fail_play = fail_play
        self.calls = []

    def load(self):
        self.calls.append("load")
        if self.fail_load:
            raise ResourceInitError("no audio device")

    def play(self):
        self.calls.append("play")
        if self.fail_play:
            raise RuntimeError("audio device busy")

    def stop(self):
        self.calls.append("stop")

    def unload(self):
        self.calls.append("unload")


class FakeHaptics:
    def __init__(self):
        self.patterns = []

    def vibrate(self, pattern):
        self.patterns.append(pattern)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return Scheduler(clock=clock)


@pytest.fixture
def socket_factory():
    return FakeSocketFactory()


@pytest.fixture
def manager(socket_factory, scheduler):
    return ConnectionManager(
        socket_factory=socket_factory,
        scheduler=scheduler,
        clock_ms=lambda: 1_700_000_000_000,
    )


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def haptics():
    return FakeHaptics()


@pytest.fixture
def orchestrator(audio, haptics, scheduler):
    alerts = AlertOrchestrator(
        AlertConfig(countdown_duration=3),
        audio=audio,
        haptics=haptics,
        scheduler=scheduler,
    )
    alerts.initialize()
    return alerts
