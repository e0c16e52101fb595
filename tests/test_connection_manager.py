import json

import pytest

from conftest import FakeSocket, advance
from connection_manager import ConnectionManager, parse_frame, validate_url
from errors import MessageFormatError, UrlValidationError
from models import ConnectionPhase

VALID_FRAME = {
    "accelerometer": {"x": 0.5, "y": -1.25, "z": 9.81},
    "gyroscope": {"x": 10, "y": 0, "z": -3.5},
    "timestamp": 1700000000123,
}


@pytest.mark.parametrize("url", [
    "ws://localhost:8080",
    "ws://192.168.1.73:8080",
    "ws://sensor.example.com",
    "ws://sensor.example.com:9000/stream/live",
])
def test_connect_valid_url_moves_to_connecting(manager, socket_factory, url):
    assert manager.state.phase == ConnectionPhase.DISCONNECTED

    manager.connect(url)

    assert manager.state.phase == ConnectionPhase.CONNECTING
    assert manager.state.url == url
    assert len(socket_factory.sockets) == 1
    assert socket_factory.last.url == url


@pytest.mark.parametrize("url", [
    "",
    "http://example.com",
    "wss://example.com",
    "ws://",
    "ws://bad host.com",
    "ws://host:port",
    "ws://" + "a" * 197 + ".com",
])
def test_connect_invalid_url_raises_and_keeps_state(manager, socket_factory, url):
    before = manager.state

    with pytest.raises(UrlValidationError):
        manager.connect(url)

    assert manager.state == before
    assert socket_factory.sockets == []


def test_validate_url_length_limit():
    url = "ws://a.com/" + "p" * (200 - len("ws://a.com/"))
    assert len(url) == 200
    assert validate_url(url) == url
    with pytest.raises(UrlValidationError, match="too long"):
        validate_url(url + "p")


def test_open_moves_to_connected(manager, socket_factory):
    manager.connect("ws://localhost:8080")
    socket_factory.last.open()

    state = manager.state
    assert state.phase == ConnectionPhase.CONNECTED
    assert state.last_error is None
    assert state.reconnect_attempts == 0


def test_backoff_doubles_and_caps(manager):
    assert [manager.backoff_delay(n) for n in range(6)] == [3, 6, 12, 24, 30, 30]


def test_consecutive_errors_exhaust_attempts_then_fail(manager, socket_factory, scheduler, clock):
    manager.connect("ws://localhost:8080")
    socket_factory.last.open()

    attempts_seen = []
    for attempt in range(manager.max_attempts):
        socket_factory.last.error()
        assert manager.state.phase == ConnectionPhase.RECONNECTING
        advance(scheduler, clock, manager.backoff_delay(attempt))
        assert manager.state.phase == ConnectionPhase.CONNECTING
        attempts_seen.append(manager.state.reconnect_attempts)

    assert attempts_seen == [1, 2, 3, 4, 5]

    socket_factory.last.error()
    state = manager.state
    assert state.phase == ConnectionPhase.FAILED
    assert state.last_error == "Maximum reconnection attempts reached"

    # Terminal until the user acts
    advance(scheduler, clock, 120)
    assert manager.state.phase == ConnectionPhase.FAILED
    assert len(socket_factory.sockets) == 6

    manager.reconnect()
    assert manager.state.phase == ConnectionPhase.CONNECTING
    assert manager.state.reconnect_attempts == 0
    assert len(socket_factory.sockets) == 7


def test_failed_state_left_by_connect(manager, socket_factory, scheduler, clock):
    manager.max_attempts = 0
    manager.connect("ws://localhost:8080")
    socket_factory.last.remote_close("bye")
    assert manager.state.phase == ConnectionPhase.FAILED

    manager.connect("ws://other.example.com")
    assert manager.state.phase == ConnectionPhase.CONNECTING
    assert manager.state.last_error is None


def test_successful_reconnect_resets_attempts(manager, socket_factory, scheduler, clock):
    manager.connect("ws://localhost:8080")
    socket_factory.last.open()
    socket_factory.last.remote_close("server restart")
    assert manager.state.last_error == "server restart"

    advance(scheduler, clock, 3)
    assert manager.state.reconnect_attempts == 1
    socket_factory.last.open()

    assert manager.state.phase == ConnectionPhase.CONNECTED
    assert manager.state.reconnect_attempts == 0
    assert manager.state.last_error is None


def test_only_one_reconnect_pending(manager, socket_factory, scheduler, clock):
    manager.connect("ws://localhost:8080")
    socket_factory.last.error()
    socket_factory.last.remote_close("closed after error")

    assert scheduler.pending() == 1
    advance(scheduler, clock, 3)
    assert len(socket_factory.sockets) == 2


def test_socket_creation_failure_is_retried(manager, socket_factory, scheduler, clock):
    socket_factory.fail = True
    manager.connect("ws://localhost:8080")

    state = manager.state
    assert state.phase == ConnectionPhase.RECONNECTING
    assert "Failed to connect" in state.last_error

    socket_factory.fail = False
    advance(scheduler, clock, 3)
    assert manager.state.phase == ConnectionPhase.CONNECTING
    assert len(socket_factory.sockets) == 1


def test_disconnect_twice_is_idempotent(manager, socket_factory):
    seen = []
    manager.subscribe(seen.append)
    manager.connect("ws://localhost:8080")
    socket_factory.last.open()

    manager.disconnect()
    once = manager.state
    count = len(seen)
    manager.disconnect()

    assert manager.state == once
    assert len(seen) == count
    assert once.phase == ConnectionPhase.DISCONNECTED
    assert once.last_error is None
    assert once.last_message_time is None
    assert once.reconnect_attempts == 0
    assert socket_factory.last.closed


def test_disconnect_cancels_pending_reconnect(manager, socket_factory, scheduler, clock):
    manager.connect("ws://localhost:8080")
    socket_factory.last.error()
    manager.disconnect()

    advance(scheduler, clock, 60)
    assert len(socket_factory.sockets) == 1
    assert manager.state.phase == ConnectionPhase.DISCONNECTED


def test_events_from_replaced_socket_are_ignored(manager, socket_factory):
    manager.connect("ws://localhost:8080")
    old = socket_factory.last
    manager.connect("ws://localhost:9090")
    assert old.closed

    old.error()
    old.remote_close("late close")
    assert manager.state.phase == ConnectionPhase.CONNECTING
    assert manager.state.last_error is None


def test_reconnect_without_url_is_noop(manager, socket_factory):
    manager.reconnect()
    assert manager.state.phase == ConnectionPhase.DISCONNECTED
    assert socket_factory.sockets == []


def test_valid_frame_is_delivered(manager, socket_factory):
    samples = []
    manager.on_sample(samples.append)
    manager.connect("ws://localhost:8080")
    socket_factory.last.open()

    socket_factory.last.message(VALID_FRAME)

    assert len(samples) == 1
    sample = samples[0]
    assert (sample.accelerometer.x, sample.accelerometer.y, sample.accelerometer.z) == (0.5, -1.25, 9.81)
    assert (sample.gyroscope.x, sample.gyroscope.y, sample.gyroscope.z) == (10, 0, -3.5)
    assert sample.timestamp == 1700000000123
    assert manager.state.last_message_time == 1_700_000_000_000


def test_missing_timestamp_defaults_to_receipt_time(manager, socket_factory):
    samples = []
    manager.on_sample(samples.append)
    manager.connect("ws://localhost:8080")
    socket_factory.last.open()

    frame = dict(VALID_FRAME)
    del frame["timestamp"]
    socket_factory.last.message(frame)

    assert samples[0].timestamp == 1_700_000_000_000


def test_malformed_frame_keeps_connection_open(manager, socket_factory):
    samples = []
    manager.on_sample(samples.append)
    manager.connect("ws://localhost:8080")
    socket = socket_factory.last
    socket.open()

    socket.message({"accelerometer": {"x": 1, "y": 2, "z": 3}})

    assert samples == []
    state = manager.state
    assert state.phase == ConnectionPhase.CONNECTED
    assert state.last_error.startswith("Invalid message format")
    assert not socket.closed

    socket.message(VALID_FRAME)
    assert len(samples) == 1


@pytest.mark.parametrize("raw", [
    "not json at all",
    "[1, 2, 3]",
    json.dumps({"accelerometer": {"x": "1", "y": 2, "z": 3}, "gyroscope": {"x": 0, "y": 0, "z": 0}}),
    json.dumps({"accelerometer": {"x": True, "y": 2, "z": 3}, "gyroscope": {"x": 0, "y": 0, "z": 0}}),
    json.dumps({"accelerometer": {"x": 1, "y": 2}, "gyroscope": {"x": 0, "y": 0, "z": 0}}),
    json.dumps({**VALID_FRAME, "timestamp": "yesterday"}),
])
def test_parse_frame_rejects_bad_shapes(raw):
    with pytest.raises(MessageFormatError):
        parse_frame(raw, received_at=0)


def test_send_only_while_connected(manager, socket_factory):
    assert manager.send({"cmd": "ping"}) is False

    manager.connect("ws://localhost:8080")
    assert manager.send({"cmd": "ping"}) is False

    socket_factory.last.open()
    assert manager.send({"cmd": "ping"}) is True
    assert json.loads(socket_factory.last.sent[0]) == {"cmd": "ping"}


def test_state_notifications_follow_transitions(manager, socket_factory):
    phases = []
    manager.subscribe(lambda s: phases.append(s.phase))

    manager.connect("ws://localhost:8080")
    socket_factory.last.open()
    socket_factory.last.error()

    assert phases == [
        ConnectionPhase.CONNECTING,
        ConnectionPhase.CONNECTED,
        ConnectionPhase.RECONNECTING,
    ]


def test_socket_failing_during_creation_is_dropped(scheduler):
    class ImmediateErrorFactory:
        def __call__(self, url, handlers):
            socket = FakeSocket(url, handlers)
            handlers.on_error(OSError("connection refused"))
            return socket

    manager = ConnectionManager(socket_factory=ImmediateErrorFactory(), scheduler=scheduler)
    manager.connect("ws://localhost:8080")

    assert manager.state.phase == ConnectionPhase.RECONNECTING
    assert manager._socket is None
    assert scheduler.pending() == 1
