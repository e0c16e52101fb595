"""
Sensor link: one websocket, frame validation and reconnection with backoff
"""

import json
import logging
import re
import threading
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from config import (
    MAX_RECONNECT_ATTEMPTS,
    MAX_RECONNECT_DELAY_SECONDS,
    RECONNECT_INTERVAL_SECONDS,
    URL_MAX_LENGTH,
    URL_PATTERN,
    URL_PROTOCOL,
)
from errors import ConnectionError as LinkError
from errors import MaxReconnectAttemptsError, MessageFormatError, UrlValidationError
from models import ConnectionPhase, ConnectionState, SensorFrame, SensorSample
from scheduler import Scheduler, TimerHandle
from transport import Socket, SocketFactory, SocketHandlers, websocket_factory
from utils import Subscribers, now_ms

logger = logging.getLogger(__name__)

_URL_RE = re.compile(URL_PATTERN)

# Phases in which a socket event counts as a connection failure
_LIVE_PHASES = (
    ConnectionPhase.CONNECTING,
    ConnectionPhase.CONNECTED,
    ConnectionPhase.RECONNECTING,
)


def validate_url(url: str) -> str:
    """Raise UrlValidationError unless url is an acceptable ws:// endpoint."""
    if not isinstance(url, str) or not url.startswith(URL_PROTOCOL):
        raise UrlValidationError(f"WebSocket URL must start with {URL_PROTOCOL}")
    if len(url) > URL_MAX_LENGTH:
        raise UrlValidationError("WebSocket URL is too long")
    if not _URL_RE.match(url):
        raise UrlValidationError("Invalid WebSocket URL format")
    return url


def parse_frame(raw: Any, received_at: int) -> SensorSample:
    """
    Turn one inbound frame into a SensorSample.
    Missing timestamps default to `received_at`.
    """
    try:
        frame = SensorFrame.model_validate_json(raw)
    except ValidationError as e:
        raise MessageFormatError(
            f"Invalid message format: {e.errors()[0]['msg']}"
        ) from e

    timestamp = int(frame.timestamp) if frame.timestamp is not None else received_at
    return SensorSample(
        accelerometer=frame.accelerometer,
        gyroscope=frame.gyroscope,
        timestamp=timestamp,
    )


class ConnectionManager:
    """
    Owns exactly one logical connection to the wearable.

    Socket events arrive on transport threads and timer callbacks on the
    scheduler thread; every state change goes through one re-entrant lock
    and is published to subscribers in the order it was applied.

    Events from a socket that has since been replaced or closed by the
    manager are ignored.
    """

    def __init__(
        self,
        socket_factory: SocketFactory = websocket_factory,
        scheduler: Optional[Scheduler] = None,
        reconnect_interval: float = RECONNECT_INTERVAL_SECONDS,
        max_attempts: int = MAX_RECONNECT_ATTEMPTS,
        max_delay: float = MAX_RECONNECT_DELAY_SECONDS,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.socket_factory = socket_factory
        self.reconnect_interval = reconnect_interval
        self.max_attempts = max_attempts
        self.max_delay = max_delay
        self.clock_ms = clock_ms

        if scheduler is None:
            scheduler = Scheduler(name="reconnect-timer")
            scheduler.start()
        self.scheduler = scheduler

        self._lock = threading.RLock()
        self._state = ConnectionState()
        self._url: Optional[str] = None
        self._socket: Optional[Socket] = None
        self._generation = 0
        self._reconnect_timer: Optional[TimerHandle] = None

        self._state_subscribers: Subscribers[ConnectionState] = Subscribers("connection state")
        self._sample_subscribers: Subscribers[SensorSample] = Subscribers("sensor sample")

    # ---- observation ----

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state.model_copy()

    def get_state(self) -> ConnectionState:
        return self.state

    @property
    def url(self) -> Optional[str]:
        return self._url

    def subscribe(self, callback: Callable[[ConnectionState], None]) -> Callable[[], None]:
        """Register for state snapshots. Returns an unsubscribe function."""
        return self._state_subscribers.add(callback)

    def on_sample(self, callback: Callable[[SensorSample], None]) -> Callable[[], None]:
        """Register for validated samples. Returns an unsubscribe function."""
        return self._sample_subscribers.add(callback)

    def backoff_delay(self, attempts: int) -> float:
        return min(self.reconnect_interval * (2 ** attempts), self.max_delay)

    # ---- public operations ----

    def connect(self, url: str):
        """
        Connect to `url`, replacing any current connection.
        Raises UrlValidationError without touching the current state.
        """
        validate_url(url)

        with self._lock:
            self._teardown_socket()
            self._url = url
            self._update(
                phase=ConnectionPhase.CONNECTING,
                last_error=None,
                reconnect_attempts=0,
                url=url,
            )
            logger.info("Connecting to %s", url)
            self._open()

    def disconnect(self):
        """Close the connection and stop retrying. Safe to call repeatedly."""
        with self._lock:
            self._teardown_socket()
            new_state = ConnectionState(phase=ConnectionPhase.DISCONNECTED, url=self._url)
            if new_state == self._state:
                return
            self._set_state(new_state)
            logger.info("Disconnected from %s", self._url)

    def reconnect(self):
        """User-initiated retry against the last URL, with a fresh attempt count."""
        with self._lock:
            url = self._url
            if url is None:
                logger.warning("Cannot reconnect: no URL has been connected yet")
                return
            self.disconnect()
            self.connect(url)

    def send(self, payload: Any) -> bool:
        """
        Best-effort transmit. Returns False (and logs) when not connected
        or when the transport refuses the write.
        """
        with self._lock:
            if self._state.phase != ConnectionPhase.CONNECTED or self._socket is None:
                logger.warning("Cannot send data: socket is not connected")
                return False

            if isinstance(payload, BaseModel):
                text = payload.model_dump_json()
            else:
                text = json.dumps(payload)

            try:
                self._socket.send(text)
            except Exception as e:
                logger.warning("Send failed: %s", e)
                return False
            return True

    def close(self):
        """Disconnect and stop the owned timer thread"""
        self.disconnect()
        self.scheduler.stop()

    # ---- internals ----

    def _set_state(self, state: ConnectionState):
        self._state = state
        self._state_subscribers.publish(state.model_copy())

    def _update(self, **changes):
        self._set_state(self._state.model_copy(update=changes))

    def _cancel_reconnect_timer(self):
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _teardown_socket(self):
        self._cancel_reconnect_timer()
        # Anything the old socket still reports is stale from here on
        self._generation += 1
        if self._socket is not None:
            socket, self._socket = self._socket, None
            try:
                socket.close()
            except Exception as e:
                logger.warning("Error closing socket: %s", e)

    def _open(self):
        self._generation += 1
        generation = self._generation

        handlers = SocketHandlers(
            on_open=lambda: self._handle_open(generation),
            on_message=lambda raw: self._handle_message(generation, raw),
            on_error=lambda exc: self._handle_error(generation, exc),
            on_close=lambda reason: self._handle_close(generation, reason),
        )
        try:
            socket = self.socket_factory(self._url, handlers)
        except Exception as e:
            error = LinkError(f"Failed to connect: {e}")
            logger.error("%s (%s)", error, self._url)
            self._handle_failure(str(error))
            return

        # A socket that already failed synchronously has been dropped by
        # _handle_failure and must not be kept
        if generation == self._generation and self._state.phase in (
            ConnectionPhase.CONNECTING,
            ConnectionPhase.CONNECTED,
        ):
            self._socket = socket

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _handle_open(self, generation: int):
        with self._lock:
            if not self._is_current(generation):
                return
            self._update(
                phase=ConnectionPhase.CONNECTED,
                last_error=None,
                reconnect_attempts=0,
            )
            logger.info("Connected to %s", self._url)

    def _handle_message(self, generation: int, raw: Any):
        with self._lock:
            if not self._is_current(generation):
                return
            received_at = self.clock_ms()
            try:
                sample = parse_frame(raw, received_at)
            except MessageFormatError as e:
                logger.warning("Dropped frame: %s", e)
                self._update(last_error=str(e))
                return

            self._update(last_message_time=received_at)
            self._sample_subscribers.publish(sample)

    def _handle_error(self, generation: int, exc: Exception):
        with self._lock:
            if not self._is_current(generation):
                return
            error = LinkError("Connection error occurred")
            logger.warning("%s: %s", error, exc)
            self._handle_failure(str(error))

    def _handle_close(self, generation: int, reason: str):
        with self._lock:
            if not self._is_current(generation):
                return
            logger.info("WebSocket closed: %s", reason or "no reason")
            self._handle_failure(reason or "Connection closed")

    def _handle_failure(self, error: str):
        if self._state.phase not in _LIVE_PHASES:
            return
        self._socket = None
        self._cancel_reconnect_timer()

        attempts = self._state.reconnect_attempts
        if attempts >= self.max_attempts:
            exc = MaxReconnectAttemptsError(attempts)
            logger.error("%s (%d)", exc, attempts)
            self._update(phase=ConnectionPhase.FAILED, last_error=str(exc))
            return

        delay = self.backoff_delay(attempts)
        self._update(phase=ConnectionPhase.RECONNECTING, last_error=error)
        logger.info("Reconnecting in %.1fs (attempt %d/%d)", delay, attempts + 1, self.max_attempts)
        self._reconnect_timer = self.scheduler.call_later(
            delay, self._attempt_reconnect, self._generation
        )

    def _attempt_reconnect(self, generation: int):
        with self._lock:
            if not self._is_current(generation) or self._state.phase != ConnectionPhase.RECONNECTING:
                return
            self._reconnect_timer = None
            self._update(
                phase=ConnectionPhase.CONNECTING,
                reconnect_attempts=self._state.reconnect_attempts + 1,
            )
            self._open()
