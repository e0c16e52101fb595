"""
WebSocket transport for the sensor link
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.sync.client import ClientConnection, connect

logger = logging.getLogger(__name__)


@dataclass
class SocketHandlers:
    """Event callbacks of one socket. Exactly one of on_error/on_close ends it."""
    on_open: Callable[[], None]
    on_message: Callable[[str], None]
    on_error: Callable[[Exception], None]
    on_close: Callable[[str], None]


class Socket(Protocol):
    def send(self, text: str) -> None: ...

    def close(self) -> None: ...


SocketFactory = Callable[[str, SocketHandlers], Socket]


class WebSocketTransport:
    """
    One outbound websocket. Connects and reads on a daemon thread and
    reports everything through the handlers.
    """

    def __init__(self, url: str, handlers: SocketHandlers, open_timeout: float = 10.0):
        self.url = url
        self.handlers = handlers
        self.open_timeout = open_timeout
        self._ws: Optional[ClientConnection] = None
        self._closing = False
        self._thread = threading.Thread(
            target=self._run, name=f"ws-reader {url}", daemon=True
        )
        self._thread.start()

    def _run(self):
        try:
            with connect(self.url, open_timeout=self.open_timeout) as ws:
                self._ws = ws
                if not self._closing:
                    self.handlers.on_open()
                    for message in ws:
                        if isinstance(message, bytes):
                            message = message.decode("utf-8", errors="replace")
                        self.handlers.on_message(message)
            self.handlers.on_close("Connection closed")
        except ConnectionClosedOK as e:
            self.handlers.on_close(e.rcvd.reason if e.rcvd and e.rcvd.reason else "Connection closed")
        except ConnectionClosed as e:
            self.handlers.on_error(e)
        except Exception as e:
            # Includes failures to open (refused, DNS, timeout, handshake)
            self.handlers.on_error(e)

    def send(self, text: str) -> None:
        if self._ws is None:
            raise RuntimeError("websocket is not open")
        self._ws.send(text)

    def close(self) -> None:
        self._closing = True
        if self._ws is not None:
            self._ws.close()


def websocket_factory(url: str, handlers: SocketHandlers) -> WebSocketTransport:
    return WebSocketTransport(url, handlers)
