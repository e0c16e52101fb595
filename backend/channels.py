"""
Notification channels used by alerts: looping sound and vibration
"""

import logging
import os
import shutil
import subprocess
import threading
from typing import Any, Callable, List, Optional, Protocol, Sequence

from errors import ResourceInitError

logger = logging.getLogger(__name__)


class AudioChannel(Protocol):
    def load(self) -> None: ...

    def play(self) -> None: ...

    def stop(self) -> None: ...

    def unload(self) -> None: ...


class HapticChannel(Protocol):
    def vibrate(self, pattern: List[int]) -> None: ...


class CommandSound:
    """
    Plays a sound file on repeat through an external player (aplay by
    default) until stopped. play() always starts from the beginning.
    """

    def __init__(self, path: str, player: Sequence[str] = ("aplay", "-q")):
        self.path = path
        self.player = list(player)
        self.loaded = False
        self._stop_event = threading.Event()
        self._process: Optional[subprocess.Popen] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def load(self):
        if not os.path.isfile(self.path):
            raise ResourceInitError(f"Sound file not found: {self.path}")
        if shutil.which(self.player[0]) is None:
            raise ResourceInitError(f"Audio player not available: {self.player[0]}")
        self.loaded = True

    def _loop(self, stop_event: threading.Event):
        while not stop_event.is_set():
            with self._lock:
                if stop_event.is_set():
                    return
                self._process = subprocess.Popen(
                    self.player + [self.path],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
                process = self._process
            if process.wait() != 0 and not stop_event.is_set():
                logger.warning("Audio player exited with %s", process.returncode)
                return

    def play(self):
        if not self.loaded:
            raise ResourceInitError("Sound is not loaded")
        self.stop()
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._loop, args=(self._stop_event,), name="alert-sound", daemon=True
        )
        self._thread.start()

    def stop(self):
        self._stop_event.set()
        with self._lock:
            if self._process is not None and self._process.poll() is None:
                self._process.terminate()
            self._process = None

    def unload(self):
        self.stop()
        self.loaded = False


class LoggingHaptics:
    """Fallback vibration channel: records the pattern in the log"""

    def vibrate(self, pattern: List[int]):
        logger.info("Vibration pattern %s", pattern)


class DeviceHaptics:
    """
    Vibrates the wearable itself by sending `{"vibrate": pattern}` over the
    sensor link. Patterns that cannot be delivered (link down) go to the
    fallback channel instead.
    """

    def __init__(self, send: Callable[[Any], bool], fallback: Optional[HapticChannel] = None):
        self.send = send
        self.fallback = fallback or LoggingHaptics()

    def vibrate(self, pattern: List[int]):
        if self.send({"vibrate": list(pattern)}):
            return
        logger.warning("Vibration not delivered to the device")
        self.fallback.vibrate(pattern)
