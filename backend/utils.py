import logging
import sys
import threading
import time
from datetime import datetime
from typing import Callable, Generic, List, TypeVar

import pytz

from config import TIMEZONE

logger = logging.getLogger(__name__)

T = TypeVar("T")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_local(ms: int, tz_name: str = TIMEZONE) -> datetime:
    """Convert epoch milliseconds to a timezone-aware datetime."""
    utc = datetime.fromtimestamp(ms / 1000.0, tz=pytz.UTC)
    return utc.astimezone(pytz.timezone(tz_name))


def ms_to_utc_naive(ms: int) -> datetime:
    """Epoch milliseconds as a naive UTC datetime, the storage format."""
    return datetime.fromtimestamp(ms / 1000.0, tz=pytz.UTC).replace(tzinfo=None)


def to_local(dt: datetime, tz_name: str = TIMEZONE) -> datetime:
    """Convert a naive or aware datetime to the configured timezone.
    Naive values are taken as UTC, which is how they are stored.
    """
    tz = pytz.timezone(tz_name)
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt).astimezone(tz)
    return dt.astimezone(tz)


def setup_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        root.addHandler(handler)


class Subscribers(Generic[T]):
    """
    Callback registry. Each callback gets every published value;
    one failing callback does not stop the rest.
    """

    def __init__(self, name: str):
        self.name = name
        self._callbacks: List[Callable[[T], None]] = []
        self._lock = threading.Lock()

    def add(self, callback: Callable[[T], None]) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return unsubscribe

    def publish(self, value: T) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(value)
            except Exception:
                logger.exception("%s subscriber failed", self.name)
