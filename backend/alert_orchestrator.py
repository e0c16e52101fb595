"""
Alert episodes: countdown, sound, vibration and auto-dismiss
"""

import logging
import threading
from typing import Callable, Optional

from config import AlertConfig
from errors import ResourceInitError
from models import AlertState, AlertType
from channels import AudioChannel, HapticChannel
from scheduler import Scheduler, TimerHandle
from utils import Subscribers

logger = logging.getLogger(__name__)


class AlertOrchestrator:
    """
    Runs at most one alert episode at a time.

    Triggering always tears the running episode down first (timers
    cancelled, sound stopped) and only then starts the new one. An episode
    ends either by dismiss_alert() or by its own auto-dismiss timer after
    `countdown_duration` ticks.

    Sound and vibration are independent: a failing channel is logged and
    the rest of the episode carries on.
    """

    def __init__(
        self,
        config: AlertConfig,
        audio: Optional[AudioChannel] = None,
        haptics: Optional[HapticChannel] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.config = config
        self.audio = audio
        self.haptics = haptics

        if scheduler is None:
            scheduler = Scheduler(name="alert-timer")
            scheduler.start()
        self.scheduler = scheduler

        self._lock = threading.RLock()
        self._state = AlertState()
        self._episode = 0
        self._tick_timer: Optional[TimerHandle] = None
        self._dismiss_timer: Optional[TimerHandle] = None
        self._audio_ready = False
        self._subscribers: Subscribers[AlertState] = Subscribers("alert state")

    @property
    def state(self) -> AlertState:
        with self._lock:
            return self._state.model_copy()

    @property
    def audio_ready(self) -> bool:
        return self._audio_ready

    def subscribe(self, callback: Callable[[AlertState], None]) -> Callable[[], None]:
        return self._subscribers.add(callback)

    def initialize(self):
        """Load the alert sound. A missing device only disables sound."""
        if self.audio is None:
            return
        try:
            self.audio.load()
            self._audio_ready = True
        except ResourceInitError as e:
            logger.error("Failed to initialize alert sound: %s", e)
        except Exception as e:
            logger.error("Failed to initialize alert sound: %s", ResourceInitError(str(e)))

    def cleanup(self):
        """Stop any episode and release the sound. Safe to call repeatedly."""
        with self._lock:
            self.dismiss_alert()
            self._stop_episode()
            if self.audio is not None and self._audio_ready:
                try:
                    self.audio.unload()
                except Exception as e:
                    logger.error("Failed to unload alert sound: %s", e)
                self._audio_ready = False

    def trigger_fall_alert(self):
        self._trigger(AlertType.FALL, self.config.fall_message)

    def trigger_warning_alert(self, message: str):
        self._trigger(AlertType.WARNING, message)

    def trigger_success_alert(self, message: str):
        self._trigger(AlertType.SUCCESS, message)

    def handle_im_ok_response(self):
        """User confirmed they are fine: replace the episode with a success one."""
        self.trigger_success_alert(self.config.im_ok_message)

    def dismiss_alert(self):
        with self._lock:
            if not self._state.is_active:
                return
            self._stop_episode()
            self._set_state(AlertState())
            logger.info("Alert dismissed")

    # ---- internals ----

    def _set_state(self, state: AlertState):
        self._state = state
        self._subscribers.publish(state.model_copy())

    def _stop_episode(self):
        if self._tick_timer is not None:
            self._tick_timer.cancel()
            self._tick_timer = None
        if self._dismiss_timer is not None:
            self._dismiss_timer.cancel()
            self._dismiss_timer = None
        if self.audio is not None and self._audio_ready:
            try:
                self.audio.stop()
            except Exception as e:
                logger.error("Failed to stop alert sound: %s", e)

    def _trigger(self, alert_type: AlertType, message: str):
        cfg = self.config
        with self._lock:
            self._stop_episode()
            self._episode += 1
            episode = self._episode

            self._set_state(AlertState(
                is_active=True,
                type=alert_type,
                countdown=cfg.countdown_duration,
                message=message,
            ))
            logger.warning("%s alert: %s", alert_type.value.upper(), message)

            # Registered before the dismiss timer so the last tick (0) is
            # published before the episode is dismissed
            self._tick_timer = self.scheduler.call_every(
                cfg.countdown_interval, self._tick, episode
            )
            self._dismiss_timer = self.scheduler.call_later(
                cfg.countdown_duration * cfg.countdown_interval, self._auto_dismiss, episode
            )

            self._play_sound()

        # Not under self._lock: the device channel takes the link lock
        self._vibrate(alert_type)

    def _play_sound(self):
        if not self.config.sound_enabled or self.audio is None or not self._audio_ready:
            return
        try:
            self.audio.play()
        except Exception as e:
            logger.error("Failed to play alert sound: %s", e)

    def _vibrate(self, alert_type: AlertType):
        if not self.config.vibration_enabled or self.haptics is None:
            return
        pattern = self.config.vibration_patterns.get(alert_type.value, [])
        try:
            self.haptics.vibrate(list(pattern))
        except Exception as e:
            logger.error("Failed to trigger vibration: %s", e)

    def _tick(self, episode: int):
        with self._lock:
            if episode != self._episode or not self._state.is_active:
                return
            self._set_state(self._state.model_copy(
                update={"countdown": max(0, self._state.countdown - 1)}
            ))

    def _auto_dismiss(self, episode: int):
        with self._lock:
            if episode != self._episode or not self._state.is_active:
                return
            logger.info("Alert countdown expired")
            self.dismiss_alert()
