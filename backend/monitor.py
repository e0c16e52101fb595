"""
Wires the sensor link, the signal processor and the alert orchestrator
"""

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from alert_orchestrator import AlertOrchestrator
from channels import CommandSound, DeviceHaptics
from config import AppSettings
from connection_manager import ConnectionManager
from database import AlertEventDB, DetectionEventDB
from errors import UrlValidationError
from models import (
    AlertEvent,
    AlertType,
    DetectionEvent,
    DetectionResult,
    DetectionStatus,
    SensorSample,
    SessionStats,
)
from signal_processor import SignalProcessor
from utils import Subscribers, ms_to_local, ms_to_utc_naive, now_ms, to_local

logger = logging.getLogger(__name__)


class FallMonitor:
    """
    Sample in, detection out, alert when a fall is detected.

    A fall detection starts a fall alert unless a fall alert is already
    running; the running countdown is not restarted by follow-up samples.
    Non-normal detections and started alerts are stored when a session
    factory is given.
    """

    def __init__(
        self,
        settings: AppSettings,
        connection: Optional[ConnectionManager] = None,
        processor: Optional[SignalProcessor] = None,
        alerts: Optional[AlertOrchestrator] = None,
        session_factory: Optional[sessionmaker] = None,
    ):
        self.settings = settings
        self.connection = connection or ConnectionManager()
        self.processor = processor or SignalProcessor()
        if alerts is None:
            audio = CommandSound(settings.sound_file) if settings.sound_file else None
            alerts = AlertOrchestrator(
                settings.alert_config(), audio=audio, haptics=DeviceHaptics(self.connection.send)
            )
        self.alerts = alerts
        self.session_factory = session_factory

        self._lock = threading.Lock()
        self.latest_detection: Optional[DetectionResult] = None
        self.total_readings = 0
        self.fall_count = 0
        self.potential_fall_count = 0
        self.alert_count = 0

        self._detection_subscribers: Subscribers[DetectionResult] = Subscribers("detection")
        self.connection.on_sample(self.handle_sample)

    # ---- lifecycle ----

    def start(self):
        self.alerts.initialize()
        if not self.settings.auto_connect:
            return
        try:
            self.connection.connect(self.settings.server_url)
        except UrlValidationError as e:
            logger.error("Configured server URL rejected: %s", e)

    def stop(self):
        self.connection.close()
        self.alerts.cleanup()
        self.alerts.scheduler.stop()

    def subscribe_detections(self, callback: Callable[[DetectionResult], None]) -> Callable[[], None]:
        return self._detection_subscribers.add(callback)

    # ---- pipeline ----

    def handle_sample(self, sample: SensorSample) -> DetectionResult:
        with self._lock:
            result = self.processor.process(sample)
            self.latest_detection = result
            self.total_readings += 1
            if result.status == DetectionStatus.FALL_DETECTED:
                self.fall_count += 1
            elif result.status == DetectionStatus.POTENTIAL_FALL:
                self.potential_fall_count += 1

        if result.is_fall:
            current = self.alerts.state
            if not (current.is_active and current.type == AlertType.FALL):
                self.trigger_fall_alert()

        self._detection_subscribers.publish(result)

        if result.status != DetectionStatus.NORMAL:
            self._store(lambda: DetectionEventDB(
                timestamp=ms_to_utc_naive(result.timestamp),
                status=result.status.value,
                confidence=result.confidence,
                acceleration_magnitude=result.details.acceleration_magnitude,
                orientation_change=result.details.orientation_change,
            ))

        return result

    # ---- alert actions ----

    def trigger_fall_alert(self):
        self.alerts.trigger_fall_alert()
        self._record_alert()

    def trigger_warning_alert(self, message: str):
        self.alerts.trigger_warning_alert(message)
        self._record_alert()

    def handle_im_ok_response(self):
        self.alerts.handle_im_ok_response()
        self._record_alert()

    def dismiss_alert(self):
        self.alerts.dismiss_alert()

    def _record_alert(self):
        state = self.alerts.state
        with self._lock:
            self.alert_count += 1
        self._store(lambda: AlertEventDB(
            timestamp=ms_to_utc_naive(now_ms()),
            type=state.type.value,
            message=state.message,
        ))

    # ---- statistics and history ----

    def get_session_stats(self) -> SessionStats:
        with self._lock:
            latest = self.latest_detection
            return SessionStats(
                total_readings=self.total_readings,
                fall_count=self.fall_count,
                potential_fall_count=self.potential_fall_count,
                alert_count=self.alert_count,
                last_detection=self._local_time(latest.timestamp) if latest else None,
            )

    def reset_stats(self):
        """Reset statistics and detection history (new session)"""
        with self._lock:
            self.processor.reset()
            self.latest_detection = None
            self.total_readings = 0
            self.fall_count = 0
            self.potential_fall_count = 0
            self.alert_count = 0

    def _local_time(self, ms: int) -> Optional[datetime]:
        """Sample time in the configured timezone, None if it is not a usable date"""
        try:
            return ms_to_local(ms, self.settings.timezone)
        except (ValueError, OverflowError, OSError) as e:
            logger.warning("Sample timestamp %s is out of range: %s", ms, e)
            return None

    def _store(self, build_row: Callable[[], object]):
        """Build and commit one row; storage errors are logged, never raised"""
        if self.session_factory is None:
            return
        db = self.session_factory()
        try:
            row = build_row()
            db.add(row)
            db.commit()
        except Exception as e:
            logger.error("Error storing event: %s", e)
            db.rollback()
        finally:
            db.close()

    def recent_alerts(self, limit: int = 20) -> List[AlertEvent]:
        if self.session_factory is None:
            return []
        db = self.session_factory()
        try:
            rows = db.query(AlertEventDB).order_by(AlertEventDB.id.desc()).limit(limit).all()
            return [
                AlertEvent(
                    id=r.id,
                    timestamp=to_local(r.timestamp, self.settings.timezone),
                    type=AlertType(r.type),
                    message=r.message,
                )
                for r in rows
            ]
        finally:
            db.close()

    def recent_detections(self, limit: int = 50) -> List[DetectionEvent]:
        if self.session_factory is None:
            return []
        db = self.session_factory()
        try:
            rows = db.query(DetectionEventDB).order_by(DetectionEventDB.id.desc()).limit(limit).all()
            return [
                DetectionEvent(
                    id=r.id,
                    timestamp=to_local(r.timestamp, self.settings.timezone),
                    status=DetectionStatus(r.status),
                    confidence=r.confidence,
                    acceleration_magnitude=r.acceleration_magnitude,
                    orientation_change=r.orientation_change,
                )
                for r in rows
            ]
        finally:
            db.close()
