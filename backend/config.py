"""
Configuration settings for the Fall Monitor backend
"""

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Sensor connection
DEFAULT_SERVER_URL = "ws://192.168.1.73:8080"
RECONNECT_INTERVAL_SECONDS = 3.0
MAX_RECONNECT_DELAY_SECONDS = 30.0
MAX_RECONNECT_ATTEMPTS = 5

# Endpoint URL validation
URL_PROTOCOL = "ws://"
URL_MAX_LENGTH = 200
URL_PATTERN = r"^ws://[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*(:[0-9]{1,5})?(/\S*)?$"

# Fall detection thresholds
ACCEL_SUDDEN_THRESHOLD = 20.0   # m/s² - jump from baseline
GYRO_SUDDEN_THRESHOLD = 300.0   # deg/s - jump from baseline
IMPACT_THRESHOLD = 15.0         # m/s²
POST_IMPACT_THRESHOLD = 5.0     # m/s² - near free-fall / lying still

# History windows, counted in samples
IMPACT_WINDOW = 500
MOVEMENT_WINDOW = 1000
BASELINE_WINDOW = 5

# Movement detection
MOVEMENT_THRESHOLD = 0.5
SMOOTHING_FACTOR = 0.3  # EMA weight of the newest value

# Confidence scoring
WEIGHT_SUDDEN_ACCEL = 0.3
WEIGHT_SUDDEN_GYRO = 0.3
WEIGHT_IMPACT = 0.4
FALL_CONFIDENCE = 0.7
POTENTIAL_FALL_CONFIDENCE = 0.4

# Alerts
COUNTDOWN_DURATION = 30   # seconds
COUNTDOWN_INTERVAL = 1.0  # seconds between ticks
FALL_ALERT_MESSAGE = "Fall Detected! Are you OK?"
IM_OK_MESSAGE = "Glad you're OK!"
VIBRATION_PATTERNS = {
    "fall": [0, 500, 200, 500],      # [wait, vibrate, wait, vibrate] ms
    "warning": [0, 200, 100, 200],
    "success": [0, 100],
}
SOUND_FILE = "assets/sounds/alert.wav"

# Database - SQLite by default
DATABASE_URL = "sqlite:///./fall_monitor.db"

# API settings
API_HOST = "0.0.0.0"
API_PORT = 8000

TIMEZONE = "Europe/Berlin"

ENV_PREFIX = "FALL_MONITOR_"


class ProcessorConfig(BaseModel):
    """Tunables of the signal processor"""
    accel_sudden_threshold: float = ACCEL_SUDDEN_THRESHOLD
    gyro_sudden_threshold: float = GYRO_SUDDEN_THRESHOLD
    impact_threshold: float = IMPACT_THRESHOLD
    post_impact_threshold: float = POST_IMPACT_THRESHOLD
    baseline_window: int = Field(default=BASELINE_WINDOW, ge=1)
    movement_window: int = Field(default=MOVEMENT_WINDOW, ge=1)
    history_length: int = Field(default=max(IMPACT_WINDOW, MOVEMENT_WINDOW), ge=1)
    movement_threshold: float = MOVEMENT_THRESHOLD
    smoothing_factor: float = Field(default=SMOOTHING_FACTOR, ge=0.0, le=1.0)
    weight_sudden_accel: float = WEIGHT_SUDDEN_ACCEL
    weight_sudden_gyro: float = WEIGHT_SUDDEN_GYRO
    weight_impact: float = WEIGHT_IMPACT
    fall_confidence: float = FALL_CONFIDENCE
    potential_fall_confidence: float = POTENTIAL_FALL_CONFIDENCE


class AlertConfig(BaseModel):
    """Everything the alert orchestrator needs, passed in at construction"""
    countdown_duration: int = Field(default=COUNTDOWN_DURATION, ge=0)
    countdown_interval: float = Field(default=COUNTDOWN_INTERVAL, gt=0)
    sound_enabled: bool = True
    vibration_enabled: bool = True
    vibration_patterns: Dict[str, List[int]] = Field(
        default_factory=lambda: {k: list(v) for k, v in VIBRATION_PATTERNS.items()}
    )
    fall_message: str = FALL_ALERT_MESSAGE
    im_ok_message: str = IM_OK_MESSAGE


class FallDetectionConfig(BaseModel):
    """
    User-facing detection thresholds kept with the settings.
    Not the same values as the processor constants above.
    """
    accelerometer_threshold: float = 15
    gyroscope_threshold: float = 500
    impact_threshold: float = 20
    recovery_time: int = 5000  # ms


class AppSettings(BaseModel):
    server_url: str = DEFAULT_SERVER_URL
    sound_enabled: bool = True
    vibration_enabled: bool = True
    fall_detection: FallDetectionConfig = Field(default_factory=FallDetectionConfig)
    sound_file: Optional[str] = SOUND_FILE
    database_url: str = DATABASE_URL
    api_host: str = API_HOST
    api_port: int = API_PORT
    timezone: str = TIMEZONE
    auto_connect: bool = True

    def alert_config(self) -> AlertConfig:
        return AlertConfig(
            sound_enabled=self.sound_enabled,
            vibration_enabled=self.vibration_enabled,
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(dotenv_path: Optional[str] = None) -> AppSettings:
    """
    Build settings from FALL_MONITOR_* environment variables.
    A .env file is loaded first if present.
    """
    load_dotenv(dotenv_path=dotenv_path)
    defaults = AppSettings()

    return AppSettings(
        server_url=os.getenv(ENV_PREFIX + "SERVER_URL", defaults.server_url),
        sound_enabled=_env_bool("SOUND_ENABLED", defaults.sound_enabled),
        vibration_enabled=_env_bool("VIBRATION_ENABLED", defaults.vibration_enabled),
        sound_file=os.getenv(ENV_PREFIX + "SOUND_FILE", defaults.sound_file),
        database_url=os.getenv(ENV_PREFIX + "DATABASE_URL", defaults.database_url),
        api_host=os.getenv(ENV_PREFIX + "API_HOST", defaults.api_host),
        api_port=int(os.getenv(ENV_PREFIX + "API_PORT", defaults.api_port)),
        timezone=os.getenv(ENV_PREFIX + "TIMEZONE", defaults.timezone),
        auto_connect=_env_bool("AUTO_CONNECT", defaults.auto_connect),
    )
