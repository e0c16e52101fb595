"""
Data models for the Fall Monitor backend
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Vector3(BaseModel):
    """Three-axis reading, unit agnostic"""
    model_config = ConfigDict(frozen=True, strict=True, allow_inf_nan=False)

    x: float
    y: float
    z: float


class SensorFrame(BaseModel):
    """Inbound wire frame as sent by the wearable"""
    model_config = ConfigDict(strict=True, allow_inf_nan=False)

    accelerometer: Vector3
    gyroscope: Vector3
    timestamp: Optional[float] = None  # ms


class SensorSample(BaseModel):
    """Validated sample, immutable once built"""
    model_config = ConfigDict(frozen=True)

    accelerometer: Vector3
    gyroscope: Vector3
    timestamp: int  # ms since epoch


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ConnectionState(BaseModel):
    """Connection snapshot handed to observers"""
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    last_error: Optional[str] = None
    last_message_time: Optional[int] = None  # ms
    reconnect_attempts: int = Field(default=0, ge=0)
    url: Optional[str] = None


class DetectionStatus(str, Enum):
    NORMAL = "normal"
    POTENTIAL_FALL = "potential_fall"
    FALL_DETECTED = "fall_detected"
    RECOVERY = "recovery"


class MovementStatus(str, Enum):
    MOVING = "moving"
    STATIONARY = "stationary"


class DetectionDetails(BaseModel):
    acceleration_magnitude: float
    orientation_change: float
    impact_detected: bool
    recovery_detected: bool


class DetectionResult(BaseModel):
    """Classification of a single sample"""
    is_fall: bool
    confidence: float = Field(ge=0.0, le=1.0)
    status: DetectionStatus
    movement_status: MovementStatus
    details: DetectionDetails
    timestamp: int  # ms, copied from the sample


class AlertType(str, Enum):
    FALL = "fall"
    WARNING = "warning"
    SUCCESS = "success"


class AlertState(BaseModel):
    is_active: bool = False
    type: AlertType = AlertType.SUCCESS
    countdown: int = Field(default=0, ge=0)
    message: str = ""


class SessionStats(BaseModel):
    """Statistics for the current monitoring session"""
    total_readings: int
    fall_count: int
    potential_fall_count: int
    alert_count: int
    last_detection: Optional[datetime] = None


class DetectionEvent(BaseModel):
    """Stored non-normal detection"""
    id: Optional[int] = None
    timestamp: datetime
    status: DetectionStatus
    confidence: float
    acceleration_magnitude: float
    orientation_change: float


class AlertEvent(BaseModel):
    """Stored alert episode start"""
    id: Optional[int] = None
    timestamp: datetime
    type: AlertType
    message: str
