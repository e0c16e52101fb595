"""
Fall classification over a live sample stream
"""

import math
from collections import deque
from typing import Iterable, Optional

from config import ProcessorConfig
from models import (
    DetectionDetails,
    DetectionResult,
    DetectionStatus,
    MovementStatus,
    SensorSample,
    Vector3,
)


def magnitude(vector: Vector3) -> float:
    """Euclidean norm of a three-axis reading"""
    return math.sqrt(vector.x ** 2 + vector.y ** 2 + vector.z ** 2)


def moving_average(values: Iterable[float], window: int) -> float:
    """Mean of the last `window` values, 0.0 when there are none"""
    recent = list(values)[-window:]
    if not recent:
        return 0.0
    return sum(recent) / len(recent)


def ema(current: float, previous: float, factor: float) -> float:
    return current * factor + previous * (1 - factor)


class SignalProcessor:
    """
    Classifies accelerometer/gyroscope samples one at a time.

    Keeps two bounded magnitude histories (acceleration and rotation) and
    compares every new sample against a short moving-average baseline built
    from the samples before it. Uses nothing but past samples, so the result
    only depends on the accumulated history and the new sample.

    One instance per monitored subject.
    """

    def __init__(self, config: Optional[ProcessorConfig] = None):
        self.config = config or ProcessorConfig()
        self.acceleration_history: deque = deque(maxlen=self.config.history_length)
        self.rotation_history: deque = deque(maxlen=self.config.history_length)

    @property
    def sample_count(self) -> int:
        return len(self.acceleration_history)

    def _movement_status(self, acc_mag: float, gyro_mag: float) -> MovementStatus:
        cfg = self.config
        smoothed = ema(
            acc_mag + gyro_mag,
            moving_average(self.acceleration_history, cfg.movement_window),
            cfg.smoothing_factor,
        )
        if smoothed > cfg.movement_threshold:
            return MovementStatus.MOVING
        return MovementStatus.STATIONARY

    def _confidence(self, sudden_accel: bool, sudden_gyro: bool, impact: bool) -> float:
        cfg = self.config
        score = 0.0
        if sudden_accel:
            score += cfg.weight_sudden_accel
        if sudden_gyro:
            score += cfg.weight_sudden_gyro
        if impact:
            score += cfg.weight_impact
        # Rounded so that 0.3 + 0.4 lands exactly on the 0.7 band edge
        return min(1.0, max(0.0, round(score, 6)))

    def _status(self, confidence: float, recovery: bool) -> DetectionStatus:
        # Inclusive: sudden acceleration plus impact (0.3 + 0.4) from rest is a fall
        if confidence >= self.config.fall_confidence:
            return DetectionStatus.FALL_DETECTED
        if confidence > self.config.potential_fall_confidence:
            return DetectionStatus.POTENTIAL_FALL
        if recovery:
            return DetectionStatus.RECOVERY
        return DetectionStatus.NORMAL

    def process(self, sample: SensorSample) -> DetectionResult:
        """Classify one sample and add it to the history"""
        cfg = self.config

        acc_mag = magnitude(sample.accelerometer)
        gyro_mag = magnitude(sample.gyroscope)

        # Baselines come from the samples before this one
        baseline_accel = moving_average(self.acceleration_history, cfg.baseline_window)
        baseline_gyro = moving_average(self.rotation_history, cfg.baseline_window)
        had_history = len(self.acceleration_history) > 0

        self.acceleration_history.append(acc_mag)
        self.rotation_history.append(gyro_mag)

        sudden_accel = abs(acc_mag - baseline_accel) > cfg.accel_sudden_threshold
        sudden_gyro = abs(gyro_mag - baseline_gyro) > cfg.gyro_sudden_threshold
        impact = acc_mag > cfg.impact_threshold
        recovery = acc_mag < cfg.post_impact_threshold and had_history

        confidence = self._confidence(sudden_accel, sudden_gyro, impact)
        status = self._status(confidence, recovery)

        return DetectionResult(
            is_fall=status == DetectionStatus.FALL_DETECTED,
            confidence=confidence,
            status=status,
            movement_status=self._movement_status(acc_mag, gyro_mag),
            details=DetectionDetails(
                acceleration_magnitude=acc_mag,
                orientation_change=gyro_mag,
                impact_detected=impact,
                recovery_detected=recovery,
            ),
            timestamp=sample.timestamp,
        )

    def reset(self):
        """Forget all history (new subject or new session)"""
        self.acceleration_history.clear()
        self.rotation_history.clear()
