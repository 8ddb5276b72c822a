"""
Heuristic motion classifier based on hand movement.

Velocity and extension are both tracked per hand with the same
exponential weighting (0.7 old / 0.3 new). The current frame is:
- IDLE: hands essentially still
- TRANSPORT: hands moving fast and far from the body (reach / carry)
- OPERATION: anything else (localized manipulation)

The label attached to a cycle is a snapshot at the moment the cycle
closes; no voting over the cycle's lifetime is done.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from motion_study.cv.cycle_logic import CycleLabel
from motion_study.cv.pose_estimator import Landmark, PoseLandmarks

logger = logging.getLogger(__name__)

MOVE_THRESHOLD = 0.005
REACH_THRESHOLD = 0.02
EXTENSION_THRESHOLD = 0.4
HISTORY_WEIGHT = 0.7


class MotionLabel(Enum):
    IDLE = "IDLE"
    OPERATION = "OPERATION"
    TRANSPORT = "TRANSPORT"


@dataclass(frozen=True)
class MotionReading:
    """Classifier output for one pose sample."""
    label: MotionLabel
    confidence: float
    avg_velocity: float
    avg_extension: float


class MotionClassifier:
    """Per-hand smoothed velocity/extension classifier."""

    def __init__(
        self,
        move_threshold: float = MOVE_THRESHOLD,
        reach_threshold: float = REACH_THRESHOLD,
        extension_threshold: float = EXTENSION_THRESHOLD,
    ):
        self.move_threshold = move_threshold
        self.reach_threshold = reach_threshold
        self.extension_threshold = extension_threshold
        self.reset()

    def reset(self):
        self.left_velocity = 0.0
        self.right_velocity = 0.0
        self.left_extension = 0.0
        self.right_extension = 0.0
        self._last_left: Optional[Landmark] = None
        self._last_right: Optional[Landmark] = None
        self.samples = 0
        self.current = MotionReading(MotionLabel.IDLE, 0.0, 0.0, 0.0)

    def update(self, pose: PoseLandmarks) -> MotionReading:
        """
        Fold one pose into the smoothed state and reclassify.

        Poses missing the nose or either wrist leave the state untouched.
        """
        nose, left, right = pose.nose, pose.left_wrist, pose.right_wrist
        if not pose.is_valid or nose is None or left is None or right is None:
            return self.current

        left_step = left.distance_to(self._last_left) if self._last_left else 0.0
        right_step = right.distance_to(self._last_right) if self._last_right else 0.0
        self._last_left, self._last_right = left, right

        w = HISTORY_WEIGHT
        self.left_velocity = self.left_velocity * w + left_step * (1 - w)
        self.right_velocity = self.right_velocity * w + right_step * (1 - w)

        # Extension is measured from the nose as the body center
        left_reach = left.distance_to(nose)
        right_reach = right.distance_to(nose)
        if self.samples == 0:
            self.left_extension, self.right_extension = left_reach, right_reach
        else:
            self.left_extension = self.left_extension * w + left_reach * (1 - w)
            self.right_extension = self.right_extension * w + right_reach * (1 - w)
        self.samples += 1

        avg_velocity = (self.left_velocity + self.right_velocity) / 2
        avg_extension = (self.left_extension + self.right_extension) / 2

        if avg_velocity < self.move_threshold:
            label = MotionLabel.IDLE
        elif avg_velocity >= self.reach_threshold and avg_extension > self.extension_threshold:
            label = MotionLabel.TRANSPORT
        else:
            label = MotionLabel.OPERATION

        if label != self.current.label:
            logger.debug(f"Motion {self.current.label.value} -> {label.value} "
                         f"(v={avg_velocity:.4f}, ext={avg_extension:.3f})")

        self.current = MotionReading(
            label=label,
            confidence=min(1.0, avg_velocity * 50),
            avg_velocity=avg_velocity,
            avg_extension=avg_extension,
        )
        return self.current

    @property
    def label(self) -> MotionLabel:
        return self.current.label

    def cycle_label(self) -> CycleLabel:
        """Label for a cycle closing now."""
        if self.samples == 0:
            return CycleLabel.UNKNOWN
        if self.current.label == MotionLabel.TRANSPORT:
            return CycleLabel.TRANSPORT
        # A detected cycle implies work, so a momentary IDLE still counts as operation
        return CycleLabel.OPERATION
