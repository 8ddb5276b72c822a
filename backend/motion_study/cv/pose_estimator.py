"""
Pose landmarks and the pose-estimation capability.

The detection engine only needs a handful of keypoints (nose and both
wrists) in image-normalized coordinates. Anything that can produce a
PoseLandmarks object per frame can be injected into an analyzer session;
MediaPipePoseEstimator is the production implementation.

Updated for MediaPipe 0.10.x Tasks API.
"""

import os
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

import cv2
import numpy as np

from motion_study.config import get_settings

logger = logging.getLogger(__name__)


class PoseLandmark(IntEnum):
    """MediaPipe Pose landmark indices used by the engine."""
    NOSE = 0
    LEFT_WRIST = 15
    RIGHT_WRIST = 16


NUM_LANDMARKS = 33


@dataclass
class Landmark:
    """Single keypoint in normalized image coordinates."""
    x: float
    y: float
    visibility: float = 1.0

    def distance_to(self, other: "Landmark") -> float:
        return float(np.hypot(self.x - other.x, self.y - other.y))


@dataclass
class PoseLandmarks:
    """Pose estimation result for a single frame."""
    timestamp: float
    landmarks: List[Landmark] = field(default_factory=list)

    @classmethod
    def from_points(
        cls,
        timestamp: float,
        nose: tuple,
        left_wrist: tuple,
        right_wrist: tuple,
        visibility: float = 1.0,
    ) -> "PoseLandmarks":
        """Build a sparse pose from (x, y) tuples for the three tracked keypoints."""
        landmarks = [Landmark(0.0, 0.0, 0.0) for _ in range(NUM_LANDMARKS)]
        landmarks[PoseLandmark.NOSE] = Landmark(nose[0], nose[1], visibility)
        landmarks[PoseLandmark.LEFT_WRIST] = Landmark(left_wrist[0], left_wrist[1], visibility)
        landmarks[PoseLandmark.RIGHT_WRIST] = Landmark(right_wrist[0], right_wrist[1], visibility)
        return cls(timestamp=timestamp, landmarks=landmarks)

    @classmethod
    def from_mediapipe_tasks(cls, result, timestamp: float) -> "PoseLandmarks":
        """Create PoseLandmarks from a MediaPipe Tasks result."""
        if not result.pose_landmarks:
            return cls(timestamp=timestamp)

        # Single worker per station: first pose only
        landmarks = [
            Landmark(
                x=lm.x,
                y=lm.y,
                visibility=lm.visibility if lm.visibility is not None else 0.5,
            )
            for lm in result.pose_landmarks[0]
        ]
        return cls(timestamp=timestamp, landmarks=landmarks)

    @property
    def is_valid(self) -> bool:
        return len(self.landmarks) > 0

    @property
    def nose(self) -> Optional[Landmark]:
        return self._get(PoseLandmark.NOSE)

    @property
    def left_wrist(self) -> Optional[Landmark]:
        return self._get(PoseLandmark.LEFT_WRIST)

    @property
    def right_wrist(self) -> Optional[Landmark]:
        return self._get(PoseLandmark.RIGHT_WRIST)

    def _get(self, index: int) -> Optional[Landmark]:
        if 0 <= index < len(self.landmarks):
            return self.landmarks[index]
        return None


class PoseEstimator:
    """Capability interface: one PoseLandmarks per frame."""

    def estimate(self, frame: np.ndarray, timestamp: float) -> PoseLandmarks:
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def get_model_path(complexity: int = 0, model_dir: Optional[str] = None) -> str:
    """
    Locate the pose landmarker model file.

    Args:
        complexity: 0=lite (fastest), 1=full, 2=heavy (most accurate)
        model_dir: Directory to look in (defaults to settings.pose_model_dir)
    """
    model_names = {
        0: "pose_landmarker_lite.task",
        1: "pose_landmarker_full.task",
        2: "pose_landmarker_heavy.task",
    }
    model_dir = model_dir or get_settings().pose_model_dir
    preferred = model_names.get(complexity, model_names[0])

    for name in [preferred] + [n for n in model_names.values() if n != preferred]:
        path = os.path.abspath(os.path.join(model_dir, name))
        if os.path.exists(path):
            return path

    raise FileNotFoundError(
        f"Pose landmarker model not found in {model_dir}. "
        "Download from: https://storage.googleapis.com/mediapipe-models/pose_landmarker/"
    )


class MediaPipePoseEstimator(PoseEstimator):
    """
    Pose estimation using the MediaPipe Tasks PoseLandmarker (VIDEO mode).
    """

    def __init__(
        self,
        model_complexity: Optional[int] = None,
        min_detection_confidence: Optional[float] = None,
        min_tracking_confidence: Optional[float] = None,
        model_dir: Optional[str] = None,
    ):
        import mediapipe as mp
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        settings = get_settings()
        if model_complexity is None:
            model_complexity = settings.pose_model_complexity
        if min_detection_confidence is None:
            min_detection_confidence = settings.pose_confidence_threshold
        if min_tracking_confidence is None:
            min_tracking_confidence = settings.pose_confidence_threshold

        model_path = get_model_path(model_complexity, model_dir)
        logger.info(f"Loading pose model: {model_path}")

        base_options = python.BaseOptions(model_asset_path=model_path)
        options = vision.PoseLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.VIDEO,
            min_pose_detection_confidence=min_detection_confidence,
            min_tracking_confidence=min_tracking_confidence,
            num_poses=1,
        )

        self._mp = mp
        self.landmarker = vision.PoseLandmarker.create_from_options(options)
        self._frame_timestamp_ms = -1

    def estimate(self, frame: np.ndarray, timestamp: float) -> PoseLandmarks:
        """
        Run pose estimation on one BGR frame.

        Args:
            frame: BGR (or BGRA) image from OpenCV
            timestamp: Video time in seconds
        """
        code = cv2.COLOR_BGRA2RGB if frame.ndim == 3 and frame.shape[2] == 4 else cv2.COLOR_BGR2RGB
        rgb_frame = cv2.cvtColor(frame, code)
        mp_image = self._mp.Image(image_format=self._mp.ImageFormat.SRGB, data=rgb_frame)

        # Timestamp must be monotonically increasing in VIDEO mode
        timestamp_ms = int(timestamp * 1000)
        if timestamp_ms <= self._frame_timestamp_ms:
            timestamp_ms = self._frame_timestamp_ms + 1
        self._frame_timestamp_ms = timestamp_ms

        result = self.landmarker.detect_for_video(mp_image, timestamp_ms)
        return PoseLandmarks.from_mediapipe_tasks(result, timestamp=timestamp)

    def close(self):
        """Release resources."""
        self.landmarker.close()
