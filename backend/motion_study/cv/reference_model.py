"""
Background reference capture for zone change detection.

A reference model is the grayscale, Gaussian-blurred content of a zone
captured while the zone is "empty". The change scorer compares every
later frame against it. At most one live model exists per zone.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import cv2
import numpy as np

from motion_study.cv.geometry import Rect, extract_roi
from motion_study.cv.frame_source import to_gray

logger = logging.getLogger(__name__)

DEFAULT_BLUR_SIZE = 5


def blur_gray(gray: np.ndarray, blur_size: int = DEFAULT_BLUR_SIZE) -> np.ndarray:
    """Gaussian blur with a square kernel; sigma derived from kernel size."""
    if blur_size <= 1:
        return gray
    return cv2.GaussianBlur(gray, (blur_size, blur_size), 0, borderType=cv2.BORDER_DEFAULT)


@dataclass(frozen=True, eq=False)
class ReferenceModel:
    """Captured empty-state snapshot of one zone."""
    zone_id: Optional[str]
    rect: Rect
    image: np.ndarray
    blur_size: int = DEFAULT_BLUR_SIZE
    captured_at: float = 0.0

    @property
    def pixel_count(self) -> int:
        return int(self.image.shape[0] * self.image.shape[1])

    @property
    def shape(self):
        return self.image.shape[:2]


def capture_reference(
    zone_rect: Rect,
    frame_image: np.ndarray,
    blur_size: int = DEFAULT_BLUR_SIZE,
    zone_id: Optional[str] = None,
    timestamp: float = 0.0,
) -> Optional[ReferenceModel]:
    """
    Capture the reference model for a zone from the current frame.

    Args:
        zone_rect: Zone in source pixels
        frame_image: Full frame (BGR, BGRA or gray)
        blur_size: Gaussian kernel size
        zone_id: Owning zone
        timestamp: Playback time of the frame

    Returns:
        ReferenceModel, or None if the zone is degenerate or extraction failed
    """
    if zone_rect is None or frame_image is None:
        logger.warning("Reference capture skipped: no zone or no frame")
        return None

    try:
        roi = extract_roi(frame_image, zone_rect)
        if roi is None:
            logger.warning(f"Reference capture skipped: degenerate zone {zone_rect}")
            return None

        gray = to_gray(roi)
        blurred = blur_gray(gray, blur_size)
    except cv2.error as e:
        logger.warning(f"Reference capture failed: {e}")
        return None

    image = np.ascontiguousarray(blurred).copy()
    image.setflags(write=False)

    return ReferenceModel(
        zone_id=zone_id,
        rect=zone_rect,
        image=image,
        blur_size=blur_size,
        captured_at=timestamp,
    )


@dataclass
class ReferenceStore:
    """One live reference model per zone."""
    models: Dict[str, ReferenceModel] = field(default_factory=dict)

    def get(self, zone_id: str) -> Optional[ReferenceModel]:
        return self.models.get(zone_id)

    def put(self, model: ReferenceModel):
        self.models[model.zone_id] = model

    def invalidate(self, zone_id: str) -> bool:
        """Drop the model for a zone. Returns True if one existed."""
        return self.models.pop(zone_id, None) is not None

    def clear(self):
        self.models.clear()

    def __contains__(self, zone_id: str) -> bool:
        return zone_id in self.models

    def __len__(self) -> int:
        return len(self.models)
