"""
Background-subtraction change scoring.

Per frame, the zone (shifted by the tracking offset) is blurred with the
same kernel as its reference model, differenced against it, thresholded
to a binary "changed" mask, and reduced to the changed-pixel fraction.
The fraction is then smoothed with an exponential moving average before
it reaches the cycle logic.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from motion_study.cv.geometry import Offset, Rect, extract_roi
from motion_study.cv.reference_model import ReferenceModel, blur_gray, DEFAULT_BLUR_SIZE

logger = logging.getLogger(__name__)

DEFAULT_DIFF_THRESHOLD = 25
DEFAULT_EMA_ALPHA = 0.2


@dataclass(frozen=True)
class SignalState:
    """Raw and smoothed change score carried across frames."""
    raw: float = 0.0
    smooth: float = 0.0
    prev_smooth: float = 0.0

    def update(self, raw: float, alpha: float = DEFAULT_EMA_ALPHA) -> "SignalState":
        """Fold a new raw score into the EMA."""
        smooth = alpha * raw + (1 - alpha) * self.prev_smooth
        return SignalState(raw=raw, smooth=smooth, prev_smooth=smooth)


class ChangeScorer:
    """
    Fraction of zone pixels that differ from the reference model.

    Scores are in [0, 1]. Any extraction problem yields 0 rather than
    an exception, so a bad frame never interrupts the processing loop.
    """

    def __init__(
        self,
        blur_size: int = DEFAULT_BLUR_SIZE,
        diff_threshold: int = DEFAULT_DIFF_THRESHOLD,
    ):
        self.blur_size = blur_size
        self.diff_threshold = diff_threshold

    def score(
        self,
        frame_gray: Optional[np.ndarray],
        reference: Optional[ReferenceModel],
        zone_rect: Rect,
        offset: Offset = Offset(),
    ) -> float:
        """
        Compute the raw change score for one frame.

        Args:
            frame_gray: Full grayscale frame
            reference: Reference model for the zone (None -> 0)
            zone_rect: Zone in source pixels, before drift correction
            offset: Drift offset from the anchor tracker

        Returns:
            Changed-pixel fraction in [0, 1]
        """
        if reference is None or frame_gray is None:
            return 0.0

        try:
            roi = extract_roi(frame_gray, zone_rect.translated(offset))
            if roi is None:
                logger.debug(f"Zone degenerate after offset {offset}")
                return 0.0
            if roi.shape != reference.shape:
                # Clipped by the frame edge; not comparable with the reference
                logger.debug(f"Zone shape {roi.shape} != reference {reference.shape}")
                return 0.0

            blurred = blur_gray(roi, self.blur_size)
            diff = cv2.absdiff(blurred, reference.image)
            _, mask = cv2.threshold(diff, self.diff_threshold, 255, cv2.THRESH_BINARY)
            changed = cv2.countNonZero(mask)
        except cv2.error as e:
            logger.debug(f"Change scoring failed: {e}")
            return 0.0

        total = reference.pixel_count
        if total <= 0:
            return 0.0
        return float(min(1.0, changed / total))
