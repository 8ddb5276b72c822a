"""
Anchor-based drift compensation.

The anchor is a small, visually distinctive patch (a fixture corner, a
label on the bench) captured once at setup. Every processed frame the
tracker searches a window around the anchor's last known position with
normalized cross-correlation and reports how far it has moved. The
resulting offset is applied to every zone before scoring.

A low-confidence match never moves the offset: the last good offset is
kept and the result is flagged as lost until a confident match returns.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from motion_study.cv.geometry import Offset, Rect, extract_roi
from motion_study.cv.frame_source import to_gray

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_MARGIN = 50
DEFAULT_MATCH_CONFIDENCE = 0.6


@dataclass(frozen=True, eq=False)
class AnchorTemplate:
    """Grayscale patch captured from the anchor rect."""
    rect: Rect
    image: np.ndarray

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])


def capture_anchor(anchor_rect: Rect, frame_image: np.ndarray) -> Optional[AnchorTemplate]:
    """Capture the anchor template, or None for a degenerate rect."""
    if anchor_rect is None or frame_image is None:
        return None
    roi = extract_roi(frame_image, anchor_rect)
    if roi is None:
        logger.warning(f"Anchor capture skipped: degenerate rect {anchor_rect}")
        return None

    image = np.ascontiguousarray(to_gray(roi)).copy()
    image.setflags(write=False)
    # Keep the clamped origin so offsets are measured from where the patch really is
    bounds = anchor_rect.clamp_to(frame_image.shape[1], frame_image.shape[0])
    x, y, w, h = bounds
    return AnchorTemplate(rect=Rect(x, y, w, h), image=image)


@dataclass(frozen=True)
class TrackingResult:
    """Outcome of one anchor search."""
    offset: Offset
    lost: bool
    confidence: float = 0.0


class AnchorTracker:
    """Windowed template matcher for the anchor patch."""

    def __init__(
        self,
        search_margin: int = DEFAULT_SEARCH_MARGIN,
        match_confidence: float = DEFAULT_MATCH_CONFIDENCE,
    ):
        self.search_margin = search_margin
        self.match_confidence = match_confidence

    def track(
        self,
        frame_gray: Optional[np.ndarray],
        template: Optional[AnchorTemplate],
        last_offset: Offset = Offset(),
    ) -> TrackingResult:
        """
        Locate the anchor near its last known position.

        Args:
            frame_gray: Full grayscale frame
            template: Captured anchor (None -> offset stays put, not lost)
            last_offset: Offset from the previous successful match

        Returns:
            TrackingResult with the new offset, or the unchanged last
            offset and lost=True if the best match is not confident
        """
        if template is None:
            return TrackingResult(offset=last_offset, lost=False, confidence=0.0)
        if frame_gray is None:
            return TrackingResult(offset=last_offset, lost=True, confidence=0.0)

        frame_h, frame_w = frame_gray.shape[:2]
        margin = self.search_margin
        anchor = template.rect

        last_x = int(anchor.x) + last_offset.x
        last_y = int(anchor.y) + last_offset.y

        search_x = max(0, last_x - margin)
        search_y = max(0, last_y - margin)
        search_w = min(frame_w - search_x, template.width + margin * 2)
        search_h = min(frame_h - search_y, template.height + margin * 2)

        if search_w < template.width or search_h < template.height:
            logger.debug("Anchor search window smaller than template")
            return TrackingResult(offset=last_offset, lost=True, confidence=0.0)

        window = frame_gray[search_y:search_y + search_h, search_x:search_x + search_w]

        try:
            result = cv2.matchTemplate(window, template.image, cv2.TM_CCOEFF_NORMED)
            _, max_val, _, max_loc = cv2.minMaxLoc(result)
        except cv2.error as e:
            logger.debug(f"Anchor matching failed: {e}")
            return TrackingResult(offset=last_offset, lost=True, confidence=0.0)

        # Flat templates correlate to NaN/inf
        if not np.isfinite(max_val):
            return TrackingResult(offset=last_offset, lost=True, confidence=0.0)
        if max_val <= self.match_confidence:
            return TrackingResult(offset=last_offset, lost=True, confidence=float(max_val))

        found_x = search_x + max_loc[0]
        found_y = search_y + max_loc[1]
        offset = Offset(x=int(found_x - anchor.x), y=int(found_y - anchor.y))
        return TrackingResult(offset=offset, lost=False, confidence=float(max_val))
