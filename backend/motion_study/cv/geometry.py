"""
Rectangle and coordinate helpers shared by the detection engine.

All rectangles live in source-video pixel coordinates, never in screen
or display pixels. Use map_screen_to_video() to convert a pointer position
from a letterboxed display into source coordinates before building a Rect.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Offset:
    """Drift offset (pixels) applied to every zone before sampling."""
    x: int = 0
    y: int = 0


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in source-video pixels."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_points(cls, x1: float, y1: float, x2: float, y2: float) -> "Rect":
        """Build a rect from two drag corners in any order."""
        return cls(
            x=min(x1, x2),
            y=min(y1, y2),
            width=abs(x2 - x1),
            height=abs(y2 - y1),
        )

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0

    def normalized(self) -> "Rect":
        """Flip negative extents produced while dragging."""
        return Rect.from_points(self.x, self.y, self.x + self.width, self.y + self.height)

    def translated(self, offset: Offset) -> "Rect":
        return Rect(self.x + offset.x, self.y + offset.y, self.width, self.height)

    def contains_point(self, x: float, y: float) -> bool:
        """Check if a point is within this rect (edges inclusive)."""
        return (self.x <= x <= self.x + self.width and
                self.y <= y <= self.y + self.height)

    def clamp_to(self, frame_width: int, frame_height: int) -> Optional[Tuple[int, int, int, int]]:
        """
        Integer pixel bounds of this rect clipped to the frame.

        Returns (x, y, w, h), or None when the clipped region is one
        pixel wide/tall or less.
        """
        x = int(np.floor(self.x))
        y = int(np.floor(self.y))
        w = int(np.floor(self.width))
        h = int(np.floor(self.height))

        if x < 0:
            w += x
            x = 0
        if y < 0:
            h += y
            y = 0
        if x + w > frame_width:
            w = frame_width - x
        if y + h > frame_height:
            h = frame_height - y

        if w <= 1 or h <= 1:
            return None
        return x, y, w, h

    def to_dict(self) -> dict:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


def extract_roi(image: np.ndarray, rect: Rect) -> Optional[np.ndarray]:
    """
    Copy the region under `rect` out of `image`.

    Returns None for a degenerate region after clamping to the image.
    """
    if image is None or image.ndim < 2:
        return None
    bounds = rect.clamp_to(image.shape[1], image.shape[0])
    if bounds is None:
        return None
    x, y, w, h = bounds
    return image[y:y + h, x:x + w].copy()


def map_screen_to_video(
    screen_x: float,
    screen_y: float,
    element_box: Tuple[float, float, float, float],
    video_size: Tuple[int, int],
) -> Tuple[float, float]:
    """
    Map a pointer position on a letterboxed display to source-video pixels.

    Args:
        screen_x, screen_y: Pointer position in display coordinates
        element_box: (left, top, width, height) of the display element
        video_size: (width, height) of the source video

    Returns:
        (x, y) clamped to the video bounds
    """
    left, top, box_w, box_h = element_box
    video_w, video_h = video_size
    if box_w <= 0 or box_h <= 0 or video_w <= 0 or video_h <= 0:
        return 0.0, 0.0

    video_ratio = video_w / video_h
    element_ratio = box_w / box_h

    display_w, display_h = box_w, box_h
    offset_x = offset_y = 0.0
    if element_ratio > video_ratio:
        # Bars on the sides
        display_w = box_h * video_ratio
        offset_x = (box_w - display_w) / 2
    else:
        # Bars top and bottom
        display_h = box_w / video_ratio
        offset_y = (box_h - display_h) / 2

    rel_x = screen_x - left - offset_x
    rel_y = screen_y - top - offset_y

    x = rel_x * (video_w / display_w)
    y = rel_y * (video_h / display_h)
    return (
        float(min(max(x, 0.0), video_w)),
        float(min(max(y, 0.0), video_h)),
    )
