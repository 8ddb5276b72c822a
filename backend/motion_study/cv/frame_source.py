"""
Frame sources for the detection engine.

A frame is a decoded image plus the playback timestamp it belongs to.
VideoFrameSource wraps cv2.VideoCapture for offline analysis; live hosts
can build Frame objects from whatever decoder they own.
"""

import logging
from dataclasses import dataclass
from typing import Generator, Optional

import cv2
import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class Frame:
    """A decoded video frame. `image` is None when decoding failed."""
    image: Optional[np.ndarray]
    timestamp: float
    frame_number: int = 0

    @property
    def is_valid(self) -> bool:
        return self.image is not None and self.image.size > 0

    @property
    def width(self) -> int:
        return 0 if self.image is None else int(self.image.shape[1])

    @property
    def height(self) -> int:
        return 0 if self.image is None else int(self.image.shape[0])


def to_gray(image: np.ndarray, dst: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Convert a BGR, BGRA or already-gray image to single-channel gray.

    Args:
        image: Source image
        dst: Optional preallocated output buffer of matching size
    """
    if image.ndim == 2:
        return image
    channels = image.shape[2]
    if channels == 1:
        return image[:, :, 0]
    code = cv2.COLOR_BGRA2GRAY if channels == 4 else cv2.COLOR_BGR2GRAY
    if dst is not None and dst.shape == image.shape[:2] and dst.dtype == image.dtype:
        return cv2.cvtColor(image, code, dst=dst)
    return cv2.cvtColor(image, code)


@dataclass
class VideoInfo:
    """Basic stream properties."""
    width: int
    height: int
    fps: float
    total_frames: int

    @property
    def duration_seconds(self) -> float:
        return self.total_frames / self.fps if self.fps > 0 else 0.0


class VideoFrameSource:
    """
    Sequential frame reader over a video file.

    Usage:
        with VideoFrameSource(path) as source:
            for frame in source.frames():
                ...
    """

    def __init__(self, video_path: str):
        self.video_path = video_path
        self._cap: Optional[cv2.VideoCapture] = None
        self.info: Optional[VideoInfo] = None

    def open(self) -> "VideoFrameSource":
        cap = cv2.VideoCapture(self.video_path)
        if not cap.isOpened():
            cap.release()
            raise IOError(f"Failed to open video: {self.video_path}")

        fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
        if fps <= 0 or np.isnan(fps):
            logger.warning(f"Video reports no FPS, assuming 30: {self.video_path}")
            fps = 30.0

        self.info = VideoInfo(
            width=int(cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            height=int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            fps=float(fps),
            total_frames=int(cap.get(cv2.CAP_PROP_FRAME_COUNT)),
        )
        self._cap = cap
        return self

    def frames(self, start_time: float = 0.0) -> Generator[Frame, None, None]:
        """
        Yield frames in order, timestamped from the frame index.

        Args:
            start_time: Seek position in seconds before reading
        """
        if self._cap is None:
            self.open()

        fps = self.info.fps
        # Always seek: read_at() may have moved the read position
        frame_number = max(0, int(round(start_time * fps)))
        self._cap.set(cv2.CAP_PROP_POS_FRAMES, frame_number)

        while True:
            ret, image = self._cap.read()
            if not ret:
                break
            yield Frame(image=image, timestamp=frame_number / fps, frame_number=frame_number)
            frame_number += 1

    def read_at(self, timestamp: float) -> Frame:
        """Read the single frame at `timestamp` (image is None on failure)."""
        if self._cap is None:
            self.open()

        frame_number = max(0, int(round(timestamp * self.info.fps)))
        self._cap.set(cv2.CAP_PROP_POS_FRAMES, frame_number)
        ret, image = self._cap.read()
        if not ret:
            logger.warning(f"Could not decode frame {frame_number} of {self.video_path}")
            image = None
        return Frame(image=image, timestamp=frame_number / self.info.fps, frame_number=frame_number)

    def close(self):
        """Release the capture handle."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
