#
# conftest.py: pytest configuration and shared fixtures
#
# Synthetic frames: a fixed random texture (so template matching has
# something to lock on to) with an optional bright block painted over
# part of the trigger zone.
#

import numpy as np
import pytest

from motion_study.cv import Frame, Rect, PoseEstimator, PoseLandmarks

FRAME_SHAPE = (240, 320)
ZONE = Rect(100, 80, 60, 40)
ANCHOR = Rect(220, 150, 40, 40)


def block_texture(seed, block=4):
    """Random 4x4-pixel blocks in 0..199; coarse enough to survive the blur."""
    rng = np.random.default_rng(seed)
    cells = rng.integers(0, 200, size=(FRAME_SHAPE[0] // block, FRAME_SHAPE[1] // block))
    gray = np.kron(cells, np.ones((block, block))).astype(np.uint8)
    return np.dstack([gray, gray, gray])


@pytest.fixture(scope="session")
def background():
    """Textured BGR background, identical for every test."""
    return block_texture(1234)


@pytest.fixture(scope="session")
def other_background():
    """Unrelated texture, used where the anchor must not be found."""
    return block_texture(98765)


@pytest.fixture
def zone():
    return ZONE


@pytest.fixture
def anchor_rect():
    return ANCHOR


@pytest.fixture
def make_frame(background):
    """
    Factory: frame at `timestamp` with `coverage` of the zone painted white.

    coverage is the fraction of the zone's width covered, from the left.
    shift=(dx, dy) rolls the whole image to simulate camera drift.
    """

    def _make(timestamp=0.0, coverage=0.0, shift=(0, 0), frame_number=0):
        image = background.copy()
        if coverage > 0:
            x, y = int(ZONE.x), int(ZONE.y)
            w = int(round(ZONE.width * coverage))
            image[y:y + int(ZONE.height), x:x + w] = 255
        if shift != (0, 0):
            image = np.roll(image, shift=(shift[1], shift[0]), axis=(0, 1))
        return Frame(image=image, timestamp=timestamp, frame_number=frame_number)

    return _make


@pytest.fixture
def frame_times():
    """Factory: timestamps at `fps` from `start` up to (excluding) `end`."""

    def _times(end, fps=30.0, start=0.0):
        n = int(round((end - start) * fps))
        return [start + i / fps for i in range(n)]

    return _times


class ScriptedPoseEstimator(PoseEstimator):
    """Returns poses from a function of time and records each call."""

    def __init__(self, pose_at):
        self.pose_at = pose_at
        self.calls = []
        self.closed = False

    def estimate(self, frame, timestamp):
        self.calls.append(timestamp)
        return self.pose_at(timestamp)

    def close(self):
        self.closed = True


@pytest.fixture
def scripted_pose():
    return ScriptedPoseEstimator


@pytest.fixture
def still_pose():
    def _pose(t):
        return PoseLandmarks.from_points(t, nose=(0.5, 0.3), left_wrist=(0.45, 0.5), right_wrist=(0.55, 0.5))
    return _pose
