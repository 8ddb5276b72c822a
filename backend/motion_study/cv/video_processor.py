"""
Offline video processing pipeline for cycle detection.

PIPELINE:
1. Open video, read metadata
2. Capture the reference (and anchor) from the "empty" frame
3. Arm the analyzer session
4. Feed every frame through the session (rate-gated inside)
5. Collect cycles and compute cycle-time analytics

Configuration and video problems never raise out of process_video();
they are reported in ProcessingResult.errors.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from motion_study.config import get_settings
from motion_study.cv.analyzer_session import (
    AnalyzerSession, ConfigurationError, EngineConfig, StatusEvent
)
from motion_study.cv.cycle_logic import Cycle, CycleStatus
from motion_study.cv.frame_source import VideoFrameSource
from motion_study.cv.geometry import Rect
from motion_study.cv.pose_estimator import PoseEstimator

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Complete result of processing one video."""
    cycles: List[Cycle] = field(default_factory=list)
    analytics: Dict[str, Any] = field(default_factory=dict)

    # Video metadata
    video_duration_seconds: float = 0.0
    video_fps: float = 0.0
    frames_read: int = 0

    # Tracking diagnostics
    tracking_lost_events: int = 0
    false_triggers: int = 0

    processing_time_seconds: float = 0.0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycles": [c.to_dict() for c in self.cycles],
            "analytics": self.analytics,
            "video_duration_seconds": self.video_duration_seconds,
            "video_fps": self.video_fps,
            "frames_read": self.frames_read,
            "tracking_lost_events": self.tracking_lost_events,
            "false_triggers": self.false_triggers,
            "processing_time_seconds": self.processing_time_seconds,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
        }


def compute_cycle_analytics(
    cycles: List[Cycle],
    takt_time: Optional[float] = None,
    operating_minutes: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Cycle-time statistics for a cycle log.

    Abnormal cycles (breaks, stoppages) are counted but kept out of the
    duration statistics so they do not skew the average.
    """
    if not cycles:
        return {}

    if operating_minutes is None:
        operating_minutes = get_settings().operating_minutes

    valid = [c.duration for c in cycles if c.status != CycleStatus.ABNORMAL]
    analytics: Dict[str, Any] = {
        "total_cycles": len(cycles),
        "valid_cycles": len(valid),
        "abnormal_cycles": len(cycles) - len(valid),
        "over_takt_cycles": sum(1 for c in cycles if c.status == CycleStatus.OVER),
    }

    if valid:
        durations = np.array(valid)
        avg = float(np.mean(durations))
        std = float(np.std(durations))
        analytics.update({
            "avg_cycle_time": avg,
            "min_cycle_time": float(np.min(durations)),
            "max_cycle_time": float(np.max(durations)),
            "range": float(np.max(durations) - np.min(durations)),
            "std_dev": std,
            "stability": "HIGH" if std < 1 else ("MEDIUM" if std < 3 else "LOW"),
            "estimated_daily_output": int((operating_minutes * 60) // avg) if avg > 0 else None,
        })
        if takt_time:
            analytics["takt_time"] = takt_time
            analytics["takt_attainment"] = float(np.mean(durations <= takt_time))

    labels: Dict[str, int] = {}
    for c in cycles:
        key = c.ai_label.value if c.ai_label else "Unknown"
        labels[key] = labels.get(key, 0) + 1
    analytics["label_breakdown"] = labels

    return analytics


class VideoProcessor:
    """
    Run cycle detection over a whole video file.

    The reference model is captured at `reference_time`, a moment where
    the zone shows its empty / resting state.
    """

    def __init__(
        self,
        zone: Rect,
        anchor: Optional[Rect] = None,
        reference_time: float = 0.0,
        config: Optional[EngineConfig] = None,
        pose_estimator: Optional[PoseEstimator] = None,
        progress_callback: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize video processor.

        Args:
            zone: Cycle trigger zone in source pixels
            anchor: Optional drift-tracking anchor in source pixels
            reference_time: Time (s) of the frame used as the empty reference
            config: Engine tuning (defaults from settings)
            pose_estimator: Optional pose capability for cycle labels
            progress_callback: Called with progress in [0, 1]
        """
        self.zone = zone
        self.anchor = anchor
        self.reference_time = reference_time
        self.config = config or EngineConfig.from_settings()
        self.pose_estimator = pose_estimator
        self.progress_callback = progress_callback

    def process_video(self, video_path: str) -> ProcessingResult:
        """
        Process a video file and detect all work cycles.

        Args:
            video_path: Path to video file

        Returns:
            ProcessingResult with cycles and analytics
        """
        start_time = datetime.now()
        result = ProcessingResult()
        logger.info(f"Starting video processing: {video_path}")

        def on_status(event: StatusEvent, message: str):
            if event == StatusEvent.TRACKING_LOST:
                result.tracking_lost_events += 1
            elif event == StatusEvent.FALSE_TRIGGER:
                result.false_triggers += 1

        source = VideoFrameSource(video_path)
        # The session owns the pose estimator; it is closed on every exit path
        session = AnalyzerSession(self.config, pose_estimator=self.pose_estimator, on_status=on_status)
        try:
            try:
                source.open()
            except IOError as e:
                logger.error(str(e))
                result.errors.append(str(e))
                return result

            info = source.info
            result.video_fps = info.fps
            result.video_duration_seconds = info.duration_seconds
            logger.info(f"Video: {info.duration_seconds:.1f}s, {info.fps:.1f}fps, "
                        f"{info.width}x{info.height}")

            # =========================================================
            # STAGE 1: Configure zone, anchor and reference
            # =========================================================
            logger.info("Stage 1: Capturing reference...")

            session.load_video(video_path)
            session.add_zone(self.zone, "Start Zone")
            reference_frame = source.read_at(self.reference_time)

            if session.capture_reference(reference_frame) is None:
                result.errors.append(f"Reference capture failed: {session.status}")
                return result

            if self.anchor is not None:
                session.set_anchor(self.anchor)
                if session.capture_anchor(reference_frame) is None:
                    result.warnings.append("Anchor capture failed; drift compensation disabled")
                    session.set_anchor(None)

            try:
                session.arm()
            except ConfigurationError as e:
                result.errors.append(str(e))
                return result

            # =========================================================
            # STAGE 2: Frame loop
            # =========================================================
            logger.info("Stage 2: Processing frames...")

            total = max(1, info.total_frames)
            for frame in source.frames():
                session.process_frame(frame)
                result.frames_read += 1

                if self.progress_callback and result.frames_read % 30 == 0:
                    self.progress_callback(min(1.0, result.frames_read / total))

            session.stop()

            # =========================================================
            # STAGE 3: Analytics
            # =========================================================
            logger.info("Stage 3: Computing analytics...")

            result.cycles = list(session.cycles)
            result.analytics = compute_cycle_analytics(result.cycles, takt_time=self.config.takt_time)

            if result.tracking_lost_events:
                result.warnings.append(
                    f"Anchor tracking was lost {result.tracking_lost_events} time(s); "
                    "cycles in those stretches used the last known position"
                )
        finally:
            session.close()
            source.close()

        result.processing_time_seconds = (datetime.now() - start_time).total_seconds()
        if self.progress_callback:
            self.progress_callback(1.0)

        logger.info(
            f"Processing complete in {result.processing_time_seconds:.1f}s: "
            f"{len(result.cycles)} cycles from {result.frames_read} frames"
        )
        return result
