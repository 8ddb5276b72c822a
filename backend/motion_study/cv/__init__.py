"""
Computer vision engine for automatic work-cycle detection.

PIPELINE COMPONENTS:
1. VideoFrameSource: Decoded frames + playback timestamps
2. ReferenceModel: Blurred grayscale "empty zone" baseline
3. AnchorTracker: Template-matching drift compensation
4. ChangeScorer: Changed-pixel fraction vs. the reference, EMA-smoothed
5. CycleLogicController: IDLE -> TRIGGERED -> COOLDOWN state machine
6. MotionClassifier: Hand-velocity heuristics (IDLE / OPERATION / TRANSPORT)
7. AnalyzerSession: Per-frame orchestration with rate gates
8. VideoProcessor: Offline pipeline over a video file

Usage:
    from motion_study.cv import AnalyzerSession, EngineConfig, Rect

    session = AnalyzerSession(EngineConfig(sensitivity=6, takt_time=25.0))
    session.add_zone(Rect(120, 200, 80, 60))
    session.capture_reference(empty_frame)
    session.arm()
    for frame in frames:
        cycle = session.process_frame(frame)
        if cycle:
            print(cycle.to_dict())

MediaPipe is only imported when a MediaPipePoseEstimator is constructed.
"""

from motion_study.cv.geometry import Rect, Offset, extract_roi, map_screen_to_video
from motion_study.cv.frame_source import Frame, VideoFrameSource, VideoInfo, to_gray
from motion_study.cv.reference_model import ReferenceModel, ReferenceStore, capture_reference
from motion_study.cv.change_scorer import ChangeScorer, SignalState
from motion_study.cv.anchor_tracker import (
    AnchorTemplate, AnchorTracker, TrackingResult, capture_anchor
)
from motion_study.cv.cycle_logic import (
    Cycle,
    CycleLabel,
    CycleLogicController,
    CycleStatus,
    InvalidTransitionError,
    LogicEvent,
    LogicSnapshot,
    LogicState,
    Thresholds,
    advance_logic,
)
from motion_study.cv.pose_estimator import (
    Landmark, PoseLandmark, PoseLandmarks, PoseEstimator, MediaPipePoseEstimator
)
from motion_study.cv.motion_classifier import MotionClassifier, MotionLabel, MotionReading
from motion_study.cv.analyzer_session import (
    AnalyzerSession,
    ConfigurationError,
    EngineConfig,
    EngineSetup,
    EngineState,
    SessionMode,
    SetupTool,
    StatusEvent,
    StepResult,
    TriggerStep,
    step,
)
from motion_study.cv.video_processor import (
    VideoProcessor, ProcessingResult, compute_cycle_analytics
)

__all__ = [
    # Geometry
    "Rect",
    "Offset",
    "extract_roi",
    "map_screen_to_video",

    # Frames
    "Frame",
    "VideoFrameSource",
    "VideoInfo",
    "to_gray",

    # Change detection
    "ReferenceModel",
    "ReferenceStore",
    "capture_reference",
    "ChangeScorer",
    "SignalState",

    # Drift tracking
    "AnchorTemplate",
    "AnchorTracker",
    "TrackingResult",
    "capture_anchor",

    # Cycle logic
    "Cycle",
    "CycleLabel",
    "CycleLogicController",
    "CycleStatus",
    "InvalidTransitionError",
    "LogicEvent",
    "LogicSnapshot",
    "LogicState",
    "Thresholds",
    "advance_logic",

    # Pose + motion
    "Landmark",
    "PoseLandmark",
    "PoseLandmarks",
    "PoseEstimator",
    "MediaPipePoseEstimator",
    "MotionClassifier",
    "MotionLabel",
    "MotionReading",

    # Session
    "AnalyzerSession",
    "ConfigurationError",
    "EngineConfig",
    "EngineSetup",
    "EngineState",
    "SessionMode",
    "SetupTool",
    "StatusEvent",
    "StepResult",
    "TriggerStep",
    "step",

    # Offline pipeline
    "VideoProcessor",
    "ProcessingResult",
    "compute_cycle_analytics",
]
