"""
Analyzer session: owns the zones, captured models and engine state for
one video, and runs the per-frame detection step.

PER-FRAME STEP (change-detection gate, ~20 Hz):
1. Anchor tracking -> drift offset (last good offset kept when lost)
2. Change score of zone 0 against its reference model
3. EMA smoothing of the score
4. Cycle logic on the smoothed score -> optional Cycle

Pose estimation runs behind its own, slower gate (~15 Hz) and only keeps
the motion classifier current; its label is attached when a cycle closes.

step() is a pure function over an immutable EngineState so the engine can
be driven deterministically in tests without a video loop.
AnalyzerSession holds the mutable configuration around it (zones, models,
mode) and publishes cycles and status messages through callbacks.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

import numpy as np

from motion_study.config import Settings, get_settings
from motion_study.cv.geometry import Offset, Rect
from motion_study.cv.frame_source import Frame, to_gray
from motion_study.cv.reference_model import ReferenceModel, ReferenceStore, capture_reference
from motion_study.cv.change_scorer import ChangeScorer, SignalState
from motion_study.cv.anchor_tracker import (
    AnchorTemplate, AnchorTracker, TrackingResult, capture_anchor
)
from motion_study.cv.cycle_logic import (
    Cycle, CycleLabel, InvalidTransitionError, LogicEvent, LogicSnapshot,
    LogicState, Thresholds, advance_logic
)
from motion_study.cv.motion_classifier import MotionClassifier
from motion_study.cv.pose_estimator import PoseEstimator

logger = logging.getLogger(__name__)


class SessionMode(Enum):
    SETUP = "setup"
    RUNNING = "running"


MODE_TRANSITIONS: Dict[SessionMode, Set[SessionMode]] = {
    SessionMode.SETUP: {SessionMode.RUNNING},
    SessionMode.RUNNING: {SessionMode.SETUP},
}


class SetupTool(Enum):
    """What a drag on the video currently draws."""
    NONE = "none"
    START_ZONE = "start_roi"
    END_ZONE = "end_roi"
    ANCHOR = "anchor"


# Drawing tools are only available while configuring
TOOLS_BY_MODE: Dict[SessionMode, Set[SetupTool]] = {
    SessionMode.SETUP: set(SetupTool),
    SessionMode.RUNNING: {SetupTool.NONE},
}


class StatusEvent(Enum):
    SESSION_RESET = "session_reset"
    REFERENCE_CAPTURED = "reference_captured"
    CAPTURE_FAILED = "capture_failed"
    ANCHOR_CAPTURED = "anchor_captured"
    ARMED = "armed"
    ARM_REJECTED = "arm_rejected"
    STOPPED = "stopped"
    CYCLE_STARTED = "cycle_started"
    CYCLE_COMPLETED = "cycle_completed"
    FALSE_TRIGGER = "false_trigger"
    COOLDOWN_EXPIRED = "cooldown_expired"
    TRACKING_LOST = "tracking_lost"
    TRACKING_RECOVERED = "tracking_recovered"


class ConfigurationError(Exception):
    """The session is not configured well enough to start detection."""


@dataclass
class TriggerStep:
    """A user-drawn zone. Only the first zone drives cycle detection."""
    id: str
    name: str
    rect: Rect
    is_active: bool = True
    hit_count: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "rect": self.rect.to_dict(),
            "isActive": self.is_active,
            "hitCount": self.hit_count,
        }


@dataclass(frozen=True)
class EngineConfig:
    """Tuning constants for one session."""
    sensitivity: int = 5
    takt_time: float = 30.0
    blur_size: int = 5
    diff_threshold: int = 25
    ema_alpha: float = 0.2
    min_cycle_time: float = 1.0
    cooldown_seconds: float = 1.5
    search_margin: int = 50
    match_confidence: float = 0.6
    score_interval: float = 0.05
    pose_interval: float = 0.066
    move_threshold: float = 0.005
    reach_threshold: float = 0.02
    extension_threshold: float = 0.4
    pause_on_tracking_lost: bool = False

    def __post_init__(self):
        # Validates the sensitivity type and range
        Thresholds.from_sensitivity(self.sensitivity)
        if self.takt_time <= 0:
            raise ValueError(f"Takt time must be positive, got {self.takt_time}")
        if self.blur_size < 1 or self.blur_size % 2 == 0:
            raise ValueError(f"Blur size must be a positive odd number, got {self.blur_size}")
        if not 0 < self.ema_alpha <= 1:
            raise ValueError(f"EMA alpha must be in (0, 1], got {self.ema_alpha}")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides) -> "EngineConfig":
        """Build a config from application settings, with per-session overrides."""
        s = settings or get_settings()
        values = dict(
            sensitivity=s.default_sensitivity,
            takt_time=s.default_takt_time,
            blur_size=s.blur_size,
            diff_threshold=s.diff_threshold,
            ema_alpha=s.ema_alpha,
            min_cycle_time=s.min_cycle_time,
            cooldown_seconds=s.cooldown_seconds,
            search_margin=s.anchor_search_margin,
            match_confidence=s.anchor_match_confidence,
            score_interval=s.score_interval,
            pose_interval=s.pose_interval,
            move_threshold=s.move_threshold,
            reach_threshold=s.reach_threshold,
            extension_threshold=s.extension_threshold,
            pause_on_tracking_lost=s.pause_on_tracking_lost,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds.from_sensitivity(self.sensitivity)


@dataclass(frozen=True)
class EngineState:
    """Everything the per-frame step carries from one tick to the next."""
    signal: SignalState = SignalState()
    logic: LogicSnapshot = LogicSnapshot()
    offset: Offset = Offset()
    tracking_lost: bool = False
    last_score_at: Optional[float] = None
    last_pose_at: Optional[float] = None


@dataclass(frozen=True, eq=False)
class EngineSetup:
    """Read-only inputs captured during configuration."""
    zone_rect: Optional[Rect]
    reference: Optional[ReferenceModel]
    anchor: Optional[AnchorTemplate] = None


@dataclass(frozen=True)
class StepResult:
    state: EngineState
    processed: bool = False
    cycle: Optional[Cycle] = None
    event: Optional[LogicEvent] = None
    tracking: Optional[TrackingResult] = None


def step(
    state: EngineState,
    frame_gray: Optional[np.ndarray],
    timestamp: float,
    config: EngineConfig,
    setup: EngineSetup,
    label: Optional[CycleLabel] = None,
    now: Optional[float] = None,
) -> StepResult:
    """
    Run one change-detection tick.

    Args:
        state: State from the previous tick
        frame_gray: Grayscale frame, or None if decoding failed
        timestamp: Video time of the frame (drives the cycle logic)
        config: Session tuning
        setup: Zone, reference model and anchor template
        label: Motion label to attach if a cycle closes on this tick
        now: Clock for the rate gate (defaults to timestamp)

    Returns:
        StepResult; processed is False when the rate gate skipped the tick
    """
    now = timestamp if now is None else now
    if state.last_score_at is not None and now - state.last_score_at < config.score_interval:
        return StepResult(state=state)

    offset, lost, tracking = state.offset, state.tracking_lost, None
    if setup.anchor is not None and frame_gray is not None:
        tracker = AnchorTracker(config.search_margin, config.match_confidence)
        tracking = tracker.track(frame_gray, setup.anchor, offset)
        offset, lost = tracking.offset, tracking.lost

    state = replace(state, offset=offset, tracking_lost=lost, last_score_at=now)

    if lost and config.pause_on_tracking_lost:
        return StepResult(state=state, processed=True, tracking=tracking)

    raw = 0.0
    if setup.zone_rect is not None:
        scorer = ChangeScorer(config.blur_size, config.diff_threshold)
        raw = scorer.score(frame_gray, setup.reference, setup.zone_rect, offset)
    signal = state.signal.update(raw, config.ema_alpha)

    outcome = advance_logic(
        state.logic,
        signal.smooth,
        timestamp,
        config.thresholds,
        config.takt_time,
        label=label,
        min_cycle_time=config.min_cycle_time,
        cooldown_seconds=config.cooldown_seconds,
    )

    return StepResult(
        state=replace(state, signal=signal, logic=outcome.snapshot),
        processed=True,
        cycle=outcome.cycle,
        event=outcome.event,
        tracking=tracking,
    )


StatusCallback = Callable[[StatusEvent, str], None]
CycleCallback = Callable[[Cycle], None]


class AnalyzerSession:
    """
    Cycle-detection session for one video.

    Usage:
        with AnalyzerSession(EngineConfig(sensitivity=6, takt_time=20.0)) as session:
            session.add_zone(Rect(100, 80, 60, 40))
            session.capture_reference(empty_frame)
            session.arm()
            for frame in frames:
                cycle = session.process_frame(frame)
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        pose_estimator: Optional[PoseEstimator] = None,
        on_cycle: Optional[CycleCallback] = None,
        on_status: Optional[StatusCallback] = None,
    ):
        self.config = config or EngineConfig.from_settings()
        self.pose_estimator = pose_estimator
        self.on_cycle = on_cycle
        self.on_status = on_status

        self.motion = MotionClassifier(
            move_threshold=self.config.move_threshold,
            reach_threshold=self.config.reach_threshold,
            extension_threshold=self.config.extension_threshold,
        )
        self.references = ReferenceStore()
        self.zones: List[TriggerStep] = []
        self.anchor_rect: Optional[Rect] = None
        self.anchor: Optional[AnchorTemplate] = None

        self.mode = SessionMode.SETUP
        self.tool = SetupTool.NONE
        self.state = EngineState()
        self.cycles: List[Cycle] = []
        self.status = "Ready"
        self.video_id: Optional[str] = None

        self._gray_buffer: Optional[np.ndarray] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_video(self, video_id: Optional[str] = None):
        """New video source: everything configured for the old one is dropped."""
        self.video_id = video_id
        self.mode = SessionMode.SETUP
        self.tool = SetupTool.NONE
        self.zones.clear()
        self.references.clear()
        self.anchor_rect = None
        self.anchor = None
        self.state = EngineState(logic=LogicSnapshot(next_cycle_id=self.state.logic.next_cycle_id))
        self.motion.reset()
        self._emit(StatusEvent.SESSION_RESET, "System reset. Please configure zones.")

    def set_mode(self, mode: SessionMode):
        if mode == self.mode:
            return
        if mode not in MODE_TRANSITIONS[self.mode]:
            raise InvalidTransitionError(f"{self.mode.name} -> {mode.name}")
        self.mode = mode
        self.tool = SetupTool.NONE
        # Signal and logic restart on every mode change; cycle numbering continues
        self.state = EngineState(
            offset=self.state.offset,
            tracking_lost=self.state.tracking_lost,
            logic=LogicSnapshot(next_cycle_id=self.state.logic.next_cycle_id),
        )

    def arm(self):
        """
        Start detection.

        Raises:
            ConfigurationError: No active zone, no reference for it, or an
                anchor rect without a captured template
        """
        problem = self._configuration_problem()
        if problem:
            self._emit(StatusEvent.ARM_REJECTED, problem)
            raise ConfigurationError(problem)

        self.set_mode(SessionMode.RUNNING)
        self.motion.reset()
        self._emit(StatusEvent.ARMED, "System armed. Detecting cycles.")

    def stop(self):
        """Back to setup; any in-progress cycle is dropped."""
        if self.mode == SessionMode.RUNNING:
            self.set_mode(SessionMode.SETUP)
            self._emit(StatusEvent.STOPPED, "Analysis stopped.")

    def close(self):
        """Release the frame buffer and the pose estimator."""
        self._gray_buffer = None
        if self.pose_estimator is not None:
            self.pose_estimator.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ------------------------------------------------------------------
    # Zone / anchor configuration
    # ------------------------------------------------------------------

    def set_tool(self, tool: SetupTool):
        if tool not in TOOLS_BY_MODE[self.mode]:
            raise InvalidTransitionError(f"Tool {tool.name} not available in {self.mode.name} mode")
        self.tool = tool

    def draw(self, rect: Rect) -> Optional[TriggerStep]:
        """Finish a drag with the current tool. Returns the zone drawn, if any."""
        rect = rect.normalized()
        tool = self.tool
        self.tool = SetupTool.NONE

        if tool == SetupTool.ANCHOR:
            self.set_anchor(rect)
            return None
        if tool == SetupTool.START_ZONE:
            return self._place_zone(0, rect, "Start Zone")
        if tool == SetupTool.END_ZONE:
            return self._place_zone(1, rect, "End Zone")
        return None

    def add_zone(self, rect: Rect, name: Optional[str] = None) -> TriggerStep:
        self._require_setup()
        if not rect.is_valid:
            raise ValueError(f"Zone must have positive size: {rect}")
        zone = TriggerStep(
            id=uuid.uuid4().hex[:8],
            name=name or f"Zone {len(self.zones) + 1}",
            rect=rect,
        )
        self.zones.append(zone)
        return zone

    def move_zone(self, zone_id: str, rect: Rect) -> TriggerStep:
        """Change a zone's rect; its reference model no longer matches and is dropped."""
        self._require_setup()
        zone = self.get_zone(zone_id)
        if not rect.is_valid:
            raise ValueError(f"Zone must have positive size: {rect}")
        if rect != zone.rect:
            zone.rect = rect
            if self.references.invalidate(zone_id):
                logger.info(f"Zone {zone.name} moved, reference cleared")
        return zone

    def remove_zone(self, zone_id: str):
        self._require_setup()
        zone = self.get_zone(zone_id)
        self.zones.remove(zone)
        self.references.invalidate(zone_id)

    def get_zone(self, zone_id: str) -> TriggerStep:
        for zone in self.zones:
            if zone.id == zone_id:
                return zone
        raise KeyError(f"Unknown zone: {zone_id}")

    def zone_at(self, x: float, y: float) -> Optional[TriggerStep]:
        """Hit-test for dragging a zone."""
        for zone in self.zones:
            if zone.rect.contains_point(x, y):
                return zone
        return None

    def set_anchor(self, rect: Optional[Rect]):
        """Redraw (or clear) the anchor; the old template and drift are discarded."""
        self._require_setup()
        self.anchor_rect = rect.normalized() if rect is not None else None
        self.anchor = None
        self.state = replace(self.state, offset=Offset(), tracking_lost=False)

    @property
    def primary_zone(self) -> Optional[TriggerStep]:
        return self.zones[0] if self.zones else None

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    def capture_reference(self, frame: Frame, zone_id: Optional[str] = None) -> Optional[ReferenceModel]:
        """
        Capture the background model for a zone (default: the primary zone).

        A failed capture keeps whatever model the zone already had.
        """
        zone = self.get_zone(zone_id) if zone_id else self.primary_zone
        if zone is None:
            self._emit(StatusEvent.CAPTURE_FAILED, "Draw a zone before capturing the reference.")
            return None
        if not frame.is_valid:
            self._emit(StatusEvent.CAPTURE_FAILED, "Capture failed: frame could not be read.")
            return None

        model = capture_reference(
            zone.rect,
            frame.image,
            blur_size=self.config.blur_size,
            zone_id=zone.id,
            timestamp=frame.timestamp,
        )
        if model is None:
            self._emit(StatusEvent.CAPTURE_FAILED, f"Capture failed: zone '{zone.name}' is too small.")
            return None

        self.references.put(model)
        self._emit(StatusEvent.REFERENCE_CAPTURED, f"Reference captured for '{zone.name}'.")
        return model

    def capture_anchor(self, frame: Frame) -> Optional[AnchorTemplate]:
        if self.anchor_rect is None:
            self._emit(StatusEvent.CAPTURE_FAILED, "Draw the anchor box before capturing it.")
            return None
        if not frame.is_valid:
            self._emit(StatusEvent.CAPTURE_FAILED, "Capture failed: frame could not be read.")
            return None

        template = capture_anchor(self.anchor_rect, frame.image)
        if template is None:
            self._emit(StatusEvent.CAPTURE_FAILED, "Capture failed: anchor box is too small.")
            return None

        self.anchor = template
        self.state = replace(self.state, offset=Offset(), tracking_lost=False)
        self._emit(StatusEvent.ANCHOR_CAPTURED, "Anchor captured. Tracking active.")
        return template

    # ------------------------------------------------------------------
    # Per-frame processing
    # ------------------------------------------------------------------

    def process_frame(self, frame: Frame, now: Optional[float] = None) -> Optional[Cycle]:
        """
        Per-tick entry point. Does nothing unless the session is running.

        Args:
            frame: Current frame (image may be None after a decode failure)
            now: Clock for the rate gates (defaults to frame.timestamp)

        Returns:
            The Cycle completed on this tick, if any
        """
        if self.mode != SessionMode.RUNNING:
            return None
        now = frame.timestamp if now is None else now

        if self.pose_estimator is not None and frame.is_valid:
            self._update_pose(frame, now)

        zone = self.primary_zone
        setup = EngineSetup(
            zone_rect=zone.rect if zone else None,
            reference=self.references.get(zone.id) if zone else None,
            anchor=self.anchor,
        )
        frame_gray = self._gray(frame) if frame.is_valid else None

        was_lost = self.state.tracking_lost
        result = step(
            self.state,
            frame_gray,
            frame.timestamp,
            self.config,
            setup,
            label=self.motion.cycle_label(),
            now=now,
        )
        self.state = result.state
        if not result.processed:
            return None

        if result.state.tracking_lost and not was_lost:
            self._emit(StatusEvent.TRACKING_LOST, "Tracking lost. Using last known position.")
        elif was_lost and not result.state.tracking_lost:
            self._emit(StatusEvent.TRACKING_RECOVERED, "Tracking recovered.")

        self._publish(result, frame.timestamp)
        return result.cycle

    def _update_pose(self, frame: Frame, now: float):
        last = self.state.last_pose_at
        if last is not None and now - last < self.config.pose_interval:
            return
        self.state = replace(self.state, last_pose_at=now)
        pose = self.pose_estimator.estimate(frame.image, frame.timestamp)
        self.motion.update(pose)

    def _gray(self, frame: Frame) -> np.ndarray:
        image = frame.image
        if image.ndim == 2:
            return image
        if self._gray_buffer is None or self._gray_buffer.shape != image.shape[:2]:
            self._gray_buffer = np.empty(image.shape[:2], dtype=image.dtype)
        return to_gray(image, dst=self._gray_buffer)

    def _publish(self, result: StepResult, timestamp: float):
        event = result.event
        if event == LogicEvent.CYCLE_STARTED:
            self._emit(StatusEvent.CYCLE_STARTED, "Cycle started")
        elif event == LogicEvent.FALSE_TRIGGER:
            self._emit(StatusEvent.FALSE_TRIGGER, "False trigger (too short)")
        elif event == LogicEvent.COOLDOWN_EXPIRED:
            self._emit(StatusEvent.COOLDOWN_EXPIRED, "Ready")
        elif event == LogicEvent.CYCLE_COMPLETED:
            cycle = result.cycle
            self.cycles.append(cycle)
            if self.primary_zone:
                self.primary_zone.hit_count += 1
            self._emit(StatusEvent.CYCLE_COMPLETED, f"Cycle logged: {cycle.duration:.2f}s")
            if self.on_cycle:
                self.on_cycle(cycle)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def logic_state(self) -> LogicState:
        return self.state.logic.state

    @property
    def offset(self) -> Offset:
        return self.state.offset

    @property
    def tracking_lost(self) -> bool:
        return self.state.tracking_lost

    def _configuration_problem(self) -> Optional[str]:
        zone = self.primary_zone
        if zone is None:
            return "No zone drawn. Draw the start zone first."
        if not zone.is_active:
            return f"Zone '{zone.name}' is disabled."
        if zone.id not in self.references:
            return "No reference captured. Capture the empty zone first."
        if self.anchor_rect is not None and self.anchor is None:
            return "Anchor box drawn but not captured."
        return None

    def _require_setup(self):
        if self.mode != SessionMode.SETUP:
            raise InvalidTransitionError("Zones can only be edited in setup mode")

    def _place_zone(self, index: int, rect: Rect, name: str) -> Optional[TriggerStep]:
        if not rect.is_valid:
            return None
        if index < len(self.zones):
            return self.move_zone(self.zones[index].id, rect)
        if index == len(self.zones):
            return self.add_zone(rect, name)
        logger.warning(f"Cannot draw {name} before the zones preceding it")
        return None

    def _emit(self, event: StatusEvent, message: str):
        self.status = message
        if event in (StatusEvent.CAPTURE_FAILED, StatusEvent.ARM_REJECTED, StatusEvent.TRACKING_LOST):
            logger.warning(message)
        else:
            logger.info(message)
        if self.on_status:
            self.on_status(event, message)
