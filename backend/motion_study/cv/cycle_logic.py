"""
Cycle logic controller: turns the smoothed change score into work cycles.

STATE MACHINE:
    IDLE --(score > high)--> TRIGGERED
    TRIGGERED --(score < low, elapsed > MIN_CYCLE_TIME)--> COOLDOWN  [emit Cycle]
    TRIGGERED --(score < low, elapsed <= MIN_CYCLE_TIME)--> IDLE      [false trigger]
    COOLDOWN --(t > cooldown_until)--> IDLE

Two thresholds (hysteresis) keep a score hovering around one cutoff from
producing start/stop pairs; the cooldown keeps the trailing edge of one
motion from starting a second cycle.

The transition function advance_logic() is pure. CycleLogicController
wraps it for callers that prefer a stateful object.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from numbers import Integral
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)

MIN_CYCLE_TIME = 1.0  # seconds
COOLDOWN_SECONDS = 1.5  # seconds
LOW_THRESHOLD_RATIO = 0.6


class LogicState(Enum):
    IDLE = "idle"
    TRIGGERED = "triggered"
    COOLDOWN = "cooldown"


ALLOWED_TRANSITIONS: Dict[LogicState, Set[LogicState]] = {
    LogicState.IDLE: {LogicState.TRIGGERED},
    LogicState.TRIGGERED: {LogicState.COOLDOWN, LogicState.IDLE},
    LogicState.COOLDOWN: {LogicState.IDLE},
}


class CycleStatus(Enum):
    """Cycle duration versus takt time."""
    OK = "ok"
    OVER = "over"
    ABNORMAL = "abnormal"  # Set by the host (breaks, stoppages), never by the engine


class CycleLabel(Enum):
    """Motion label attached to a completed cycle."""
    OPERATION = "Operation"
    TRANSPORT = "Transport"
    IDLE = "Idle"
    UNKNOWN = "Unknown"


class LogicEvent(Enum):
    CYCLE_STARTED = "cycle_started"
    CYCLE_COMPLETED = "cycle_completed"
    FALSE_TRIGGER = "false_trigger"
    COOLDOWN_EXPIRED = "cooldown_expired"


@dataclass(frozen=True)
class Cycle:
    """A completed work cycle. Immutable once emitted."""
    id: int
    start_time: float
    end_time: float
    duration: float
    status: CycleStatus
    ai_label: Optional[CycleLabel] = None

    def mark_abnormal(self) -> "Cycle":
        return replace(self, status=CycleStatus.ABNORMAL)

    def to_dict(self) -> dict:
        """Wire form consumed by the host application."""
        return {
            "id": self.id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "status": self.status.value,
            "aiLabel": self.ai_label.value if self.ai_label else None,
        }


@dataclass(frozen=True)
class Thresholds:
    """Hysteresis pair; low is always below high."""
    high: float
    low: float

    @classmethod
    def from_sensitivity(cls, sensitivity: int) -> "Thresholds":
        """
        Derive thresholds from the 1-10 sensitivity setting.

        Higher sensitivity -> lower thresholds -> triggers more readily.
        """
        if isinstance(sensitivity, bool) or not isinstance(sensitivity, Integral):
            raise ValueError(f"Sensitivity must be an integer, got {sensitivity!r}")
        if not 1 <= sensitivity <= 10:
            raise ValueError(f"Sensitivity must be between 1 and 10, got {sensitivity}")
        high = max(0.01, 0.35 - sensitivity * 0.02)
        return cls(high=high, low=high * LOW_THRESHOLD_RATIO)

    @classmethod
    def from_high(cls, high: float) -> "Thresholds":
        return cls(high=high, low=high * LOW_THRESHOLD_RATIO)


@dataclass(frozen=True)
class LogicSnapshot:
    """Controller state between ticks."""
    state: LogicState = LogicState.IDLE
    cycle_start_time: float = 0.0
    cooldown_until: float = 0.0
    next_cycle_id: int = 1


@dataclass(frozen=True)
class LogicOutcome:
    """Result of one controller tick."""
    snapshot: LogicSnapshot
    cycle: Optional[Cycle] = None
    event: Optional[LogicEvent] = None


class InvalidTransitionError(Exception):
    """Raised when a state change is not in the allowed-transition table."""


def _transition(snapshot: LogicSnapshot, target: LogicState, **changes) -> LogicSnapshot:
    if target not in ALLOWED_TRANSITIONS[snapshot.state]:
        raise InvalidTransitionError(f"{snapshot.state.name} -> {target.name}")
    return replace(snapshot, state=target, **changes)


def advance_logic(
    snapshot: LogicSnapshot,
    score: float,
    timestamp: float,
    thresholds: Thresholds,
    takt_time: float,
    label: Optional[CycleLabel] = None,
    min_cycle_time: float = MIN_CYCLE_TIME,
    cooldown_seconds: float = COOLDOWN_SECONDS,
) -> LogicOutcome:
    """
    Evaluate one smoothed score sample.

    Args:
        snapshot: Current controller state
        score: Smoothed change score
        timestamp: Video time of the sample (seconds)
        thresholds: High/low hysteresis pair
        takt_time: Target cycle duration; longer cycles are 'over'
        label: Motion label to attach if a cycle closes on this tick

    Returns:
        LogicOutcome with the next snapshot and any emitted cycle/event
    """
    state = snapshot.state

    if state == LogicState.COOLDOWN:
        if timestamp > snapshot.cooldown_until:
            return LogicOutcome(
                snapshot=_transition(snapshot, LogicState.IDLE),
                event=LogicEvent.COOLDOWN_EXPIRED,
            )
        return LogicOutcome(snapshot=snapshot)

    if state == LogicState.IDLE:
        if score > thresholds.high:
            return LogicOutcome(
                snapshot=_transition(snapshot, LogicState.TRIGGERED, cycle_start_time=timestamp),
                event=LogicEvent.CYCLE_STARTED,
            )
        return LogicOutcome(snapshot=snapshot)

    # TRIGGERED
    if score >= thresholds.low:
        return LogicOutcome(snapshot=snapshot)

    duration = timestamp - snapshot.cycle_start_time
    if duration <= min_cycle_time:
        return LogicOutcome(
            snapshot=_transition(snapshot, LogicState.IDLE),
            event=LogicEvent.FALSE_TRIGGER,
        )

    status = CycleStatus.OVER if duration > takt_time else CycleStatus.OK
    cycle = Cycle(
        id=snapshot.next_cycle_id,
        start_time=snapshot.cycle_start_time,
        end_time=timestamp,
        duration=duration,
        status=status,
        ai_label=label,
    )
    return LogicOutcome(
        snapshot=_transition(
            snapshot,
            LogicState.COOLDOWN,
            cooldown_until=timestamp + cooldown_seconds,
            next_cycle_id=snapshot.next_cycle_id + 1,
        ),
        cycle=cycle,
        event=LogicEvent.CYCLE_COMPLETED,
    )


class CycleLogicController:
    """
    Stateful wrapper around advance_logic().

    Usage:
        controller = CycleLogicController(sensitivity=5, takt_time=30.0)
        for t, score in samples:
            cycle = controller.process(score, t)
            if cycle:
                print(cycle.duration)
    """

    def __init__(
        self,
        sensitivity: int = 5,
        takt_time: float = 30.0,
        thresholds: Optional[Thresholds] = None,
        min_cycle_time: float = MIN_CYCLE_TIME,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        on_cycle: Optional[Callable[[Cycle], None]] = None,
    ):
        self.thresholds = thresholds or Thresholds.from_sensitivity(sensitivity)
        self.takt_time = takt_time
        self.min_cycle_time = min_cycle_time
        self.cooldown_seconds = cooldown_seconds
        self.on_cycle = on_cycle
        self.snapshot = LogicSnapshot()
        self.last_event: Optional[LogicEvent] = None

    @property
    def state(self) -> LogicState:
        return self.snapshot.state

    def process(
        self,
        score: float,
        timestamp: float,
        label: Optional[CycleLabel] = None,
    ) -> Optional[Cycle]:
        """Feed one smoothed score; returns a Cycle when one completes."""
        outcome = advance_logic(
            self.snapshot,
            score,
            timestamp,
            self.thresholds,
            self.takt_time,
            label=label,
            min_cycle_time=self.min_cycle_time,
            cooldown_seconds=self.cooldown_seconds,
        )
        self.snapshot = outcome.snapshot
        self.last_event = outcome.event

        if outcome.event == LogicEvent.CYCLE_STARTED:
            logger.debug(f"Cycle started at {timestamp:.2f}s (score {score:.3f})")
        elif outcome.event == LogicEvent.FALSE_TRIGGER:
            logger.debug(f"False trigger discarded at {timestamp:.2f}s")

        if outcome.cycle is not None:
            logger.info(
                f"Cycle {outcome.cycle.id}: {outcome.cycle.start_time:.2f}s -> "
                f"{outcome.cycle.end_time:.2f}s ({outcome.cycle.duration:.2f}s, "
                f"{outcome.cycle.status.value})"
            )
            if self.on_cycle:
                self.on_cycle(outcome.cycle)
        return outcome.cycle

    def reset(self):
        """Back to IDLE; cycle numbering continues."""
        self.snapshot = LogicSnapshot(next_cycle_id=self.snapshot.next_cycle_id)
        self.last_event = None
