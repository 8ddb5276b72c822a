#
# test_cycle_logic.py: unit tests for the hysteresis cycle state machine
#

import numpy as np
import pytest

from motion_study.cv import (
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
from motion_study.cv.cycle_logic import COOLDOWN_SECONDS, MIN_CYCLE_TIME, _transition

TICK = 0.05
THRESHOLDS = Thresholds.from_high(0.2)


def ticks(end, start=0.0):
    """Sample times on the scoring grid, rounded to avoid float drift."""
    n = int(round((end - start) / TICK))
    return [round(start + k * TICK, 4) for k in range(n)]


def run(score_at, end, takt_time=30.0, thresholds=THRESHOLDS, label=None):
    """Feed score_at(t) through a fresh controller; return (cycles, events, controller)."""
    controller = CycleLogicController(takt_time=takt_time, thresholds=thresholds)
    cycles, events = [], []
    for t in ticks(end):
        cycle = controller.process(score_at(t), t, label)
        if cycle is not None:
            cycles.append(cycle)
        if controller.last_event is not None:
            events.append((t, controller.last_event))
    return cycles, events, controller


def pulse(start, stop, level=0.5):
    return lambda t: level if start <= t < stop else 0.0


# ==================== Thresholds ====================

@pytest.mark.parametrize(
    "sensitivity, high",
    [(1, 0.33), (5, 0.25), (7, 0.21), (10, 0.15)],
)
def test_thresholds_from_sensitivity(sensitivity, high):
    thresholds = Thresholds.from_sensitivity(sensitivity)
    assert thresholds.high == pytest.approx(high)
    assert thresholds.low == pytest.approx(high * 0.6)
    assert thresholds.low < thresholds.high


@pytest.mark.parametrize("sensitivity", [0, 11, -3, True, 5.5, 7.0, "5"])
def test_thresholds_reject_invalid_sensitivity(sensitivity):
    with pytest.raises(ValueError):
        Thresholds.from_sensitivity(sensitivity)


def test_thresholds_accept_numpy_integers():
    assert Thresholds.from_sensitivity(np.int64(7)) == Thresholds.from_sensitivity(7)


def test_higher_sensitivity_triggers_more_readily():
    highs = [Thresholds.from_sensitivity(s).high for s in range(1, 11)]
    assert highs == sorted(highs, reverse=True)


# ==================== Scenarios ====================

def test_no_motion_no_cycles():
    cycles, events, controller = run(lambda t: 0.0, 5.0)
    assert cycles == []
    assert events == []
    assert controller.state == LogicState.IDLE


def test_single_cycle_timing():
    cycles, events, controller = run(pulse(1.0, 3.0), 5.0, takt_time=30.0)

    assert len(cycles) == 1
    cycle = cycles[0]
    assert cycle.id == 1
    assert cycle.start_time == pytest.approx(1.0)
    assert cycle.end_time == pytest.approx(3.0)
    assert cycle.duration == pytest.approx(2.0)
    assert cycle.status == CycleStatus.OK
    assert [e for _, e in events] == [
        LogicEvent.CYCLE_STARTED,
        LogicEvent.CYCLE_COMPLETED,
        LogicEvent.COOLDOWN_EXPIRED,
    ]
    assert controller.state == LogicState.IDLE


@pytest.mark.parametrize(
    "takt_time, status",
    [(30.0, CycleStatus.OK), (2.5, CycleStatus.OK), (1.5, CycleStatus.OVER)],
)
def test_status_against_takt(takt_time, status):
    cycles, _, _ = run(pulse(1.0, 3.0), 5.0, takt_time=takt_time)
    assert cycles[0].status == status


def test_short_spike_is_false_trigger():
    cycles, events, controller = run(pulse(1.0, 1.3), 3.0)
    assert cycles == []
    assert [e for _, e in events] == [LogicEvent.CYCLE_STARTED, LogicEvent.FALSE_TRIGGER]
    assert events[1][0] == pytest.approx(1.3)
    assert controller.state == LogicState.IDLE


def test_false_trigger_boundary_is_inclusive():
    # Exactly MIN_CYCLE_TIME is still too short
    cycles, events, _ = run(pulse(1.0, 1.0 + MIN_CYCLE_TIME), 4.0)
    assert cycles == []
    assert events[-1][1] == LogicEvent.FALSE_TRIGGER


def test_hysteresis_holds_between_thresholds():
    """Scores oscillating between low and high keep the cycle open"""

    def score(t):
        if t < 1.0:
            return 0.0
        if t < 1.1:
            return 0.3
        return 0.15 if int(round(t / TICK)) % 2 else 0.19

    cycles, events, controller = run(score, 6.0)
    assert cycles == []
    assert [e for _, e in events] == [LogicEvent.CYCLE_STARTED]
    assert controller.state == LogicState.TRIGGERED


def test_cooldown_suppresses_immediate_restart():
    def score(t):
        return 0.5 if (1.0 <= t < 3.0 or 3.5 <= t < 6.0) else 0.0

    cycles, events, _ = run(score, 8.0)

    assert len(cycles) == 2
    first, second = cycles
    assert first.end_time == pytest.approx(3.0)
    # Signal was high from 3.5 but nothing starts until cooldown has expired
    assert second.start_time == pytest.approx(4.6)
    assert second.start_time > first.end_time + COOLDOWN_SECONDS
    assert second.end_time == pytest.approx(6.0)
    assert second.id == first.id + 1


def test_cooldown_tick_does_not_evaluate_score():
    snapshot = LogicSnapshot(state=LogicState.COOLDOWN, cooldown_until=2.0)
    outcome = advance_logic(snapshot, 0.9, 2.05, THRESHOLDS, 30.0)
    assert outcome.snapshot.state == LogicState.IDLE
    assert outcome.event == LogicEvent.COOLDOWN_EXPIRED

    outcome = advance_logic(snapshot, 0.9, 2.0, THRESHOLDS, 30.0)
    assert outcome.snapshot is snapshot
    assert outcome.event is None


@pytest.mark.parametrize("seed", [0, 1, 2, 3, 4])
def test_random_signals_respect_ordering(seed):
    """Random bursty signals: cycles are ordered, long enough, and separated by cooldown"""
    rng = np.random.default_rng(seed)
    times = ticks(120.0)
    levels = np.repeat(rng.random(len(times) // 10 + 1), 10)[:len(times)]
    noise = rng.normal(0, 0.05, size=len(times))
    samples = dict(zip(times, np.clip(levels + noise, 0, 1)))

    cycles, _, _ = run(lambda t: float(samples[t]), 120.0, takt_time=3.0)

    assert cycles
    for i, cycle in enumerate(cycles):
        assert cycle.id == i + 1
        assert cycle.end_time > cycle.start_time
        assert cycle.duration > MIN_CYCLE_TIME
        assert cycle.duration == pytest.approx(cycle.end_time - cycle.start_time)
        expected = CycleStatus.OVER if cycle.duration > 3.0 else CycleStatus.OK
        assert cycle.status == expected
    for prev, nxt in zip(cycles, cycles[1:]):
        assert nxt.start_time > prev.end_time + COOLDOWN_SECONDS


# ==================== Pure transition function ====================

def test_advance_logic_is_pure():
    snapshot = LogicSnapshot()
    outcome = advance_logic(snapshot, 0.5, 1.0, THRESHOLDS, 30.0)
    assert snapshot.state == LogicState.IDLE
    assert outcome.snapshot.state == LogicState.TRIGGERED
    assert outcome.snapshot.cycle_start_time == 1.0

    again = advance_logic(snapshot, 0.5, 1.0, THRESHOLDS, 30.0)
    assert again.snapshot == outcome.snapshot


def test_cycle_label_attached_at_close():
    snapshot = LogicSnapshot(state=LogicState.TRIGGERED, cycle_start_time=1.0, next_cycle_id=7)
    outcome = advance_logic(snapshot, 0.0, 4.0, THRESHOLDS, 30.0, label=CycleLabel.TRANSPORT)
    assert outcome.cycle.id == 7
    assert outcome.cycle.ai_label == CycleLabel.TRANSPORT
    assert outcome.snapshot.next_cycle_id == 8
    assert outcome.snapshot.cooldown_until == pytest.approx(4.0 + COOLDOWN_SECONDS)


def test_invalid_transition_raises():
    with pytest.raises(InvalidTransitionError):
        _transition(LogicSnapshot(state=LogicState.IDLE), LogicState.COOLDOWN)
    with pytest.raises(InvalidTransitionError):
        _transition(LogicSnapshot(state=LogicState.COOLDOWN), LogicState.TRIGGERED)


# ==================== Cycle record and controller ====================

def test_cycle_mark_abnormal_and_wire_form():
    cycle = Cycle(id=3, start_time=1.0, end_time=3.5, duration=2.5, status=CycleStatus.OK,
                  ai_label=CycleLabel.OPERATION)
    flagged = cycle.mark_abnormal()

    assert cycle.status == CycleStatus.OK
    assert flagged.status == CycleStatus.ABNORMAL
    assert flagged.id == cycle.id
    assert flagged.to_dict() == {
        "id": 3,
        "startTime": 1.0,
        "endTime": 3.5,
        "duration": 2.5,
        "status": "abnormal",
        "aiLabel": "Operation",
    }
    assert Cycle(1, 0.0, 2.0, 2.0, CycleStatus.OVER).to_dict()["aiLabel"] is None


def test_controller_callback_and_reset():
    seen = []
    controller = CycleLogicController(thresholds=THRESHOLDS, on_cycle=seen.append)
    score = pulse(1.0, 3.0)
    for t in ticks(5.0):
        controller.process(score(t), t)
    assert len(seen) == 1

    controller.process(0.9, 5.0)
    assert controller.state == LogicState.TRIGGERED
    controller.reset()
    assert controller.state == LogicState.IDLE
    assert controller.last_event is None

    # Numbering continues after a reset
    for t in ticks(10.0, start=6.0):
        controller.process(pulse(7.0, 9.0)(t), t)
    assert [c.id for c in seen] == [1, 2]


def test_controller_from_sensitivity():
    controller = CycleLogicController(sensitivity=7, takt_time=10.0)
    assert controller.thresholds.high == pytest.approx(0.21)
    with pytest.raises(ValueError):
        CycleLogicController(sensitivity=0)
