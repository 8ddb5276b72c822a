#
# test_video_processor.py: offline pipeline over a synthetic video file
#

import cv2
import numpy as np
import pytest

from motion_study.cv import (
    Cycle,
    CycleLabel,
    CycleStatus,
    EngineConfig,
    Rect,
    VideoFrameSource,
    VideoProcessor,
    compute_cycle_analytics,
)

ZONE = Rect(100, 80, 60, 40)
FPS = 30.0


def gradient_frame(width=320, height=240):
    ramp = np.linspace(20, 180, width, dtype=np.float32)
    gray = np.tile(ramp, (height, 1))
    gray += np.linspace(0, 20, height, dtype=np.float32)[:, None]
    gray = gray.astype(np.uint8)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


@pytest.fixture
def work_video(tmp_path):
    """6 s clip; the zone is covered from 1 s to 3 s."""
    path = tmp_path / "station.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), FPS, (320, 240))
    if not writer.isOpened():
        pytest.skip("MJPG video writer not available")

    background = gradient_frame()
    for i in range(int(6 * FPS)):
        image = background.copy()
        if 30 <= i < 90:
            image[80:120, 100:160] = 255
        writer.write(image)
    writer.release()
    return str(path)


def test_frame_source_metadata(work_video):
    with VideoFrameSource(work_video) as source:
        assert source.info.width == 320
        assert source.info.height == 240
        assert source.info.fps == pytest.approx(FPS)

        frame = source.read_at(2.0)
        assert frame.is_valid
        assert frame.frame_number == 60
        assert frame.timestamp == pytest.approx(2.0)

        # Reading all frames after a seek starts from the beginning again
        frames = list(source.frames())
        assert len(frames) == 180
        assert frames[0].frame_number == 0
        assert frames[90].timestamp == pytest.approx(3.0)


def test_process_video_detects_cycle(work_video):
    progress = []
    processor = VideoProcessor(
        zone=ZONE,
        reference_time=0.0,
        config=EngineConfig(sensitivity=7, takt_time=30.0),
        progress_callback=progress.append,
    )

    result = processor.process_video(work_video)

    assert result.succeeded, result.errors
    assert result.frames_read == 180
    assert result.video_fps == pytest.approx(FPS)
    assert result.video_duration_seconds == pytest.approx(6.0)

    assert len(result.cycles) == 1
    cycle = result.cycles[0]
    assert 1.0 <= cycle.start_time <= 1.3
    assert 3.0 <= cycle.end_time <= 3.7
    assert cycle.status == CycleStatus.OK
    assert cycle.ai_label == CycleLabel.UNKNOWN

    assert result.analytics["total_cycles"] == 1
    assert result.analytics["avg_cycle_time"] == pytest.approx(cycle.duration)
    assert progress[-1] == 1.0
    assert progress == sorted(progress)

    payload = result.to_dict()
    assert payload["cycles"][0]["startTime"] == cycle.start_time
    assert payload["errors"] == []


def test_process_video_reference_during_work(work_video):
    # The covered zone becomes the baseline, so the uncovered stretches read as work
    processor = VideoProcessor(zone=ZONE, reference_time=2.0, config=EngineConfig(sensitivity=7))
    result = processor.process_video(work_video)

    assert result.succeeded
    assert len(result.cycles) == 1
    assert result.cycles[0].start_time < 0.5
    assert 1.0 <= result.cycles[0].end_time <= 1.7


def test_process_video_anchor_failure_is_a_warning(work_video):
    processor = VideoProcessor(zone=ZONE, anchor=Rect(0, 0, 1, 1), config=EngineConfig(sensitivity=7))
    result = processor.process_video(work_video)
    assert result.succeeded
    assert any("Anchor" in w for w in result.warnings)
    assert len(result.cycles) == 1


def test_process_video_missing_file(tmp_path, scripted_pose, still_pose):
    estimator = scripted_pose(still_pose)
    processor = VideoProcessor(zone=ZONE, config=EngineConfig(), pose_estimator=estimator)

    result = processor.process_video(str(tmp_path / "nope.mp4"))

    assert not result.succeeded
    assert result.cycles == []
    assert "Failed to open video" in result.errors[0]
    # The estimator is released even though no frame was ever read
    assert estimator.closed
    assert estimator.calls == []


def test_process_video_zone_outside_frame(work_video, scripted_pose, still_pose):
    estimator = scripted_pose(still_pose)
    processor = VideoProcessor(zone=Rect(1000, 1000, 50, 50), config=EngineConfig(), pose_estimator=estimator)

    result = processor.process_video(work_video)

    assert not result.succeeded
    assert "Reference capture failed" in result.errors[0]
    assert estimator.closed


# ==================== Analytics ====================

def make_cycle(i, duration, status=CycleStatus.OK, label=CycleLabel.OPERATION):
    start = i * 10.0
    return Cycle(id=i + 1, start_time=start, end_time=start + duration, duration=duration,
                 status=status, ai_label=label)


def test_analytics_empty():
    assert compute_cycle_analytics([]) == {}


def test_analytics_summary():
    cycles = [
        make_cycle(0, 20.0),
        make_cycle(1, 22.0),
        make_cycle(2, 24.0, label=CycleLabel.TRANSPORT),
        make_cycle(3, 35.0, status=CycleStatus.OVER),
        make_cycle(4, 300.0, status=CycleStatus.ABNORMAL, label=None),
    ]
    analytics = compute_cycle_analytics(cycles, takt_time=30.0, operating_minutes=460)

    assert analytics["total_cycles"] == 5
    assert analytics["valid_cycles"] == 4
    assert analytics["abnormal_cycles"] == 1
    assert analytics["over_takt_cycles"] == 1
    assert analytics["avg_cycle_time"] == pytest.approx(25.25)
    assert analytics["min_cycle_time"] == 20.0
    assert analytics["max_cycle_time"] == 35.0
    assert analytics["range"] == 15.0
    assert analytics["stability"] == "LOW"
    assert analytics["estimated_daily_output"] == int(460 * 60 // 25.25)
    assert analytics["takt_attainment"] == pytest.approx(0.75)
    assert analytics["label_breakdown"] == {"Operation": 3, "Transport": 1, "Unknown": 1}


@pytest.mark.parametrize(
    "durations, stability",
    [([20.0, 20.5, 19.5], "HIGH"), ([20.0, 24.0, 18.0], "MEDIUM"), ([10.0, 30.0], "LOW")],
)
def test_analytics_stability(durations, stability):
    cycles = [make_cycle(i, d) for i, d in enumerate(durations)]
    assert compute_cycle_analytics(cycles, operating_minutes=460)["stability"] == stability


def test_analytics_all_abnormal():
    cycles = [make_cycle(0, 100.0, status=CycleStatus.ABNORMAL)]
    analytics = compute_cycle_analytics(cycles, takt_time=30.0, operating_minutes=460)
    assert analytics["valid_cycles"] == 0
    assert "avg_cycle_time" not in analytics
    assert analytics["label_breakdown"] == {"Operation": 1}
