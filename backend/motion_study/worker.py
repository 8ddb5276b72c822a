"""Celery worker for async video processing."""

import os
import logging
from typing import Optional

from celery import Celery

from motion_study.config import get_settings
from motion_study.cv.analyzer_session import EngineConfig
from motion_study.cv.pose_estimator import MediaPipePoseEstimator, PoseEstimator
from motion_study.cv.video_processor import VideoProcessor
from motion_study.schemas.analysis import AnalysisConfig

settings = get_settings()
logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "motion_study",
    broker=settings.redis_url,
    backend=settings.redis_url
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    worker_prefetch_multiplier=1,  # Process one task at a time
)


def build_pose_estimator() -> Optional[PoseEstimator]:
    """MediaPipe estimator, or None when no model file is installed."""
    try:
        return MediaPipePoseEstimator()
    except FileNotFoundError as e:
        logger.warning(f"Pose labels disabled: {e}")
        return None


@celery_app.task(bind=True, name="process_video")
def process_video_task(self, video_path: str, config: dict):
    """
    Detect work cycles in an uploaded video.

    Args:
        video_path: Path of the stored upload
        config: AnalysisConfig as a dict

    Returns:
        ProcessingResult as a dict
    """
    logger.info(f"Starting cycle detection for {video_path}")

    try:
        if not os.path.exists(video_path):
            raise FileNotFoundError(f"Video file not found: {video_path}")

        analysis = AnalysisConfig.model_validate(config)
        engine_config = EngineConfig.from_settings(
            settings,
            sensitivity=analysis.sensitivity,
            takt_time=analysis.takt_time,
        )

        def progress_callback(progress: float):
            self.update_state(state="PROGRESS", meta={"progress": progress})

        processor = VideoProcessor(
            zone=analysis.zone.to_rect(),
            anchor=analysis.anchor.to_rect() if analysis.anchor else None,
            reference_time=analysis.reference_time,
            config=engine_config,
            pose_estimator=build_pose_estimator(),
            progress_callback=progress_callback,
        )
        result = processor.process_video(video_path)

        logger.info(
            f"Cycle detection complete for {video_path}: {len(result.cycles)} cycles, "
            f"{len(result.errors)} errors"
        )
        return result.to_dict()

    except Exception as e:
        logger.exception(f"Error processing {video_path}: {e}")
        raise


@celery_app.task(name="cleanup_old_uploads")
def cleanup_old_uploads_task(days_old: int = 7):
    """Remove uploaded videos older than `days_old` days."""
    import time

    cutoff = time.time() - days_old * 86400
    deleted_count = 0

    if os.path.isdir(settings.upload_dir):
        for name in os.listdir(settings.upload_dir):
            path = os.path.join(settings.upload_dir, name)
            if os.path.isfile(path) and os.path.getmtime(path) < cutoff:
                os.remove(path)
                deleted_count += 1

    logger.info(f"Cleaned up {deleted_count} old video files")
    return {"deleted_count": deleted_count}
