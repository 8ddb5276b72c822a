"""Application configuration."""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Motion Study"
    debug: bool = False
    api_prefix: str = "/api"
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]  # Zone-setup UI

    # Redis (Celery broker + result backend)
    redis_url: str = "redis://localhost:6379/0"

    # Storage
    upload_dir: str = "./uploads"
    max_video_size_mb: int = 2000
    allowed_video_extensions: List[str] = [".mp4", ".mov", ".avi", ".mkv", ".webm"]

    # Change detection
    blur_size: int = 5  # Gaussian kernel, must be odd
    diff_threshold: int = 25  # Intensity cutoff (0-255) for a "changed" pixel
    ema_alpha: float = 0.2

    # Cycle logic
    default_sensitivity: int = 5  # 1-10, higher = triggers more readily
    default_takt_time: float = 30.0
    min_cycle_time: float = 1.0  # Shorter cycles are false triggers
    cooldown_seconds: float = 1.5  # Dead time after a completed cycle

    # Anchor tracking
    anchor_search_margin: int = 50  # Pixels around last known anchor position
    anchor_match_confidence: float = 0.6
    pause_on_tracking_lost: bool = False

    # Processing rate gates (seconds between evaluations)
    score_interval: float = 0.05  # ~20 Hz
    pose_interval: float = 0.066  # ~15 Hz

    # Motion classification (normalized units per pose sample)
    move_threshold: float = 0.005
    reach_threshold: float = 0.02
    extension_threshold: float = 0.4

    # Pose estimation
    pose_model_complexity: int = 0  # 0=lite, 1=full, 2=heavy
    pose_model_dir: str = "./models"
    pose_confidence_threshold: float = 0.5

    # Reporting
    operating_minutes: float = 460.0  # Planned production time per shift

    class Config:
        env_file = ".env"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
