"""Analysis job schemas."""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from motion_study.cv.geometry import Rect


class RectSchema(BaseModel):
    """Rectangle in source-video pixels."""
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(gt=1)
    height: float = Field(gt=1)

    def to_rect(self) -> Rect:
        return Rect(self.x, self.y, self.width, self.height)


class AnalysisConfig(BaseModel):
    """Per-video detection setup submitted with an upload."""
    zone: RectSchema
    anchor: Optional[RectSchema] = None
    reference_time: float = Field(default=0.0, ge=0)
    sensitivity: Optional[int] = Field(default=None, ge=1, le=10)
    takt_time: Optional[float] = Field(default=None, gt=0)


class CycleResponse(BaseModel):
    """A completed work cycle."""
    id: int
    startTime: float
    endTime: float
    duration: float
    status: str
    aiLabel: Optional[str] = None


class AnalysisResultResponse(BaseModel):
    cycles: List[CycleResponse]
    analytics: Dict[str, Any] = {}
    video_duration_seconds: float = 0.0
    video_fps: float = 0.0
    frames_read: int = 0
    tracking_lost_events: int = 0
    false_triggers: int = 0
    processing_time_seconds: float = 0.0
    warnings: List[str] = []
    errors: List[str] = []


class AnalysisJobResponse(BaseModel):
    """Returned when a video is queued."""
    task_id: str
    status: str
    video_filename: str


class AnalysisStatusResponse(BaseModel):
    task_id: str
    status: str
    progress: float = 0.0
    result: Optional[AnalysisResultResponse] = None
    error: Optional[str] = None
