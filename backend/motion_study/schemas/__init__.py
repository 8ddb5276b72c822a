"""Pydantic schemas for API request/response models."""

from motion_study.schemas.analysis import (
    RectSchema,
    AnalysisConfig,
    CycleResponse,
    AnalysisResultResponse,
    AnalysisJobResponse,
    AnalysisStatusResponse,
)

__all__ = [
    "RectSchema",
    "AnalysisConfig",
    "CycleResponse",
    "AnalysisResultResponse",
    "AnalysisJobResponse",
    "AnalysisStatusResponse",
]
