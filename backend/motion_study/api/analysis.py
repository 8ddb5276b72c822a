"""Video upload and cycle-detection job endpoints."""

import json
import uuid
from pathlib import Path

from celery.result import AsyncResult
from fastapi import APIRouter, HTTPException, UploadFile, File, Form, status
from pydantic import ValidationError

from motion_study.config import get_settings
from motion_study.schemas.analysis import (
    AnalysisConfig, AnalysisJobResponse, AnalysisResultResponse, AnalysisStatusResponse
)

router = APIRouter()
settings = get_settings()

MAX_FILE_SIZE = settings.max_video_size_mb * 1024 * 1024  # Convert to bytes


def validate_video_file(filename: str, file_size: int) -> None:
    """Validate video file extension and size."""
    ext = Path(filename or "").suffix.lower()

    if ext not in settings.allowed_video_extensions:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type. Allowed: {settings.allowed_video_extensions}"
        )

    if file_size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty file"
        )

    if file_size > MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum: {settings.max_video_size_mb}MB"
        )


def parse_config(raw: str) -> AnalysisConfig:
    """Parse the JSON config form field."""
    try:
        return AnalysisConfig.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid analysis config: {e}"
        )


@router.post("/upload", response_model=AnalysisJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_video(
    file: UploadFile = File(...),
    config: str = Form(...),
):
    """
    Upload a video with its zone setup and queue cycle detection.

    `config` is a JSON object: zone, optional anchor, reference_time,
    sensitivity (1-10) and takt_time (seconds).
    """
    analysis = parse_config(config)

    contents = await file.read()
    validate_video_file(file.filename, len(contents))

    upload_dir = Path(settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)

    file_path = upload_dir / f"{uuid.uuid4()}{Path(file.filename).suffix.lower()}"
    with open(file_path, "wb") as f:
        f.write(contents)

    from motion_study.worker import process_video_task
    task = process_video_task.delay(str(file_path), analysis.model_dump())

    return AnalysisJobResponse(
        task_id=task.id,
        status="PENDING",
        video_filename=file.filename,
    )


@router.get("/{task_id}", response_model=AnalysisStatusResponse)
async def get_analysis_status(task_id: str):
    """Get processing status, and the cycles once finished."""
    from motion_study.worker import celery_app

    task = AsyncResult(task_id, app=celery_app)
    response = AnalysisStatusResponse(task_id=task_id, status=task.state)

    if task.state == "PROGRESS":
        response.progress = float((task.info or {}).get("progress", 0.0))
    elif task.state == "SUCCESS":
        response.progress = 1.0
        response.result = AnalysisResultResponse.model_validate(task.result)
    elif task.state == "FAILURE":
        response.error = str(task.info)

    return response
