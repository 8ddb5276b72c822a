"""API routes."""

from fastapi import APIRouter

from motion_study.api import analysis

api_router = APIRouter()

api_router.include_router(analysis.router, prefix="/analysis", tags=["Analysis"])
