"""API router for version 1."""
from fastapi import APIRouter

from flashbox.api.v1.endpoints import levels, sessions, study_status


api_router = APIRouter()
api_router.include_router(sessions.router)
api_router.include_router(study_status.router)
api_router.include_router(levels.router)
