"""API routes for track generation."""

import logging

from fastapi import APIRouter

from core.api import api_route
from tracks.service import GenerationRequest, TrackGenerationService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/tracks/generate", response_model=dict)
@api_route(logger)
async def start_track_generation(payload: GenerationRequest):
    """Queue a bulk, daily or incremental generation run."""
    return await TrackGenerationService.start_generation(payload)


@router.get("/api/tracks/sessions/{user_id}/{session_id}", response_model=dict)
@api_route(logger)
async def get_generation_session(user_id: int, session_id: str):
    """Progress of a generation session."""
    return await TrackGenerationService.get_session_status(user_id, session_id)


@router.get(
    "/api/tracks/transportation_recalculation_status/{user_id}",
    response_model=dict,
)
@api_route(logger)
async def get_transportation_recalculation_status(user_id: int):
    return await TrackGenerationService.get_recalculation_status(user_id)
