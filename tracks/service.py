"""Service layer behind the track HTTP endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from core.exceptions import ResourceNotFoundError, ValidationError
from tracks.jobs import PARALLEL_GENERATE_TASK, CeleryJobQueue
from tracks.models import GenerationMode
from tracks.recalculation_status import TransportationRecalculationStatus
from tracks.session_manager import SessionManager

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from tracks.jobs import JobQueue

logger = logging.getLogger(__name__)


class GenerationRequest(BaseModel):
    mode: str = GenerationMode.BULK.value
    user_id: int | None = None
    user_ids: list[int] | None = None
    start_at: datetime | None = None
    end_at: datetime | None = None


class TrackGenerationService:
    @staticmethod
    async def start_generation(
        payload: GenerationRequest, queue: JobQueue | None = None
    ) -> dict[str, Any]:
        mode = GenerationMode.parse(payload.mode)
        user_ids = payload.user_ids or (
            [payload.user_id] if payload.user_id is not None else []
        )
        if not user_ids:
            msg = "user_id or user_ids is required"
            raise ValidationError(msg)
        if payload.start_at and payload.end_at and payload.start_at >= payload.end_at:
            msg = "start_at must be before end_at"
            raise ValidationError(msg)

        queue = queue or CeleryJobQueue()
        job_ids = []
        for user_id in user_ids:
            job_ids.append(
                await queue.enqueue(
                    PARALLEL_GENERATE_TASK,
                    user_id,
                    mode.value,
                    start_at=payload.start_at.isoformat() if payload.start_at else None,
                    end_at=payload.end_at.isoformat() if payload.end_at else None,
                )
            )

        logger.info("Queued %s generation for users %s", mode.value, user_ids)
        return {
            "status": "queued",
            "mode": mode.value,
            "user_ids": user_ids,
            "job_ids": job_ids,
        }

    @staticmethod
    async def get_session_status(
        user_id: int,
        session_id: str,
        redis_client: aioredis.Redis | None = None,
    ) -> dict[str, Any]:
        session = await SessionManager.find_session(user_id, session_id, redis_client)
        data = await session.get_session_data() if session else None
        if data is None:
            msg = f"Generation session {session_id} not found"
            raise ResourceNotFoundError(msg)
        data["progress_percentage"] = await session.progress_percentage()
        return data

    @staticmethod
    async def get_recalculation_status(
        user_id: int, redis_client: aioredis.Redis | None = None
    ) -> dict[str, Any]:
        return await TransportationRecalculationStatus(user_id, redis_client).data()
