"""
Job queue used by the pipeline to schedule its own follow-up work.

Pipeline code depends on the :class:`JobQueue` protocol only; production
wiring uses :class:`CeleryJobQueue`, which sends tasks by name so the
pipeline never imports task modules.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

PARALLEL_GENERATE_TASK = "tracks.parallel_generate"
PROCESS_CHUNK_TASK = "tracks.process_time_chunk"
RESOLVE_BOUNDARIES_TASK = "tracks.resolve_boundaries"
GENERATE_RANGE_TASK = "tracks.generate_range"
GENERATE_INCREMENTAL_TASK = "tracks.generate_incremental"
REALTIME_GENERATE_TASK = "tracks.realtime_generate"
PROCESS_POINT_TASK = "tracks.process_point"
DAILY_GENERATION_TASK = "tracks.daily_generation"


class JobQueue(Protocol):
    async def enqueue(
        self,
        task_name: str,
        *args: Any,
        countdown: int | None = None,
        **kwargs: Any,
    ) -> str | None: ...


class CeleryJobQueue:
    """Sends tasks to the Celery broker; ``countdown`` delays execution in seconds."""

    def __init__(self, queue: str | None = None) -> None:
        self.queue = queue

    async def enqueue(
        self,
        task_name: str,
        *args: Any,
        countdown: int | None = None,
        **kwargs: Any,
    ) -> str | None:
        from celery_app import app

        options: dict[str, Any] = {}
        if countdown:
            options["countdown"] = countdown
        if self.queue:
            options["queue"] = self.queue

        result = await asyncio.to_thread(
            app.send_task, task_name, args=list(args), kwargs=kwargs, **options
        )
        logger.debug(
            "Enqueued %s as %s (countdown=%s)", task_name, result.id, countdown
        )
        return result.id
