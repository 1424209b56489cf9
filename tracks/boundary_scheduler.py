"""
When boundary resolution runs after the chunk jobs of a session.

There is no completion barrier: the resolver is scheduled with a delay that
grows with the number of chunks, and it reschedules itself a bounded number
of times if it wakes up before every chunk reported in. Callers only see the
:class:`BoundaryScheduler` protocol so a stricter strategy can replace the
delay heuristic.
"""

from __future__ import annotations

import logging
from typing import Protocol

from tracks.config import BOUNDARY_DELAY_PER_CHUNK_SECONDS, BOUNDARY_MIN_DELAY_SECONDS
from tracks.jobs import RESOLVE_BOUNDARIES_TASK, JobQueue

logger = logging.getLogger(__name__)


def boundary_resolution_delay(total_chunks: int) -> int:
    """At least five minutes, plus roughly thirty seconds per chunk."""
    return max(BOUNDARY_MIN_DELAY_SECONDS, BOUNDARY_DELAY_PER_CHUNK_SECONDS * total_chunks)


class BoundaryScheduler(Protocol):
    async def schedule(
        self, user_id: int, session_id: str, total_chunks: int, attempt: int = 0
    ) -> None: ...


class DelayedBoundaryScheduler:
    def __init__(self, queue: JobQueue) -> None:
        self.queue = queue

    async def schedule(
        self, user_id: int, session_id: str, total_chunks: int, attempt: int = 0
    ) -> None:
        delay = boundary_resolution_delay(total_chunks)
        await self.queue.enqueue(
            RESOLVE_BOUNDARIES_TASK,
            user_id,
            session_id,
            attempt=attempt,
            countdown=delay,
        )
        logger.info(
            "Scheduled boundary resolution for session %s (user %s) in %ds, attempt %d",
            session_id,
            user_id,
            delay,
            attempt,
        )
