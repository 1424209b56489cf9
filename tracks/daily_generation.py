"""Hourly sweep that schedules daily-mode generation for users with new points."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from core.date_utils import get_current_utc_time, to_unix
from tracks.jobs import PARALLEL_GENERATE_TASK
from tracks.models import GenerationMode

if TYPE_CHECKING:
    from collections.abc import Iterable

    from tracks.jobs import JobQueue
    from tracks.repository import TrackRepository

logger = logging.getLogger(__name__)


class DailyGeneration:
    def __init__(
        self,
        repository: TrackRepository,
        queue: JobQueue,
        user_ids: Iterable[int] | None = None,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.user_ids = list(user_ids) if user_ids is not None else None

    async def call(self) -> int:
        """Returns the number of users a generation job was enqueued for."""
        user_ids = self.user_ids
        if user_ids is None:
            user_ids = await self.repository.user_ids_with_points()

        end_at = get_current_utc_time()
        enqueued = 0
        for user_id in user_ids:
            try:
                if await self._enqueue_for_user(user_id, end_at.isoformat()):
                    enqueued += 1
            except Exception:
                logger.exception("Failed to schedule daily generation for user %s", user_id)

        logger.info("Scheduled daily track generation for %d users", enqueued)
        return enqueued

    async def _enqueue_for_user(self, user_id: int, end_at: str) -> bool:
        last_track = await self.repository.last_track(user_id)
        last_end = to_unix(last_track.end_at) if last_track else None
        if not await self.repository.has_points_after(user_id, last_end):
            return False

        await self.queue.enqueue(
            PARALLEL_GENERATE_TASK,
            user_id,
            GenerationMode.DAILY.value,
            start_at=last_track.end_at.isoformat() if last_track else None,
            end_at=end_at,
        )
        return True
