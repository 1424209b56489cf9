"""Deciding what a newly written point should trigger."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tracks.jobs import GENERATE_RANGE_TASK
from tracks.models import GenerationMode
from tracks.realtime_debouncer import RealtimeDebouncer

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from tracks.jobs import JobQueue
    from tracks.models import Point
    from tracks.repository import TrackRepository
    from tracks.settings import SettingsProvider, TrackSettings

logger = logging.getLogger(__name__)

ACTION_SKIPPED = "skipped"
ACTION_GENERATE = "generate"
ACTION_DEBOUNCED = "debounced"


class IncrementalProcessor:
    """
    Runs on every point write.

    Imported points are ignored. A user's first point triggers generation
    immediately. When the new point is far enough (in time or distance)
    from the previous one, the previous run of points is closed off with a
    bounded job ending at the previous point; the new point opens the next
    track. Anything else goes through the debouncer.
    """

    def __init__(
        self,
        point: Point,
        repository: TrackRepository,
        settings_provider: SettingsProvider,
        queue: JobQueue,
        redis_client: aioredis.Redis | None = None,
        debouncer: RealtimeDebouncer | None = None,
    ) -> None:
        self.point = point
        self.repository = repository
        self.settings_provider = settings_provider
        self.queue = queue
        self.debouncer = debouncer or RealtimeDebouncer(
            point.user_id, queue, redis_client=redis_client
        )

    async def call(self) -> str:
        if self.point.imported:
            return ACTION_SKIPPED

        previous = await self.repository.previous_point(self.point)
        if previous is None:
            await self._enqueue_generation(None, None)
            return ACTION_GENERATE

        settings = await self.settings_provider.get(self.point.user_id)
        if self.exceeds_thresholds(previous, self.point, settings):
            last_track = await self.repository.last_track(self.point.user_id)
            start_at = last_track.end_at.isoformat() if last_track else None
            await self._enqueue_generation(start_at, previous.recorded_at.isoformat())
            return ACTION_GENERATE

        await self.debouncer.trigger()
        return ACTION_DEBOUNCED

    @staticmethod
    def exceeds_thresholds(previous: Point, current: Point, settings: TrackSettings) -> bool:
        time_diff_minutes = (current.timestamp - previous.timestamp) / 60
        if time_diff_minutes > settings.minutes_between_routes:
            return True
        return previous.distance_to(current) > settings.meters_between_routes

    async def _enqueue_generation(self, start_at: str | None, end_at: str | None) -> None:
        logger.debug(
            "Enqueuing bounded generation for user %s (%s..%s)",
            self.point.user_id,
            start_at,
            end_at,
        )
        await self.queue.enqueue(
            GENERATE_RANGE_TASK,
            self.point.user_id,
            start_at=start_at,
            end_at=end_at,
            mode=GenerationMode.NONE.value,
        )
