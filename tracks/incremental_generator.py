"""
Track generation for live and bounded updates.

``IncrementalGenerator`` works one day at a time: it picks up the points
recorded after the day's last track, finalizes segments whose last point is
older than the grace period and parks still-growing segments in the
:class:`RedisBuffer`. ``RangeGenerator`` builds every segment in a closed
window and backs the bounded jobs the incremental processor enqueues.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import TYPE_CHECKING

from core.date_utils import day_bounds, ensure_utc, parse_day, to_unix
from tracks.builder import TrackBuilder
from tracks.config import INCREMENTAL_GRACE_MINUTES
from tracks.merger import Merger
from tracks.redis_buffer import RedisBuffer
from tracks.segmentation import should_finalize_segment, split_with_settings

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from tracks.models import Point, Track
    from tracks.repository import TrackRepository
    from tracks.settings import SettingsProvider, TrackSettings

logger = logging.getLogger(__name__)


class IncrementalGenerator:
    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        settings_provider: SettingsProvider,
        *,
        day: date | str | None = None,
        grace_period_minutes: int = INCREMENTAL_GRACE_MINUTES,
        redis_client: aioredis.Redis | None = None,
        now: datetime | None = None,
    ) -> None:
        self.user_id = user_id
        self.repository = repository
        self.settings_provider = settings_provider
        self.day = parse_day(day)
        self.grace_period_minutes = grace_period_minutes
        self.buffer = RedisBuffer(user_id, self.day, redis_client=redis_client)
        self.now = ensure_utc(now)

    async def call(self) -> int:
        """Returns the number of tracks finalized."""
        logger.info(
            "Starting incremental track generation for user %s, day %s",
            self.user_id,
            self.day,
        )
        day_start, day_end = day_bounds(self.day)
        last_track = await self.repository.last_track_starting_between(
            self.user_id, day_start, day_end
        )
        start_ts = to_unix(last_track.end_at) + 1 if last_track else to_unix(day_start)

        new_points = await self.repository.load_points(
            self.user_id, start_ts, to_unix(day_end), exclude_imported=True
        )
        if not new_points:
            return 0

        buffered_ids = {p["id"] for p in await self.buffer.retrieve() if p.get("id")}
        all_points = await self._merge_buffered(new_points, buffered_ids)

        settings = await self.settings_provider.get(self.user_id)
        builder = TrackBuilder(self.user_id, self.repository)
        created = 0

        for segment in split_with_settings(all_points, settings):
            if not should_finalize_segment(segment, self.grace_period_minutes, self.now):
                await self.buffer.store(segment)
                continue

            track = await builder.build(segment)
            if track is None:
                logger.error(
                    "Failed to create track from %d points for user %s",
                    len(segment),
                    self.user_id,
                )
                continue

            created += 1
            if buffered_ids.intersection(p.id for p in segment):
                await self.buffer.clear()
            if self._continues(last_track, segment, settings):
                await Merger(self.repository).call(last_track, track)
            else:
                last_track = track

        logger.info(
            "Completed incremental track generation for user %s, day %s: %d tracks",
            self.user_id,
            self.day,
            created,
        )
        return created

    async def _merge_buffered(
        self, new_points: list[Point], buffered_ids: set[str]
    ) -> list[Point]:
        known = {p.id for p in new_points}
        missing = buffered_ids - known
        buffered = [
            p
            for p in await self.repository.points_by_ids(missing)
            if p.track_id is None
        ]
        return sorted([*new_points, *buffered], key=lambda p: p.timestamp)

    @staticmethod
    def _continues(
        last_track: Track | None, segment: list[Point], settings: TrackSettings
    ) -> bool:
        """True when ``segment`` picks up within the time threshold of ``last_track``."""
        if last_track is None:
            return False
        gap = segment[0].timestamp - to_unix(last_track.end_at)
        return 0 <= gap <= settings.minutes_between_routes * 60


class RangeGenerator:
    """Builds tracks from every untracked, non-imported point in a window."""

    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        settings_provider: SettingsProvider,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> None:
        self.user_id = user_id
        self.repository = repository
        self.settings_provider = settings_provider
        self.start_at = ensure_utc(start_at)
        self.end_at = ensure_utc(end_at)

    async def call(self) -> int:
        points = await self.repository.load_points(
            self.user_id,
            to_unix(self.start_at) if self.start_at else None,
            to_unix(self.end_at) if self.end_at else None,
            exclude_imported=True,
        )
        if len(points) < 2:
            return 0

        settings = await self.settings_provider.get(self.user_id)
        builder = TrackBuilder(self.user_id, self.repository)
        created = 0
        for segment in split_with_settings(points, settings):
            if await builder.build(segment) is not None:
                created += 1

        logger.info(
            "Generated %d tracks for user %s between %s and %s",
            created,
            self.user_id,
            self.start_at,
            self.end_at,
        )
        return created
