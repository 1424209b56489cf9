"""
Removing existing tracks before a generation run rebuilds them.

``BulkCleaner`` drops every track overlapping the window. ``DailyCleaner``
only detaches the points inside the window, so a track that crosses midnight
keeps its part outside the day. ``NoOpCleaner`` leaves everything alone.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from core.date_utils import from_unix, to_unix
from tracks.models import GenerationMode

if TYPE_CHECKING:
    from tracks.models import Track
    from tracks.repository import TrackRepository

logger = logging.getLogger(__name__)


class TrackCleaner(Protocol):
    async def cleanup(self) -> int: ...


class NoOpCleaner:
    async def cleanup(self) -> int:
        return 0


class BulkCleaner:
    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> None:
        self.user_id = user_id
        self.repository = repository
        self.start_at = start_at
        self.end_at = end_at

    async def cleanup(self) -> int:
        tracks = await self.repository.tracks_overlapping(
            self.user_id, self.start_at, self.end_at
        )
        if not tracks:
            return 0

        track_ids = [t.id for t in tracks]

        async def _delete(session):
            await self.repository.delete_tracks(track_ids, session=session)

        await self.repository.run_transaction([_delete])
        logger.info("Deleted %d tracks for user %s", len(track_ids), self.user_id)
        return len(track_ids)


class DailyCleaner:
    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        start_at: datetime,
        end_at: datetime,
    ) -> None:
        self.user_id = user_id
        self.repository = repository
        self.start_at = start_at
        self.end_at = end_at

    async def cleanup(self) -> int:
        """Returns the number of tracks deleted outright."""
        overlapping = await self.repository.tracks_overlapping(
            self.user_id, self.start_at, self.end_at
        )
        if not overlapping:
            return 0

        logger.info(
            "Processing %d overlapping tracks for user %s in window %s to %s",
            len(overlapping),
            self.user_id,
            self.start_at,
            self.end_at,
        )
        deleted = 0
        for track in overlapping:
            if await self._process_overlapping_track(track):
                deleted += 1
        return deleted

    async def _process_overlapping_track(self, track: Track) -> bool:
        start_ts, end_ts = to_unix(self.start_at), to_unix(self.end_at)
        points = await self.repository.points_for_track(track.id)
        remaining = [p for p in points if not start_ts <= p.timestamp <= end_ts]
        if len(remaining) == len(points):
            logger.debug("Track %s has no points in window, skipping", track.id)
            return False

        async def _release(session):
            await self.repository.release_points(
                [track.id], start_ts, end_ts, session=session
            )

        if len(remaining) < 2:
            async def _delete(session):
                await self.repository.delete_tracks([track.id], session=session)

            await self.repository.run_transaction([_release, _delete])
            logger.debug(
                "Track %s has %d points left, deleting", track.id, len(remaining)
            )
            return True

        track.start_at = from_unix(remaining[0].timestamp)
        track.end_at = from_unix(remaining[-1].timestamp)
        track.recalculate_path_and_distance(remaining)

        async def _trim(session):
            await self.repository.update_track(track, session=session)
            await self.repository.delete_segments([track.id], session=session)

        await self.repository.run_transaction([_release, _trim])
        logger.debug(
            "Track %s trimmed to %d points outside the window", track.id, len(remaining)
        )
        return False


def cleaner_for_mode(
    mode: GenerationMode | str,
    user_id: int,
    repository: TrackRepository,
    start_at: datetime | None,
    end_at: datetime | None,
) -> TrackCleaner:
    """Pick the cleaning strategy for a generation mode."""
    mode = GenerationMode.parse(mode)
    if mode is GenerationMode.BULK:
        return BulkCleaner(user_id, repository, start_at, end_at)
    if mode is GenerationMode.DAILY and start_at is not None and end_at is not None:
        return DailyCleaner(user_id, repository, start_at, end_at)
    return NoOpCleaner()
