"""Per-chunk work of a bulk generation run."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.spatial import convert_distance
from tracks.builder import TrackBuilder
from tracks.segmentation import split_with_settings
from tracks.session_manager import SessionManager

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from tracks.models import Point
    from tracks.repository import TrackRepository
    from tracks.settings import SettingsProvider

logger = logging.getLogger(__name__)


class TimeChunkProcessor:
    """
    Builds tracks for one chunk and reports progress to the session.

    Points are loaded over the buffered window so journeys crossing the chunk
    edge are seen whole, but only segments touching the chunk's own window
    are built; the rest belong to the neighbouring chunk. The chunk always
    counts as completed, even when it fails, so the session can terminate.
    """

    def __init__(
        self,
        user_id: int,
        session_id: str,
        chunk: dict[str, Any],
        repository: TrackRepository,
        settings_provider: SettingsProvider,
        redis_client: aioredis.Redis | None = None,
    ) -> None:
        self.user_id = user_id
        self.session_id = session_id
        self.chunk = chunk
        self.repository = repository
        self.settings_provider = settings_provider
        self.redis_client = redis_client

    async def call(self) -> int:
        session = await SessionManager.find_session(
            self.user_id, self.session_id, self.redis_client
        )
        if session is None:
            logger.warning(
                "Session %s not found for user %s, skipping chunk %s",
                self.session_id,
                self.user_id,
                self.chunk.get("chunk_id"),
            )
            return 0

        tracks_created = 0
        try:
            tracks_created = await self._process(session)
        except Exception:
            logger.exception(
                "Failed to process chunk %s of session %s for user %s",
                self.chunk.get("chunk_id"),
                self.session_id,
                self.user_id,
            )
            await session.increment_failed_chunks()
        finally:
            await session.increment_completed_chunks()

        return tracks_created

    async def _process(self, session: SessionManager) -> int:
        settings = await self.settings_provider.get(self.user_id)
        points = await self.repository.load_points(
            self.user_id,
            int(self.chunk["buffer_start_timestamp"]),
            int(self.chunk["buffer_end_timestamp"]),
        )
        if len(points) < 2:
            return 0

        builder = TrackBuilder(self.user_id, self.repository)
        created = 0
        distance = 0
        for segment in split_with_settings(points, settings):
            if not self._overlaps_chunk(segment):
                continue
            track = await builder.build(segment)
            if track is not None:
                created += 1
                distance += track.distance
                await session.increment_tracks_created()

        logger.debug(
            "Chunk %s of session %s created %d tracks (%.1f %s) for user %s",
            self.chunk.get("chunk_id"),
            self.session_id,
            created,
            convert_distance(distance, settings.distance_unit),
            settings.distance_unit,
            self.user_id,
        )
        return created

    def _overlaps_chunk(self, segment: list[Point]) -> bool:
        start = int(self.chunk["start_timestamp"])
        end = int(self.chunk["end_timestamp"])
        return segment[0].timestamp <= end and segment[-1].timestamp >= start
