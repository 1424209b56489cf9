"""
Facade over a bulk generation run.

Cleans existing tracks according to the mode, splits the range into chunks,
opens a session, fans the chunks out as jobs and schedules boundary
resolution.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from core.date_utils import day_bounds, ensure_utc, get_current_utc_time, humanize_duration
from tracks.boundary_scheduler import DelayedBoundaryScheduler
from tracks.cleaners import cleaner_for_mode
from tracks.config import CHUNK_BUFFER_SECONDS, CHUNK_SIZE_SECONDS
from tracks.jobs import PROCESS_CHUNK_TASK
from tracks.models import GenerationMode
from tracks.session_manager import SessionManager
from tracks.time_chunker import TimeChunker

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from tracks.boundary_scheduler import BoundaryScheduler
    from tracks.jobs import JobQueue
    from tracks.models import TimeChunk
    from tracks.repository import TrackRepository
    from tracks.settings import SettingsProvider

logger = logging.getLogger(__name__)


def serialize_chunk(chunk: TimeChunk) -> dict[str, Any]:
    """JSON-safe copy of a chunk for the job payload."""
    return {
        key: value.isoformat() if isinstance(value, datetime) else value
        for key, value in chunk.items()
    }


class ParallelGenerator:
    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        settings_provider: SettingsProvider,
        queue: JobQueue,
        *,
        mode: GenerationMode | str = GenerationMode.BULK,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        chunk_size: timedelta = timedelta(seconds=CHUNK_SIZE_SECONDS),
        buffer_size: timedelta = timedelta(seconds=CHUNK_BUFFER_SECONDS),
        redis_client: aioredis.Redis | None = None,
        boundary_scheduler: BoundaryScheduler | None = None,
    ) -> None:
        self.mode = GenerationMode.parse(mode)
        self.user_id = user_id
        self.repository = repository
        self.settings_provider = settings_provider
        self.queue = queue
        self.start_at = ensure_utc(start_at)
        self.end_at = ensure_utc(end_at)
        self.chunk_size = chunk_size
        self.buffer_size = buffer_size
        self.redis_client = redis_client
        self.boundary_scheduler = boundary_scheduler or DelayedBoundaryScheduler(queue)
        self.session: SessionManager | None = None

        if self.mode is GenerationMode.DAILY:
            self.start_at, self.end_at = self._daily_window()

    def _daily_window(self) -> tuple[datetime, datetime]:
        """The whole day containing ``start_at`` (default today), ending no later than now."""
        now = get_current_utc_time()
        start, end = day_bounds((self.start_at or now).date())
        return start, (min(end, now) if start <= now else end)

    async def call(self) -> int:
        """Run the fan-out; returns the number of chunk jobs enqueued."""
        cleaner = cleaner_for_mode(
            self.mode, self.user_id, self.repository, self.start_at, self.end_at
        )
        await cleaner.cleanup()

        chunks = await TimeChunker(
            self.user_id,
            self.repository,
            start_at=self.start_at,
            end_at=self.end_at,
            chunk_size=self.chunk_size,
            buffer_size=self.buffer_size,
        ).call()

        if not chunks:
            logger.info(
                "No time chunks to process for user %s (%s mode)",
                self.user_id,
                self.mode.value,
            )
            return 0

        settings = await self.settings_provider.get(self.user_id)
        self.session = await SessionManager.create_for_user(
            self.user_id,
            self._session_metadata(settings.as_metadata()),
            redis_client=self.redis_client,
        )
        await self.session.mark_started(len(chunks))

        for chunk in chunks:
            await self.queue.enqueue(
                PROCESS_CHUNK_TASK,
                self.user_id,
                self.session.session_id,
                serialize_chunk(chunk),
            )

        await self.boundary_scheduler.schedule(
            self.user_id, self.session.session_id, len(chunks)
        )

        logger.info(
            "Started %s generation session %s for user %s with %d chunks",
            self.mode.value,
            self.session.session_id,
            self.user_id,
            len(chunks),
        )
        return len(chunks)

    def _session_metadata(self, user_settings: dict[str, Any]) -> dict[str, Any]:
        return {
            "mode": self.mode.value,
            "chunk_size": humanize_duration(self.chunk_size.total_seconds()),
            "chunk_size_seconds": int(self.chunk_size.total_seconds()),
            "user_settings": user_settings,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
        }
