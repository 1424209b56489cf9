"""Final step of a bulk run: stitch chunk seams, drop duplicates, close the session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from core.date_utils import parse_timestamp
from tracks.boundary_detector import BoundaryDetector
from tracks.config import BOUNDARY_MAX_RESCHEDULES
from tracks.deduplicator import Deduplicator
from tracks.session_manager import SessionManager

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from tracks.boundary_scheduler import BoundaryScheduler
    from tracks.repository import TrackRepository
    from tracks.settings import SettingsProvider

logger = logging.getLogger(__name__)


class BoundaryResolver:
    """
    Runs once the session's delay elapses.

    If chunks are still outstanding the job reschedules itself up to
    ``BOUNDARY_MAX_RESCHEDULES`` times, then proceeds with whatever the
    finished chunks produced. The session ends ``failed`` when any chunk
    failed or resolution itself raised, ``completed`` otherwise.
    """

    def __init__(
        self,
        user_id: int,
        session_id: str,
        repository: TrackRepository,
        settings_provider: SettingsProvider,
        scheduler: BoundaryScheduler | None = None,
        redis_client: aioredis.Redis | None = None,
    ) -> None:
        self.user_id = user_id
        self.session_id = session_id
        self.repository = repository
        self.settings_provider = settings_provider
        self.scheduler = scheduler
        self.redis_client = redis_client

    async def call(self, attempt: int = 0) -> dict[str, Any] | None:
        session = await SessionManager.find_session(
            self.user_id, self.session_id, self.redis_client
        )
        if session is None:
            logger.warning(
                "Session %s for user %s expired before boundary resolution",
                self.session_id,
                self.user_id,
            )
            return None

        data = await session.get_session_data() or {}
        if not await session.all_chunks_completed():
            if self.scheduler is not None and attempt < BOUNDARY_MAX_RESCHEDULES:
                logger.info(
                    "Session %s has %d/%d chunks done, rescheduling boundary resolution",
                    self.session_id,
                    data.get("completed_chunks", 0),
                    data.get("total_chunks", 0),
                )
                await self.scheduler.schedule(
                    self.user_id,
                    self.session_id,
                    data.get("total_chunks", 0),
                    attempt=attempt + 1,
                )
                return None
            logger.warning(
                "Resolving boundaries for session %s with %d/%d chunks done",
                self.session_id,
                data.get("completed_chunks", 0),
                data.get("total_chunks", 0),
            )

        try:
            settings = await self.settings_provider.get(self.user_id)
            since = parse_timestamp(data.get("started_at"))
            resolved = await BoundaryDetector(
                self.user_id, self.repository, settings
            ).resolve_cross_chunk_tracks(since)
            removed = await Deduplicator(self.user_id, self.repository).call()
        except Exception as e:
            logger.exception(
                "Boundary resolution failed for session %s of user %s",
                self.session_id,
                self.user_id,
            )
            await session.mark_failed(str(e))
            return None

        await session.update_session(
            boundaries_resolved=resolved, duplicates_removed=removed
        )
        data = await session.get_session_data() or data

        failed_chunks = data.get("failed_chunks", 0)
        if failed_chunks:
            await session.mark_failed(
                f"{failed_chunks} of {data.get('total_chunks', 0)} chunks failed"
            )
        else:
            await session.mark_completed()

        summary = {
            "session_id": self.session_id,
            "boundaries_resolved": resolved,
            "duplicates_removed": removed,
            "tracks_created": data.get("tracks_created", 0),
            "failed_chunks": failed_chunks,
        }
        logger.info("Boundary resolution finished for user %s: %s", self.user_id, summary)
        return summary
