"""Merging two tracks of the same journey into the older one."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tracks.models import Track
    from tracks.repository import TrackRepository

logger = logging.getLogger(__name__)


class Merger:
    """
    Moves ``newer``'s points onto ``older`` and deletes ``newer``.

    The merged path and distance are computed before anything is written; the
    writes then run in one transaction. Any failure is logged and reported as
    ``False`` with both tracks left as they were.
    """

    def __init__(self, repository: TrackRepository) -> None:
        self.repository = repository

    async def call(self, older: Track | None, newer: Track | None) -> bool:
        if older is None or newer is None:
            return False
        if older.id is None or newer.id is None or older.id == newer.id:
            return False
        if older.user_id != newer.user_id:
            logger.warning(
                "Refusing to merge track %s (user %s) into track %s (user %s)",
                newer.id,
                newer.user_id,
                older.id,
                older.user_id,
            )
            return False

        try:
            points = await self.repository.points_for_tracks([older.id, newer.id])
            merged = older.model_copy()
            merged.start_at = min(older.start_at, newer.start_at)
            merged.end_at = max(older.end_at, newer.end_at)
            merged.recalculate_path_and_distance(points)

            async def _move_points(session):
                await self.repository.reassign_points(newer.id, older.id, session=session)

            async def _save_older(session):
                await self.repository.update_track(merged, session=session)

            async def _drop_segments(session):
                await self.repository.delete_segments([older.id, newer.id], session=session)

            async def _delete_newer(session):
                await self.repository.delete_tracks([newer.id], session=session)

            await self.repository.run_transaction(
                [_move_points, _save_older, _drop_segments, _delete_newer]
            )
        except Exception:
            logger.exception(
                "Failed to merge tracks %s and %s for user %s",
                older.id,
                newer.id,
                older.user_id,
            )
            return False

        older.start_at, older.end_at = merged.start_at, merged.end_at
        older.original_path, older.distance = merged.original_path, merged.distance
        older.duration, older.avg_speed = merged.duration, merged.avg_speed
        logger.info(
            "Merged track %s into track %s for user %s (%d points)",
            newer.id,
            older.id,
            older.user_id,
            len(points),
        )
        return True
