"""Removing tracks that share identical start and end times."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pymongo.errors import PyMongoError

from core.exceptions import TrackPersistenceError

if TYPE_CHECKING:
    from tracks.repository import TrackRepository

logger = logging.getLogger(__name__)


class Deduplicator:
    """
    Keeps the most recently created track of each ``(start_at, end_at)`` group.

    Points owned by a removed duplicate are handed to the kept track before
    the duplicate is deleted, so no point ends up without a track.
    """

    def __init__(self, user_id: int, repository: TrackRepository) -> None:
        self.user_id = user_id
        self.repository = repository

    async def call(self) -> int:
        groups = await self.repository.duplicate_track_groups(self.user_id)
        removed = 0

        for group in groups:
            keeper = str(group[-1]["_id"])
            duplicates = [str(doc["_id"]) for doc in group[:-1]]

            async def _move_points(session, duplicates=duplicates, keeper=keeper):
                for duplicate in duplicates:
                    await self.repository.reassign_points(duplicate, keeper, session=session)

            async def _delete(session, duplicates=duplicates):
                await self.repository.delete_tracks(duplicates, session=session)

            try:
                await self.repository.run_transaction([_move_points, _delete])
            except (PyMongoError, TrackPersistenceError) as e:
                logger.error(
                    "Failed to remove duplicates of track %s for user %s: %s",
                    keeper,
                    self.user_id,
                    e,
                )
                continue
            removed += len(duplicates)

        if removed:
            logger.info(
                "Removed %d duplicate tracks for user %s", removed, self.user_id
            )
        return removed
