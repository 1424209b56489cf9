"""Turning a point segment into a persisted track."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pymongo.errors import PyMongoError

from core.date_utils import from_unix
from core.exceptions import TrackPersistenceError
from tracks import metrics
from tracks.models import Point, Track

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tracks.repository import TrackRepository

logger = logging.getLogger(__name__)


def track_from_points(user_id: int, points: Sequence[Point]) -> Track:
    """Compute a track's attributes from time-ordered points without saving it."""
    distance = metrics.path_distance_meters(points)
    duration = metrics.calculate_duration(points)
    elevation = metrics.calculate_elevation_stats(points)
    return Track(
        user_id=user_id,
        start_at=from_unix(points[0].timestamp),
        end_at=from_unix(points[-1].timestamp),
        original_path=metrics.build_path(points),
        distance=distance,
        duration=duration,
        avg_speed=metrics.calculate_average_speed(distance, duration),
        elevation_gain=elevation["gain"],
        elevation_loss=elevation["loss"],
        elevation_max=elevation["max"],
        elevation_min=elevation["min"],
    )


class TrackBuilder:
    """
    Builds and saves tracks for one user.

    ``build`` returns ``None`` for fewer than two points and when the write
    fails; the failure is logged and the caller moves on to its next segment.
    """

    def __init__(self, user_id: int, repository: TrackRepository) -> None:
        if user_id is None:
            msg = "TrackBuilder requires a user_id"
            raise ValueError(msg)
        self.user_id = user_id
        self.repository = repository

    async def build(self, points: Sequence[Point]) -> Track | None:
        if len(points) < 2:
            return None

        ordered = sorted(points, key=lambda p: p.timestamp)
        track = track_from_points(self.user_id, ordered)
        point_ids = [p.id for p in ordered if p.id is not None]

        async def _insert(session):
            await self.repository.insert_track(track, session=session)

        async def _assign(session):
            await self.repository.assign_points(point_ids, track.id, session=session)

        try:
            await self.repository.run_transaction([_insert, _assign])
        except (PyMongoError, TrackPersistenceError) as e:
            logger.error(
                "Failed to create track for user %s from %d points: %s",
                self.user_id,
                len(ordered),
                e,
            )
            return None

        logger.debug(
            "Created track %s for user %s with %d points",
            track.id,
            self.user_id,
            len(ordered),
        )
        return track
