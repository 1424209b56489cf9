"""
Finding and merging tracks that were split at chunk boundaries.

Chunk jobs see overlapping buffers but each keeps only the segments touching
its own window, so one journey crossing a chunk edge can come out as two
tracks. Recently created tracks that touch in time and space are grouped and
rebuilt as a single track.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from core.date_utils import get_current_utc_time, to_unix
from tracks.builder import track_from_points
from tracks.config import (
    BOUNDARY_LOOKBACK_SECONDS,
    BOUNDARY_MAX_GAP_SECONDS,
    BOUNDARY_WINDOW_SECONDS,
)

if TYPE_CHECKING:
    from tracks.models import Point, Track
    from tracks.repository import TrackRepository
    from tracks.settings import TrackSettings

logger = logging.getLogger(__name__)

Endpoints = dict[str, tuple["Point", "Point"]]


class BoundaryDetector:
    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        settings: TrackSettings,
    ) -> None:
        self.user_id = user_id
        self.repository = repository
        self.settings = settings

    async def resolve_cross_chunk_tracks(self, since: datetime | None = None) -> int:
        """Merge connected groups among tracks created after ``since``; returns groups merged."""
        since = since or get_current_utc_time() - timedelta(
            seconds=BOUNDARY_LOOKBACK_SECONDS
        )
        tracks = await self.repository.tracks_created_since(self.user_id, since)
        if len(tracks) < 2:
            return 0

        endpoints = await self._load_endpoints(tracks)
        resolved = 0
        for group in self.find_boundary_track_candidates(tracks, endpoints):
            if await self.merge_boundary_tracks(group):
                resolved += 1

        if resolved:
            logger.info(
                "Resolved %d cross-chunk track groups for user %s", resolved, self.user_id
            )
        return resolved

    async def _load_endpoints(self, tracks: list[Track]) -> Endpoints:
        points = await self.repository.points_for_tracks([t.id for t in tracks])
        by_track: dict[str, list[Point]] = defaultdict(list)
        for point in points:
            by_track[point.track_id].append(point)
        return {
            track_id: (track_points[0], track_points[-1])
            for track_id, track_points in by_track.items()
        }

    def find_boundary_track_candidates(
        self, tracks: list[Track], endpoints: Endpoints
    ) -> list[list[Track]]:
        """Connected components of the "touching" relation, filtered by group validity."""
        by_id = {t.id: t for t in tracks}
        parent = {t.id: t.id for t in tracks}

        def find(track_id: str) -> str:
            while parent[track_id] != track_id:
                parent[track_id] = parent[parent[track_id]]
                track_id = parent[track_id]
            return track_id

        for track in tracks:
            for candidate in self.find_connected_tracks(track, tracks, endpoints):
                parent[find(candidate.id)] = find(track.id)

        components: dict[str, list[Track]] = defaultdict(list)
        for track_id in by_id:
            components[find(track_id)].append(by_id[track_id])

        return [
            sorted(group, key=lambda t: t.start_at)
            for group in components.values()
            if self.valid_boundary_group(group)
        ]

    def find_connected_tracks(
        self, base: Track, candidates: list[Track], endpoints: Endpoints
    ) -> list[Track]:
        connected = []
        base_start = to_unix(base.start_at)
        base_end = to_unix(base.end_at)

        for candidate in candidates:
            if candidate.id == base.id:
                continue
            candidate_start = to_unix(candidate.start_at)
            candidate_end = to_unix(candidate.end_at)
            temporally_adjacent = (
                abs(candidate_start - base_end) <= BOUNDARY_WINDOW_SECONDS
                or abs(base_start - candidate_end) <= BOUNDARY_WINDOW_SECONDS
            )
            if temporally_adjacent and self.tracks_spatially_connected(
                base, candidate, endpoints
            ):
                connected.append(candidate)

        return connected

    def tracks_spatially_connected(
        self, first: Track, second: Track, endpoints: Endpoints
    ) -> bool:
        if first.id not in endpoints or second.id not in endpoints:
            return False

        first_start, first_end = endpoints[first.id]
        second_start, second_end = endpoints[second.id]
        threshold = self.settings.meters_between_routes

        pairs = (
            (first_end, second_start),
            (second_end, first_start),
            (first_start, second_start),
            (first_end, second_end),
        )
        return any(a.distance_to(b) <= threshold for a, b in pairs)

    @staticmethod
    def valid_boundary_group(group: list[Track]) -> bool:
        if len(group) < 2:
            return False

        ordered = sorted(group, key=lambda t: t.start_at)
        for previous, current in zip(ordered, ordered[1:], strict=False):
            if to_unix(current.start_at) - to_unix(previous.end_at) > BOUNDARY_MAX_GAP_SECONDS:
                return False
        return True

    async def merge_boundary_tracks(self, group: list[Track]) -> bool:
        """
        Rebuild ``group`` as one track from the union of its points.

        Returns False when fewer than two points remain (for instance when
        another job already consumed them) or when the rewrite fails.
        """
        if len(group) < 2:
            return False

        track_ids = [t.id for t in group]
        points = await self.repository.points_for_tracks(track_ids)
        unique = {p.id: p for p in points}
        ordered = sorted(unique.values(), key=lambda p: p.timestamp)
        if len(ordered) < 2:
            return False

        merged = track_from_points(self.user_id, ordered)

        async def _insert(session):
            await self.repository.insert_track(merged, session=session)

        async def _assign(session):
            await self.repository.assign_points(
                [p.id for p in ordered], merged.id, session=session
            )

        async def _delete_old(session):
            await self.repository.delete_tracks(track_ids, session=session)

        try:
            await self.repository.run_transaction([_insert, _assign, _delete_old])
        except Exception:
            logger.exception(
                "Failed to merge boundary tracks %s for user %s", track_ids, self.user_id
            )
            return False

        logger.debug(
            "Merged boundary tracks %s into %s for user %s",
            track_ids,
            merged.id,
            self.user_id,
        )
        return True
