"""
Splitting a point stream into track-sized segments.

A new segment starts when the time gap to the previous point exceeds the
time threshold. Distance jumps only split when ``split_on_distance`` is
enabled; by default a large jump with a small time gap (GPS noise, tunnels)
stays inside the current segment. Segments with fewer than two points are
discarded because they cannot form a track.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.date_utils import get_current_utc_time, to_unix

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from tracks.models import Point
    from tracks.settings import TrackSettings


def should_start_new_segment(
    current: Point,
    previous: Point | None,
    time_threshold_minutes: int,
    distance_threshold_meters: int,
    *,
    split_on_distance: bool = False,
) -> bool:
    if previous is None:
        return False

    if current.timestamp - previous.timestamp > time_threshold_minutes * 60:
        return True

    if split_on_distance:
        return previous.distance_to(current) > distance_threshold_meters

    return False


def split_into_segments(
    points: Iterable[Point],
    time_threshold_minutes: int,
    distance_threshold_meters: int,
    *,
    split_on_distance: bool = False,
) -> list[list[Point]]:
    ordered = sorted(points, key=lambda p: p.timestamp)
    segments: list[list[Point]] = []
    current: list[Point] = []

    for point in ordered:
        if should_start_new_segment(
            point,
            current[-1] if current else None,
            time_threshold_minutes,
            distance_threshold_meters,
            split_on_distance=split_on_distance,
        ):
            if len(current) >= 2:
                segments.append(current)
            current = [point]
        else:
            current.append(point)

    if len(current) >= 2:
        segments.append(current)

    return segments


def split_with_settings(
    points: Iterable[Point], settings: TrackSettings
) -> list[list[Point]]:
    return split_into_segments(
        points,
        settings.minutes_between_routes,
        settings.meters_between_routes,
        split_on_distance=settings.split_on_distance,
    )


def should_finalize_segment(
    segment: list[Point],
    grace_period_minutes: int,
    now: datetime | None = None,
) -> bool:
    """True once the segment's last point is older than the grace period."""
    if len(segment) < 2:
        return False
    now_ts = to_unix(now or get_current_utc_time())
    return now_ts - segment[-1].timestamp > grace_period_minutes * 60
