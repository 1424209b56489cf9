"""Pure calculations over time-ordered point sequences.

Shared by the track builder, the merger and the daily cleaner. Distances are
meters regardless of the user's display unit.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from core.spatial import GeometryService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tracks.models import Point

MAX_AVG_SPEED = 999_999.99


def build_path(points: Sequence[Point]) -> dict[str, Any] | None:
    return GeometryService.line_from_coordinate_pairs(p.coordinates for p in points)


def path_distance_meters(points: Sequence[Point]) -> int:
    """Cumulative haversine distance along ``points``, rounded to whole meters."""
    return max(round(GeometryService.path_length([p.coordinates for p in points])), 0)


def calculate_duration(points: Sequence[Point]) -> int:
    return points[-1].timestamp - points[0].timestamp


def calculate_average_speed(distance_meters: float, duration_seconds: float) -> float:
    """Average speed in km/h rounded to 2 decimals; 0.0 when either input is 0."""
    if duration_seconds <= 0 or distance_meters <= 0:
        return 0.0
    speed_kmh = round(distance_meters / duration_seconds * 3.6, 2)
    return min(speed_kmh, MAX_AVG_SPEED)


def calculate_elevation_stats(points: Sequence[Point]) -> dict[str, float]:
    """
    Elevation gain, loss, max and min over the points that carry an altitude.

    Points without altitude are skipped rather than read as zero. Returns all
    zeros when no altitude is available.
    """
    altitudes = [p.altitude for p in points if p.altitude is not None]
    if not altitudes:
        return {"gain": 0, "loss": 0, "max": 0, "min": 0}

    gain = 0.0
    loss = 0.0
    for previous, current in zip(altitudes, altitudes[1:], strict=False):
        diff = current - previous
        if diff > 0:
            gain += diff
        else:
            loss += -diff

    return {
        "gain": round(gain),
        "loss": round(loss),
        "max": max(altitudes),
        "min": min(altitudes),
    }
