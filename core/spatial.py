"""
Geometry helpers for GPS point paths.

Coordinates are ``[lon, lat]`` pairs in WGS84 degrees; every distance is
computed in meters and converted for display only at the edges.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any

from shapely.geometry import LineString, mapping

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)

METERS_PER_MILE = 1609.344

# Meters per unit. "miles"/"mi" and "km" both appear in callers.
_METERS_PER_UNIT: dict[str, float] = {
    "meters": 1.0,
    "km": 1000.0,
    "miles": METERS_PER_MILE,
    "mi": METERS_PER_MILE,
}


def _meters_to(meters: float, unit: str) -> float:
    try:
        return meters / _METERS_PER_UNIT[unit]
    except KeyError:
        msg = f"Unsupported distance unit: {unit}"
        raise ValueError(msg) from None


class GeometryService:
    EARTH_RADIUS_M = 6371000.0

    @staticmethod
    def validate_coordinate_pair(
        coord: Sequence[Any],
    ) -> tuple[bool, list[float] | None]:
        """Return ``(True, [lon, lat])`` for an in-range pair, else ``(False, None)``."""
        if not isinstance(coord, (list, tuple)) or len(coord) < 2:
            return False, None
        try:
            lon, lat = float(coord[0]), float(coord[1])
        except (TypeError, ValueError):
            return False, None
        if abs(lon) > 180 or abs(lat) > 90:
            return False, None
        return True, [lon, lat]

    @staticmethod
    def haversine_distance(
        lon1: float,
        lat1: float,
        lon2: float,
        lat2: float,
        unit: str = "meters",
    ) -> float:
        lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
        half_dlat = math.radians(lat2 - lat1) / 2
        half_dlon = math.radians(lon2 - lon1) / 2
        h = math.sin(half_dlat) ** 2 + (
            math.cos(lat1_r) * math.cos(lat2_r) * math.sin(half_dlon) ** 2
        )
        central_angle = 2 * math.asin(min(1.0, math.sqrt(h)))
        return _meters_to(GeometryService.EARTH_RADIUS_M * central_angle, unit)

    @staticmethod
    def path_length(coords: Sequence[Sequence[float]]) -> float:
        """Length in meters of the polyline through ``coords``."""
        return sum(
            GeometryService.haversine_distance(a[0], a[1], b[0], b[1])
            for a, b in zip(coords, coords[1:], strict=False)
        )

    @staticmethod
    def line_from_coordinate_pairs(
        coords: Iterable[Sequence[Any]],
    ) -> dict[str, Any] | None:
        """
        GeoJSON LineString through the valid pairs of ``coords``.

        Out-of-range or malformed pairs are dropped; ``None`` when fewer
        than two remain.
        """
        cleaned = []
        for coord in coords:
            ok, pair = GeometryService.validate_coordinate_pair(coord)
            if ok:
                cleaned.append(pair)
            else:
                logger.debug("Dropping invalid coordinate %s", coord)

        if len(cleaned) < 2:
            return None

        line = mapping(LineString(cleaned))
        return {"type": line["type"], "coordinates": [list(c) for c in line["coordinates"]]}


def convert_distance(meters: float, unit: str) -> float:
    """Convert a stored distance in meters to a display unit (``km`` or ``mi``)."""
    if unit not in ("km", "mi"):
        msg = f"Unsupported distance unit: {unit}"
        raise ValueError(msg)
    return _meters_to(meters, unit)
