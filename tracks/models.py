"""Pydantic models for points, tracks and generation bookkeeping.

Documents are stored in MongoDB with ``_id`` ObjectIds; the models carry ids
as strings and :mod:`tracks.repository` converts at the collection boundary.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, TypedDict

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from core.date_utils import ensure_utc, from_unix, get_current_utc_time, parse_timestamp
from core.exceptions import InvalidGenerationModeError
from core.spatial import GeometryService
from tracks import metrics

PyObjectId = Annotated[str, BeforeValidator(str)]


class GenerationMode(str, Enum):
    """How a generation run treats the user's existing tracks."""

    BULK = "bulk"
    DAILY = "daily"
    INCREMENTAL = "incremental"
    NONE = "none"

    @classmethod
    def parse(cls, value: GenerationMode | str) -> GenerationMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            msg = f"Unknown generation mode: {value!r}"
            raise InvalidGenerationModeError(
                msg, {"allowed": [m.value for m in cls]}
            ) from e


class SessionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class TimeChunk(TypedDict):
    chunk_id: str
    start_timestamp: int
    end_timestamp: int
    buffer_start_timestamp: int
    buffer_end_timestamp: int
    start_time: datetime
    end_time: datetime
    buffer_start_time: datetime
    buffer_end_time: datetime


class Point(BaseModel):
    """A single GPS sample."""

    model_config = ConfigDict(populate_by_name=True)

    id: PyObjectId | None = Field(default=None, alias="_id")
    user_id: int
    timestamp: int
    lonlat: dict[str, Any]
    altitude: float | None = None
    track_id: PyObjectId | None = None
    import_id: str | None = None

    @field_validator("lonlat", mode="before")
    @classmethod
    def parse_lonlat(cls, v: Any) -> dict[str, Any]:
        """Accept a GeoJSON Point or a bare ``[lon, lat]`` pair."""
        coords = v.get("coordinates") if isinstance(v, dict) else v
        is_valid, pair = GeometryService.validate_coordinate_pair(coords)
        if not is_valid or pair is None:
            msg = f"Invalid lonlat: {v!r}"
            raise ValueError(msg)
        return {"type": "Point", "coordinates": pair}

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_unix_timestamp(cls, v: Any) -> int:
        if isinstance(v, datetime):
            return int(ensure_utc(v).timestamp())
        return int(v)

    @property
    def lon(self) -> float:
        return self.lonlat["coordinates"][0]

    @property
    def lat(self) -> float:
        return self.lonlat["coordinates"][1]

    @property
    def coordinates(self) -> list[float]:
        return [self.lon, self.lat]

    @property
    def recorded_at(self) -> datetime:
        return from_unix(self.timestamp)

    @property
    def imported(self) -> bool:
        return self.import_id is not None

    def distance_to(self, other: Point) -> float:
        """Great-circle distance to ``other`` in meters."""
        return GeometryService.haversine_distance(
            self.lon, self.lat, other.lon, other.lat
        )


class Track(BaseModel):
    """A contiguous run of points with derived statistics."""

    model_config = ConfigDict(populate_by_name=True)

    id: PyObjectId | None = Field(default=None, alias="_id")
    user_id: int
    start_at: datetime
    end_at: datetime
    distance: int = 0
    duration: int = 0
    avg_speed: float = 0.0
    elevation_gain: int = 0
    elevation_loss: int = 0
    elevation_max: float = 0
    elevation_min: float = 0
    original_path: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=get_current_utc_time)
    updated_at: datetime = Field(default_factory=get_current_utc_time)

    @field_validator("start_at", "end_at", "created_at", "updated_at", mode="before")
    @classmethod
    def parse_datetime(cls, v: Any) -> datetime:
        parsed = parse_timestamp(v)
        if parsed is None:
            msg = f"Invalid datetime: {v!r}"
            raise ValueError(msg)
        return parsed

    def recalculate_path_and_distance(self, points: list[Point]) -> None:
        """Rebuild path, distance and speed from ``points`` (time-ordered)."""
        self.original_path = metrics.build_path(points)
        self.distance = metrics.path_distance_meters(points)
        self.duration = max(int((self.end_at - self.start_at).total_seconds()), 0)
        self.avg_speed = metrics.calculate_average_speed(self.distance, self.duration)
        self.updated_at = get_current_utc_time()


class TrackSegment(BaseModel):
    """Transportation-mode annotation over a slice of a track's points."""

    model_config = ConfigDict(populate_by_name=True)

    id: PyObjectId | None = Field(default=None, alias="_id")
    track_id: PyObjectId
    mode: str
    start_index: int
    end_index: int
    distance: int | None = None
    duration: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    color: str | None = None
    emoji: str | None = None
