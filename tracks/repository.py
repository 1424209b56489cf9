"""
MongoDB access for points, tracks and track segments.

Every query the pipeline issues goes through :class:`TrackRepository`, which
takes injectable motor collections (defaulting to the shared
:data:`db.db_manager`). Write helpers accept an optional client ``session``
so they can participate in :meth:`TrackRepository.run_transaction`.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime
from typing import TYPE_CHECKING, Any

import pymongo
from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from core.date_utils import get_current_utc_time
from core.exceptions import TrackPersistenceError
from db import POINTS_COLLECTION, SEGMENTS_COLLECTION, TRACKS_COLLECTION, db_manager
from tracks.models import Point, Track

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection

logger = logging.getLogger(__name__)

POINT_ORDER = [("timestamp", pymongo.ASCENDING), ("_id", pymongo.ASCENDING)]
TRACK_ORDER = [("start_at", pymongo.ASCENDING), ("_id", pymongo.ASCENDING)]


def to_object_id(value: str | ObjectId) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError) as e:
        msg = f"Invalid id: {value!r}"
        raise TrackPersistenceError(msg) from e


def _object_ids(values: Iterable[str | ObjectId]) -> list[ObjectId]:
    return [to_object_id(v) for v in values]


class TrackRepository:
    """Queries and writes used by the track pipeline."""

    def __init__(
        self,
        points: AsyncIOMotorCollection | None = None,
        tracks: AsyncIOMotorCollection | None = None,
        segments: AsyncIOMotorCollection | None = None,
        client: AsyncIOMotorClient | None = None,
    ) -> None:
        injected = any(c is not None for c in (points, tracks, segments))
        self.points = (
            points if points is not None else db_manager.get_collection(POINTS_COLLECTION)
        )
        self.tracks = (
            tracks if tracks is not None else db_manager.get_collection(TRACKS_COLLECTION)
        )
        self.segments = (
            segments
            if segments is not None
            else db_manager.get_collection(SEGMENTS_COLLECTION)
        )
        if client is None and not injected:
            client = db_manager.client
        self._client = client
        self._transactions_supported: bool | None = None

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    async def load_points(
        self,
        user_id: int,
        start_timestamp: int | None = None,
        end_timestamp: int | None = None,
        *,
        untracked_only: bool = True,
        exclude_imported: bool = False,
    ) -> list[Point]:
        """Points for ``user_id`` with timestamps in the inclusive range, oldest first."""
        query: dict[str, Any] = {"user_id": user_id}
        time_range: dict[str, int] = {}
        if start_timestamp is not None:
            time_range["$gte"] = start_timestamp
        if end_timestamp is not None:
            time_range["$lte"] = end_timestamp
        if time_range:
            query["timestamp"] = time_range
        if untracked_only:
            query["track_id"] = None
        if exclude_imported:
            query["import_id"] = None

        docs = await self.points.find(query, sort=POINT_ORDER).to_list(length=None)
        return [Point.model_validate(doc) for doc in docs]

    async def points_by_ids(self, point_ids: Iterable[str]) -> list[Point]:
        ids = _object_ids(point_ids)
        if not ids:
            return []
        docs = await self.points.find(
            {"_id": {"$in": ids}}, sort=POINT_ORDER
        ).to_list(length=None)
        return [Point.model_validate(doc) for doc in docs]

    async def points_for_tracks(self, track_ids: Iterable[str]) -> list[Point]:
        ids = _object_ids(track_ids)
        if not ids:
            return []
        docs = await self.points.find(
            {"track_id": {"$in": ids}}, sort=POINT_ORDER
        ).to_list(length=None)
        return [Point.model_validate(doc) for doc in docs]

    async def points_for_track(self, track_id: str) -> list[Point]:
        return await self.points_for_tracks([track_id])

    async def count_points_for_track(self, track_id: str) -> int:
        return await self.points.count_documents({"track_id": to_object_id(track_id)})

    async def has_points_in_range(
        self, user_id: int, start_timestamp: int, end_timestamp: int
    ) -> bool:
        doc = await self.points.find_one(
            {
                "user_id": user_id,
                "timestamp": {"$gte": start_timestamp, "$lte": end_timestamp},
            },
            projection={"_id": 1},
        )
        return doc is not None

    async def has_points_after(self, user_id: int, timestamp: int | None) -> bool:
        query: dict[str, Any] = {"user_id": user_id}
        if timestamp is not None:
            query["timestamp"] = {"$gt": timestamp}
        return await self.points.find_one(query, projection={"_id": 1}) is not None

    async def first_point_timestamp(self, user_id: int) -> int | None:
        return await self._edge_timestamp(user_id, pymongo.ASCENDING)

    async def last_point_timestamp(self, user_id: int) -> int | None:
        return await self._edge_timestamp(user_id, pymongo.DESCENDING)

    async def _edge_timestamp(self, user_id: int, direction: int) -> int | None:
        doc = await self.points.find_one(
            {"user_id": user_id},
            projection={"timestamp": 1},
            sort=[("timestamp", direction)],
        )
        return int(doc["timestamp"]) if doc else None

    async def previous_point(self, point: Point) -> Point | None:
        """The user's latest point recorded at or before ``point``, excluding itself."""
        query: dict[str, Any] = {
            "user_id": point.user_id,
            "timestamp": {"$lte": point.timestamp},
        }
        if point.id is not None:
            query["_id"] = {"$ne": to_object_id(point.id)}
        doc = await self.points.find_one(
            query,
            sort=[("timestamp", pymongo.DESCENDING), ("_id", pymongo.DESCENDING)],
        )
        return Point.model_validate(doc) if doc else None

    async def user_ids_with_points(self) -> list[int]:
        return sorted(await self.points.distinct("user_id"))

    async def assign_points(
        self, point_ids: Iterable[str], track_id: str, session: Any = None
    ) -> int:
        result = await self.points.update_many(
            {"_id": {"$in": _object_ids(point_ids)}},
            {"$set": {"track_id": to_object_id(track_id)}},
            session=session,
        )
        return result.modified_count

    async def reassign_points(
        self, from_track_id: str, to_track_id: str, session: Any = None
    ) -> int:
        result = await self.points.update_many(
            {"track_id": to_object_id(from_track_id)},
            {"$set": {"track_id": to_object_id(to_track_id)}},
            session=session,
        )
        return result.modified_count

    async def release_points(
        self,
        track_ids: Iterable[str],
        start_timestamp: int | None = None,
        end_timestamp: int | None = None,
        session: Any = None,
    ) -> int:
        """Detach points from the given tracks, optionally only inside a time window."""
        query: dict[str, Any] = {"track_id": {"$in": _object_ids(track_ids)}}
        if start_timestamp is not None and end_timestamp is not None:
            query["timestamp"] = {"$gte": start_timestamp, "$lte": end_timestamp}
        result = await self.points.update_many(
            query, {"$set": {"track_id": None}}, session=session
        )
        return result.modified_count

    # ------------------------------------------------------------------
    # Tracks
    # ------------------------------------------------------------------

    async def insert_track(self, track: Track, session: Any = None) -> Track:
        doc = track.model_dump(by_alias=True, exclude={"id"})
        result = await self.tracks.insert_one(doc, session=session)
        track.id = str(result.inserted_id)
        return track

    async def update_track(self, track: Track, session: Any = None) -> None:
        track.updated_at = get_current_utc_time()
        fields = track.model_dump(exclude={"id", "created_at"})
        await self.tracks.update_one(
            {"_id": to_object_id(track.id)}, {"$set": fields}, session=session
        )

    async def get_track(self, track_id: str) -> Track | None:
        doc = await self.tracks.find_one({"_id": to_object_id(track_id)})
        return Track.model_validate(doc) if doc else None

    async def delete_tracks(self, track_ids: Iterable[str], session: Any = None) -> int:
        """Delete tracks and their segments, releasing their points."""
        ids = _object_ids(track_ids)
        if not ids:
            return 0
        await self.points.update_many(
            {"track_id": {"$in": ids}}, {"$set": {"track_id": None}}, session=session
        )
        await self.segments.delete_many({"track_id": {"$in": ids}}, session=session)
        result = await self.tracks.delete_many({"_id": {"$in": ids}}, session=session)
        return result.deleted_count

    async def delete_segments(self, track_ids: Iterable[str], session: Any = None) -> int:
        result = await self.segments.delete_many(
            {"track_id": {"$in": _object_ids(track_ids)}}, session=session
        )
        return result.deleted_count

    async def tracks_overlapping(
        self,
        user_id: int,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> list[Track]:
        """Tracks with ``start_at < end_at`` and ``end_at > start_at`` of the window."""
        query: dict[str, Any] = {"user_id": user_id}
        if end_at is not None:
            query["start_at"] = {"$lt": end_at}
        if start_at is not None:
            query["end_at"] = {"$gt": start_at}
        docs = await self.tracks.find(query, sort=TRACK_ORDER).to_list(length=None)
        return [Track.model_validate(doc) for doc in docs]

    async def tracks_created_since(self, user_id: int, since: datetime) -> list[Track]:
        docs = await self.tracks.find(
            {"user_id": user_id, "created_at": {"$gt": since}}, sort=TRACK_ORDER
        ).to_list(length=None)
        return [Track.model_validate(doc) for doc in docs]

    async def last_track(self, user_id: int) -> Track | None:
        doc = await self.tracks.find_one(
            {"user_id": user_id}, sort=[("end_at", pymongo.DESCENDING)]
        )
        return Track.model_validate(doc) if doc else None

    async def last_track_starting_between(
        self, user_id: int, start_at: datetime, end_at: datetime
    ) -> Track | None:
        doc = await self.tracks.find_one(
            {"user_id": user_id, "start_at": {"$gte": start_at, "$lte": end_at}},
            sort=[("end_at", pymongo.DESCENDING)],
        )
        return Track.model_validate(doc) if doc else None

    async def duplicate_track_groups(self, user_id: int) -> list[list[dict[str, Any]]]:
        """
        Groups of the user's tracks sharing identical ``(start_at, end_at)``.

        Each group is ordered oldest first by ``created_at`` with ``_id`` as
        the tiebreaker, so the last element is the one to keep.
        """
        docs = await self.tracks.find(
            {"user_id": user_id},
            projection={"_id": 1, "start_at": 1, "end_at": 1, "created_at": 1},
        ).to_list(length=None)

        groups: dict[tuple[datetime, datetime], list[dict[str, Any]]] = defaultdict(list)
        for doc in docs:
            groups[(doc["start_at"], doc["end_at"])].append(doc)

        return [
            sorted(group, key=lambda d: (d.get("created_at"), d["_id"]))
            for group in groups.values()
            if len(group) > 1
        ]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transactions_supported(self) -> bool:
        """Replica sets and sharded clusters support multi-document transactions."""
        if self._transactions_supported is not None:
            return self._transactions_supported
        if self._client is None:
            self._transactions_supported = False
            return False
        try:
            hello = await self._client.admin.command("hello")
        except PyMongoError as e:
            logger.warning("Error checking transaction support: %s", e)
            return False
        self._transactions_supported = bool(
            hello.get("setName") or hello.get("msg") == "isdbgrid"
        )
        if not self._transactions_supported:
            logger.warning(
                "MongoDB transactions are not supported (likely standalone instance). "
                "Falling back to sequential execution without transaction safety."
            )
        return self._transactions_supported

    async def run_transaction(
        self,
        operations: list[Callable[[Any], Awaitable[Any]]],
        max_retries: int = 3,
    ) -> None:
        """
        Run ``operations`` (each called as ``op(session)``) atomically.

        Transient transaction errors are retried with backoff. Any other
        failure aborts the transaction and is re-raised.
        """
        if not await self.transactions_supported():
            for op in operations:
                await op(None)
            return

        retry_count = 0
        while True:
            try:
                async with await self._client.start_session() as session:
                    async with session.start_transaction():
                        for op in operations:
                            await op(session)
                return
            except (ConnectionFailure, OperationFailure) as e:
                if (
                    e.has_error_label("TransientTransactionError")
                    and retry_count < max_retries
                ):
                    retry_count += 1
                    delay = 0.1 * (2**retry_count)
                    logger.warning(
                        "Transient transaction error, retrying in %.1fs (%d/%d): %s",
                        delay,
                        retry_count,
                        max_retries,
                        e,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise
