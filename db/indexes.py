"""Database index definitions and initialization.

Index creation failures are logged and skipped so a conflicting index left by
an older deployment never blocks a worker from starting.
"""

from __future__ import annotations

import logging

import pymongo
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import IndexModel
from pymongo.errors import OperationFailure

logger = logging.getLogger(__name__)

POINTS_COLLECTION = "points"
TRACKS_COLLECTION = "tracks"
SEGMENTS_COLLECTION = "track_segments"
USER_SETTINGS_COLLECTION = "user_settings"

TRACK_INDEXES: dict[str, list[IndexModel]] = {
    POINTS_COLLECTION: [
        IndexModel([("lonlat", pymongo.GEOSPHERE)], name="points_lonlat_2dsphere"),
        IndexModel(
            [("user_id", pymongo.ASCENDING), ("timestamp", pymongo.ASCENDING)],
            name="points_user_timestamp_idx",
        ),
        IndexModel(
            [("user_id", pymongo.ASCENDING), ("track_id", pymongo.ASCENDING)],
            name="points_user_track_idx",
        ),
    ],
    TRACKS_COLLECTION: [
        IndexModel(
            [("user_id", pymongo.ASCENDING), ("start_at", pymongo.ASCENDING)],
            name="tracks_user_start_idx",
        ),
        IndexModel(
            [
                ("user_id", pymongo.ASCENDING),
                ("start_at", pymongo.ASCENDING),
                ("end_at", pymongo.ASCENDING),
            ],
            name="tracks_user_start_end_idx",
        ),
        IndexModel(
            [("user_id", pymongo.ASCENDING), ("created_at", pymongo.DESCENDING)],
            name="tracks_user_created_idx",
        ),
    ],
    SEGMENTS_COLLECTION: [
        IndexModel([("track_id", pymongo.ASCENDING)], name="segments_track_idx"),
    ],
}


async def ensure_track_indexes(database: AsyncIOMotorDatabase) -> None:
    """Ensure the indexes for points, tracks and segments exist."""
    for collection_name, indexes in TRACK_INDEXES.items():
        try:
            await database[collection_name].create_indexes(indexes)
            logger.debug("Indexes ensured for %s", collection_name)
        except OperationFailure as e:
            logger.error(
                "Error creating indexes for %s: %s",
                collection_name,
                e,
            )
