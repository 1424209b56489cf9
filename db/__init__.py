"""Database package for MongoDB access through motor.

Modules:
    manager: DatabaseManager singleton for connection handling
    indexes: Index definitions for points, tracks and segments
    logging_handler: Logging handler persisting worker logs

Usage:
    from db import db_manager

    points = db_manager.get_collection("points")
    doc = await points.find_one({"user_id": 1})
"""

from db.indexes import (
    POINTS_COLLECTION,
    SEGMENTS_COLLECTION,
    TRACKS_COLLECTION,
    USER_SETTINGS_COLLECTION,
    ensure_track_indexes,
)
from db.manager import DatabaseManager, db_manager

__all__ = [
    "POINTS_COLLECTION",
    "SEGMENTS_COLLECTION",
    "TRACKS_COLLECTION",
    "USER_SETTINGS_COLLECTION",
    "DatabaseManager",
    "db_manager",
    "ensure_track_indexes",
]
