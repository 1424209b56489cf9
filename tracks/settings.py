"""
Per-user track settings.

Thresholds are user-configurable and stored outside this pipeline; the
pipeline only reads them through a :class:`SettingsProvider`.
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import BaseModel, Field, ValidationError
from pymongo.errors import PyMongoError

from db import USER_SETTINGS_COLLECTION, db_manager
from tracks.config import DEFAULT_METERS_BETWEEN_ROUTES, DEFAULT_MINUTES_BETWEEN_ROUTES

logger = logging.getLogger(__name__)


class TrackSettings(BaseModel):
    """Segmentation thresholds and display preferences for one user."""

    meters_between_routes: int = Field(default=DEFAULT_METERS_BETWEEN_ROUTES, ge=0)
    minutes_between_routes: int = Field(default=DEFAULT_MINUTES_BETWEEN_ROUTES, ge=0)
    distance_unit: Literal["km", "mi"] = "km"
    split_on_distance: bool = False

    def as_metadata(self) -> dict[str, int | str | bool]:
        return self.model_dump()


class SettingsProvider(Protocol):
    async def get(self, user_id: int) -> TrackSettings: ...


class StaticSettingsProvider:
    """Returns the same settings for every user."""

    def __init__(self, settings: TrackSettings | None = None) -> None:
        self.settings = settings or TrackSettings()

    async def get(self, user_id: int) -> TrackSettings:
        return self.settings


class MongoSettingsProvider:
    """
    Reads ``user_settings`` documents keyed by ``user_id``.

    Missing documents yield defaults. Unknown keys are ignored and invalid
    values fall back to defaults with a warning, so a malformed settings
    document never blocks track generation.
    """

    def __init__(self, collection: AsyncIOMotorCollection | None = None) -> None:
        self._collection = collection

    @property
    def collection(self) -> AsyncIOMotorCollection:
        if self._collection is None:
            self._collection = db_manager.get_collection(USER_SETTINGS_COLLECTION)
        return self._collection

    async def get(self, user_id: int) -> TrackSettings:
        try:
            doc = await self.collection.find_one({"user_id": user_id})
        except PyMongoError as e:
            logger.warning(
                "Failed to load track settings for user %s, using defaults: %s",
                user_id,
                e,
            )
            return TrackSettings()

        if not doc:
            return TrackSettings()

        fields = {k: doc[k] for k in TrackSettings.model_fields if doc.get(k) is not None}
        try:
            return TrackSettings(**fields)
        except ValidationError as e:
            logger.warning(
                "Invalid track settings for user %s, using defaults: %s",
                user_id,
                e,
            )
            return TrackSettings()
