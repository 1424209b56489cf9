from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from db import USER_SETTINGS_COLLECTION
from tracks.settings import MongoSettingsProvider, StaticSettingsProvider, TrackSettings


@pytest.mark.asyncio
async def test_missing_document_yields_defaults(mongo_db) -> None:
    provider = MongoSettingsProvider(mongo_db[USER_SETTINGS_COLLECTION])

    settings = await provider.get(1)

    assert settings == TrackSettings()
    assert settings.meters_between_routes == 500
    assert settings.minutes_between_routes == 60
    assert settings.distance_unit == "km"
    assert settings.split_on_distance is False


@pytest.mark.asyncio
async def test_reads_user_thresholds_and_ignores_unknown_keys(mongo_db) -> None:
    collection = mongo_db[USER_SETTINGS_COLLECTION]
    await collection.insert_one(
        {
            "user_id": 1,
            "meters_between_routes": 250,
            "minutes_between_routes": 15,
            "distance_unit": "mi",
            "theme": "dark",
        }
    )

    settings = await MongoSettingsProvider(collection).get(1)

    assert settings.meters_between_routes == 250
    assert settings.minutes_between_routes == 15
    assert settings.distance_unit == "mi"


@pytest.mark.asyncio
async def test_invalid_document_falls_back_to_defaults(mongo_db) -> None:
    collection = mongo_db[USER_SETTINGS_COLLECTION]
    await collection.insert_one(
        {"user_id": 1, "meters_between_routes": -5, "distance_unit": "parsecs"}
    )

    assert await MongoSettingsProvider(collection).get(1) == TrackSettings()


@pytest.mark.asyncio
async def test_database_errors_fall_back_to_defaults() -> None:
    collection = MagicMock()
    collection.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))

    assert await MongoSettingsProvider(collection).get(1) == TrackSettings()


@pytest.mark.asyncio
async def test_static_provider_and_metadata() -> None:
    settings = TrackSettings(meters_between_routes=100, split_on_distance=True)

    assert await StaticSettingsProvider(settings).get(42) is settings
    assert settings.as_metadata() == {
        "meters_between_routes": 100,
        "minutes_between_routes": 60,
        "distance_unit": "km",
        "split_on_distance": True,
    }
