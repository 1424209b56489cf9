import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from mongomock_motor import AsyncMongoMockClient
from queue_fakes import RecordingQueue

from db import POINTS_COLLECTION, SEGMENTS_COLLECTION, TRACKS_COLLECTION
from tracks.repository import TrackRepository
from tracks.settings import StaticSettingsProvider, TrackSettings


@pytest.fixture
def mongo_db():
    client = AsyncMongoMockClient()
    return client["test_tracks"]


@pytest.fixture
def repository(mongo_db) -> TrackRepository:
    return TrackRepository(
        points=mongo_db[POINTS_COLLECTION],
        tracks=mongo_db[TRACKS_COLLECTION],
        segments=mongo_db[SEGMENTS_COLLECTION],
    )


@pytest.fixture
async def redis_client():
    client = FakeAsyncRedis(server=FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def track_settings() -> TrackSettings:
    return TrackSettings(meters_between_routes=500, minutes_between_routes=60)


@pytest.fixture
def settings_provider(track_settings: TrackSettings) -> StaticSettingsProvider:
    return StaticSettingsProvider(track_settings)
