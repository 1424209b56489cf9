from __future__ import annotations

from datetime import UTC
from unittest.mock import AsyncMock

import pytest

import db.indexes
from db.manager import DatabaseManager, MongoConfig


def test_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MONGODB_URI", " mongodb://db.internal:27018 ")
    monkeypatch.setenv("MONGODB_DATABASE", "gps")
    monkeypatch.setenv("MONGODB_MAX_POOL_SIZE", "7")

    config = MongoConfig.from_env()

    assert config.uri == "mongodb://db.internal:27018"
    assert config.database == "gps"
    assert config.max_pool_size == 7


def test_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MONGODB_URI", "MONGODB_DATABASE", "MONGODB_MAX_POOL_SIZE"):
        monkeypatch.delenv(name, raising=False)

    config = MongoConfig.from_env()

    assert config.uri == "mongodb://mongo:27017"
    assert config.database == "tracks"


def test_client_kwargs_are_tz_aware_and_add_tls_for_srv() -> None:
    plain = MongoConfig().client_kwargs()
    assert plain["tz_aware"] is True
    assert plain["tzinfo"] is UTC
    assert "tlsCAFile" not in plain

    srv = MongoConfig(uri="mongodb+srv://cluster.example.net").client_kwargs()
    assert srv["tls"] is True
    assert srv["tlsCAFile"]


@pytest.mark.asyncio
async def test_indexes_are_created_once_per_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    ensure = AsyncMock()
    monkeypatch.setattr(db.indexes, "ensure_track_indexes", ensure)
    manager = DatabaseManager(MongoConfig(database="unit"))

    await manager.ensure_indexes()
    await manager.ensure_indexes()

    ensure.assert_awaited_once()
    assert manager.get_collection("points").name == "points"
    await manager.cleanup_connections()
    assert manager._client is None
