from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from track_fakes import BASE_TS, insert_points, walk

from tracks.chunk_processor import TimeChunkProcessor
from tracks.session_manager import SessionManager


def _chunk(start: int, end: int, buffer: int = 0) -> dict:
    return {
        "chunk_id": "chunk-1",
        "start_timestamp": start,
        "end_timestamp": end,
        "buffer_start_timestamp": start - buffer,
        "buffer_end_timestamp": end + buffer,
    }


@pytest.fixture
async def session(redis_client) -> SessionManager:
    manager = await SessionManager.create_for_user(1, redis_client=redis_client)
    await manager.mark_started(1)
    return manager


@pytest.mark.asyncio
async def test_builds_tracks_and_reports_progress(
    repository, settings_provider, redis_client, session
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))
    await insert_points(repository, walk(BASE_TS + 3 * 3600, 3))

    created = await TimeChunkProcessor(
        1,
        session.session_id,
        _chunk(BASE_TS, BASE_TS + 86400),
        repository,
        settings_provider,
        redis_client,
    ).call()

    assert created == 2
    data = await session.get_session_data()
    assert data["tracks_created"] == 2
    assert data["completed_chunks"] == 1
    assert await repository.load_points(1) == []


@pytest.mark.asyncio
async def test_segments_outside_the_chunk_window_are_left_to_neighbours(
    repository, settings_provider, redis_client, session
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))
    await insert_points(repository, walk(BASE_TS + 5 * 3600, 3))

    created = await TimeChunkProcessor(
        1,
        session.session_id,
        _chunk(BASE_TS + 4 * 3600, BASE_TS + 10 * 3600, buffer=6 * 3600),
        repository,
        settings_provider,
        redis_client,
    ).call()

    assert created == 1
    assert len(await repository.load_points(1)) == 3


@pytest.mark.asyncio
async def test_imported_points_are_included_in_bulk_runs(
    repository, settings_provider, redis_client, session
) -> None:
    await insert_points(repository, walk(BASE_TS, 3), import_id="import-1")

    created = await TimeChunkProcessor(
        1,
        session.session_id,
        _chunk(BASE_TS, BASE_TS + 3600),
        repository,
        settings_provider,
        redis_client,
    ).call()

    assert created == 1


@pytest.mark.asyncio
async def test_failure_still_completes_the_chunk(
    repository, settings_provider, redis_client, session
) -> None:
    repository.load_points = AsyncMock(side_effect=RuntimeError("db down"))

    created = await TimeChunkProcessor(
        1,
        session.session_id,
        _chunk(BASE_TS, BASE_TS + 3600),
        repository,
        settings_provider,
        redis_client,
    ).call()

    assert created == 0
    data = await session.get_session_data()
    assert data["completed_chunks"] == 1
    assert data["failed_chunks"] == 1
    assert await session.all_chunks_completed() is True


@pytest.mark.asyncio
async def test_missing_session_skips_the_chunk(
    repository, settings_provider, redis_client
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))

    created = await TimeChunkProcessor(
        1,
        "expired",
        _chunk(BASE_TS, BASE_TS + 3600),
        repository,
        settings_provider,
        redis_client,
    ).call()

    assert created == 0
    assert len(await repository.load_points(1)) == 3
