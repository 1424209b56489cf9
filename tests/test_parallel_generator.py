from __future__ import annotations

from datetime import timedelta

import pytest
from track_fakes import BASE_TIME, BASE_TS, insert_points, walk

from core.date_utils import to_unix
from core.exceptions import InvalidGenerationModeError
from tracks.boundary_scheduler import boundary_resolution_delay
from tracks.builder import TrackBuilder
from tracks.jobs import PROCESS_CHUNK_TASK, RESOLVE_BOUNDARIES_TASK
from tracks.parallel_generator import ParallelGenerator


def test_boundary_delay_has_a_floor_and_scales_with_chunks() -> None:
    assert boundary_resolution_delay(0) == 300
    assert boundary_resolution_delay(1) == 300
    assert boundary_resolution_delay(20) == 600


def test_unknown_mode_is_rejected(repository, settings_provider, queue) -> None:
    with pytest.raises(InvalidGenerationModeError):
        ParallelGenerator(1, repository, settings_provider, queue, mode="weekly")


@pytest.mark.asyncio
async def test_fans_out_one_job_per_chunk_and_one_resolver(
    repository, settings_provider, queue, redis_client
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))
    await insert_points(repository, walk(BASE_TS + 86400, 3))
    await insert_points(repository, walk(BASE_TS + 2 * 86400, 3))

    generator = ParallelGenerator(
        1,
        repository,
        settings_provider,
        queue,
        start_at=BASE_TIME,
        end_at=BASE_TIME + timedelta(days=3),
        redis_client=redis_client,
    )
    chunks = await generator.call()

    assert chunks == 3
    chunk_jobs = queue.named(PROCESS_CHUNK_TASK)
    assert len(chunk_jobs) == 3
    assert {job.args[1] for job in chunk_jobs} == {generator.session.session_id}
    assert isinstance(chunk_jobs[0].args[2]["start_time"], str)

    resolver_jobs = queue.named(RESOLVE_BOUNDARIES_TASK)
    assert len(resolver_jobs) == 1
    assert resolver_jobs[0].args == (1, generator.session.session_id)
    assert resolver_jobs[0].countdown == 300
    assert resolver_jobs[0].kwargs == {"attempt": 0}

    data = await generator.session.get_session_data()
    assert data["status"] == "processing"
    assert data["total_chunks"] == 3
    assert data["metadata"]["mode"] == "bulk"
    assert data["metadata"]["chunk_size"] == "1 day"
    assert data["metadata"]["user_settings"]["minutes_between_routes"] == 60


@pytest.mark.asyncio
async def test_no_chunks_enqueues_nothing(
    repository, settings_provider, queue, redis_client
) -> None:
    generator = ParallelGenerator(
        1, repository, settings_provider, queue, redis_client=redis_client
    )

    assert await generator.call() == 0
    assert queue.jobs == []
    assert generator.session is None


@pytest.mark.asyncio
async def test_bulk_mode_deletes_existing_tracks_first(
    repository, settings_provider, queue, redis_client
) -> None:
    points = await insert_points(repository, walk(BASE_TS, 3))
    existing = await TrackBuilder(1, repository).build(points)

    await ParallelGenerator(
        1,
        repository,
        settings_provider,
        queue,
        mode="bulk",
        redis_client=redis_client,
    ).call()

    assert await repository.get_track(existing.id) is None
    assert len(await repository.load_points(1)) == 3


@pytest.mark.asyncio
async def test_incremental_mode_keeps_existing_tracks(
    repository, settings_provider, queue, redis_client
) -> None:
    points = await insert_points(repository, walk(BASE_TS, 3))
    existing = await TrackBuilder(1, repository).build(points)

    await ParallelGenerator(
        1,
        repository,
        settings_provider,
        queue,
        mode="incremental",
        redis_client=redis_client,
    ).call()

    assert await repository.get_track(existing.id) is not None


async def _track_on(repository, start_ts: int):
    points = await insert_points(repository, walk(start_ts, 3))
    return await TrackBuilder(1, repository).build(points)


@pytest.mark.asyncio
async def test_daily_mode_with_start_only_covers_that_whole_day(
    repository, settings_provider, queue, redis_client
) -> None:
    day_start = BASE_TIME.replace(hour=0)
    same_day = await _track_on(repository, BASE_TS)
    later_day = await _track_on(repository, BASE_TS + 2 * 86400)

    generator = ParallelGenerator(
        1,
        repository,
        settings_provider,
        queue,
        mode="daily",
        start_at=day_start + timedelta(hours=5),
        redis_client=redis_client,
    )
    chunks = await generator.call()

    assert generator.start_at == day_start
    assert generator.end_at == day_start + timedelta(days=1, seconds=-1)
    assert await repository.get_track(same_day.id) is None
    assert await repository.get_track(later_day.id) is not None
    assert chunks == 1
    chunk = queue.named(PROCESS_CHUNK_TASK)[0].args[2]
    assert chunk["start_timestamp"] == to_unix(day_start)
    assert chunk["buffer_end_timestamp"] <= to_unix(generator.end_at)


@pytest.mark.asyncio
async def test_daily_mode_without_bounds_runs_today_until_now(
    repository, settings_provider, queue, redis_client, monkeypatch
) -> None:
    now = BASE_TIME + timedelta(hours=4)
    monkeypatch.setattr(
        "tracks.parallel_generator.get_current_utc_time", lambda: now
    )
    today = await _track_on(repository, BASE_TS)
    yesterday = await _track_on(repository, BASE_TS - 86400)

    generator = ParallelGenerator(
        1,
        repository,
        settings_provider,
        queue,
        mode="daily",
        redis_client=redis_client,
    )
    chunks = await generator.call()

    assert generator.start_at == BASE_TIME.replace(hour=0)
    assert generator.end_at == now
    assert await repository.get_track(today.id) is None
    assert await repository.get_track(yesterday.id) is not None
    assert chunks == 1
    chunk = queue.named(PROCESS_CHUNK_TASK)[0].args[2]
    assert chunk["end_timestamp"] == to_unix(now)
