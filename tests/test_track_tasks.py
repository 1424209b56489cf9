from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from celery.exceptions import Retry
from pymongo.errors import ServerSelectionTimeoutError
from redis.exceptions import ConnectionError as RedisConnectionError
from track_fakes import BASE_TS, insert_points, walk

import tasks.tracks as tasks_module
from core.exceptions import TrackPersistenceError
from tasks.tracks import (
    daily_generation_async,
    generate_incremental_async,
    generate_range_async,
    parallel_generate_async,
    process_point_async,
    process_time_chunk_async,
    realtime_generate_async,
)
from tracks.jobs import GENERATE_RANGE_TASK, PARALLEL_GENERATE_TASK, PROCESS_CHUNK_TASK
from tracks.realtime_debouncer import RealtimeDebouncer


@pytest.mark.asyncio
async def test_parallel_generate_reports_session(
    repository, settings_provider, queue, redis_client
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))

    result = await parallel_generate_async(
        1,
        "bulk",
        "2024-03-01T00:00:00+00:00",
        "2024-03-02T00:00:00+00:00",
        repository=repository,
        settings_provider=settings_provider,
        queue=queue,
        redis_client=redis_client,
    )

    assert result["status"] == "success"
    assert result["chunks"] == 1
    assert result["session_id"]
    chunk_job = queue.named(PROCESS_CHUNK_TASK)[0]
    assert chunk_job.args[1] == result["session_id"]


@pytest.mark.asyncio
async def test_chunk_task_runs_the_enqueued_payload(
    repository, settings_provider, queue, redis_client
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))
    await parallel_generate_async(
        1,
        "bulk",
        "2024-03-01T00:00:00+00:00",
        "2024-03-02T00:00:00+00:00",
        repository=repository,
        settings_provider=settings_provider,
        queue=queue,
        redis_client=redis_client,
    )
    job = queue.named(PROCESS_CHUNK_TASK)[0]

    result = await process_time_chunk_async(
        *job.args,
        repository=repository,
        settings_provider=settings_provider,
        redis_client=redis_client,
    )

    assert result["status"] == "success"
    assert result["tracks_created"] == 1
    assert result["chunk_id"] == job.args[2]["chunk_id"]


@pytest.mark.asyncio
async def test_generate_range_parses_iso_bounds(repository, settings_provider) -> None:
    await insert_points(repository, walk(BASE_TS, 3))

    result = await generate_range_async(
        1,
        "2024-03-01T07:00:00+00:00",
        "2024-03-01T09:00:00+00:00",
        repository=repository,
        settings_provider=settings_provider,
    )

    assert result == {"status": "success", "mode": "none", "tracks_created": 1}


@pytest.mark.asyncio
async def test_generate_incremental_for_a_past_day(
    repository, settings_provider, redis_client
) -> None:
    await insert_points(repository, walk(BASE_TS, 3))

    result = await generate_incremental_async(
        1,
        "2024-03-01",
        repository=repository,
        settings_provider=settings_provider,
        redis_client=redis_client,
    )

    assert result == {"status": "success", "tracks_created": 1}


@pytest.mark.asyncio
async def test_realtime_generate_clears_the_debounce_key(
    repository, settings_provider, queue, redis_client
) -> None:
    debouncer = RealtimeDebouncer(1, queue, redis_client=redis_client)
    await debouncer.trigger()
    assert await debouncer.pending()

    result = await realtime_generate_async(
        1,
        repository=repository,
        settings_provider=settings_provider,
        queue=queue,
        redis_client=redis_client,
    )

    assert result["status"] == "success"
    assert not await debouncer.pending()


@pytest.mark.asyncio
async def test_daily_generation_counts_enqueued_users(repository, queue) -> None:
    await insert_points(repository, walk(BASE_TS, 2))

    result = await daily_generation_async(repository=repository, queue=queue)

    assert result == {"status": "success", "users_enqueued": 1}
    assert queue.named(PARALLEL_GENERATE_TASK)[0].args == (1, "daily")


@pytest.mark.asyncio
async def test_process_point_routes_new_points(
    repository, settings_provider, queue, redis_client
) -> None:
    first, second = await insert_points(repository, walk(BASE_TS, 2))
    imported = (
        await insert_points(repository, walk(BASE_TS + 120, 1), import_id="gpx-1")
    )[0]
    kwargs = {
        "repository": repository,
        "settings_provider": settings_provider,
        "queue": queue,
        "redis_client": redis_client,
    }

    assert (await process_point_async(first.id, **kwargs))["action"] == "generate"
    assert (await process_point_async(second.id, **kwargs))["action"] == "debounced"
    assert (await process_point_async(imported.id, **kwargs))["action"] == "skipped"
    assert len(queue.named(GENERATE_RANGE_TASK)) == 1


@pytest.mark.asyncio
async def test_process_point_requires_an_existing_point(repository) -> None:
    with pytest.raises(TrackPersistenceError):
        await process_point_async("65f1c0de0000000000000000", repository=repository)


def _failing_bridge(error: Exception):
    def _run(coro):
        coro.close()
        raise error

    return _run


def _bound_task(retries: int = 0) -> MagicMock:
    task = MagicMock()
    task.name = PARALLEL_GENERATE_TASK
    task.default_retry_delay = 60
    task.request.retries = retries
    task.request.id = "task-1"
    task.retry.return_value = Retry()
    return task


async def _noop() -> None:
    return None


def test_transient_errors_are_retried_with_backoff(monkeypatch) -> None:
    error = ServerSelectionTimeoutError("no primary")
    monkeypatch.setattr(tasks_module, "run_async_from_sync", _failing_bridge(error))
    task = _bound_task(retries=2)

    with pytest.raises(Retry):
        tasks_module.run_with_retry(task, _noop())

    task.retry.assert_called_once_with(exc=error, countdown=240)


def test_redis_errors_are_retried(monkeypatch) -> None:
    error = RedisConnectionError("refused")
    monkeypatch.setattr(tasks_module, "run_async_from_sync", _failing_bridge(error))
    task = _bound_task()

    with pytest.raises(Retry):
        tasks_module.run_with_retry(task, _noop())

    task.retry.assert_called_once_with(exc=error, countdown=60)


def test_pipeline_errors_are_not_retried(monkeypatch) -> None:
    monkeypatch.setattr(
        tasks_module,
        "run_async_from_sync",
        _failing_bridge(TrackPersistenceError("missing point")),
    )
    task = _bound_task()

    with pytest.raises(TrackPersistenceError):
        tasks_module.run_with_retry(task, _noop())

    task.retry.assert_not_called()
