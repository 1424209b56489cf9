"""Celery tasks for the track pipeline.

Each task is a thin synchronous wrapper that runs its async counterpart
through :func:`core.async_bridge.run_async_from_sync`. The async functions
take their collaborators as keyword arguments so tests can call them
directly with fakes.
"""

from __future__ import annotations

from typing import Any

from celery import shared_task
from celery.utils.log import get_task_logger
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from core.async_bridge import run_async_from_sync
from core.date_utils import parse_timestamp
from core.exceptions import TrackPersistenceError
from tracks.boundary_resolver import BoundaryResolver
from tracks.boundary_scheduler import DelayedBoundaryScheduler
from tracks.chunk_processor import TimeChunkProcessor
from tracks.daily_generation import DailyGeneration
from tracks.incremental_generator import IncrementalGenerator, RangeGenerator
from tracks.incremental_processor import IncrementalProcessor
from tracks.jobs import (
    DAILY_GENERATION_TASK,
    GENERATE_INCREMENTAL_TASK,
    GENERATE_RANGE_TASK,
    PARALLEL_GENERATE_TASK,
    PROCESS_CHUNK_TASK,
    PROCESS_POINT_TASK,
    REALTIME_GENERATE_TASK,
    RESOLVE_BOUNDARIES_TASK,
    CeleryJobQueue,
    JobQueue,
)
from tracks.parallel_generator import ParallelGenerator
from tracks.realtime_debouncer import RealtimeDebouncer
from tracks.repository import TrackRepository
from tracks.settings import MongoSettingsProvider, SettingsProvider

logger = get_task_logger(__name__)

TRANSIENT_ERRORS = (PyMongoError, RedisError)


def run_with_retry(task, coro):
    """
    Run ``coro`` for a bound task, retrying on MongoDB and Redis errors.

    The countdown doubles from ``default_retry_delay`` with each retry;
    once ``max_retries`` is spent Celery re-raises the original error.
    """
    try:
        return run_async_from_sync(coro)
    except TRANSIENT_ERRORS as e:
        countdown = int(task.default_retry_delay * (2**task.request.retries))
        logger.warning(
            "Task %s (%s) hit %s, retrying in %ds: %s",
            task.name,
            task.request.id,
            type(e).__name__,
            countdown,
            e,
        )
        raise task.retry(exc=e, countdown=countdown) from e


async def parallel_generate_async(
    user_id: int,
    mode: str,
    start_at: str | None = None,
    end_at: str | None = None,
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
    queue: JobQueue | None = None,
    redis_client: Any = None,
) -> dict[str, Any]:
    generator = ParallelGenerator(
        user_id,
        repository or TrackRepository(),
        settings_provider or MongoSettingsProvider(),
        queue or CeleryJobQueue(),
        mode=mode,
        start_at=parse_timestamp(start_at),
        end_at=parse_timestamp(end_at),
        redis_client=redis_client,
    )
    chunks = await generator.call()
    return {
        "status": "success",
        "user_id": user_id,
        "chunks": chunks,
        "session_id": generator.session.session_id if generator.session else None,
    }


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    name=PARALLEL_GENERATE_TASK,
)
def parallel_generate(self, user_id: int, mode: str, start_at=None, end_at=None):
    """Fan a user's generation run out into chunk jobs."""
    return run_with_retry(self, parallel_generate_async(user_id, mode, start_at, end_at))


async def process_time_chunk_async(
    user_id: int,
    session_id: str,
    chunk: dict[str, Any],
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
    redis_client: Any = None,
) -> dict[str, Any]:
    created = await TimeChunkProcessor(
        user_id,
        session_id,
        chunk,
        repository or TrackRepository(),
        settings_provider or MongoSettingsProvider(),
        redis_client=redis_client,
    ).call()
    return {"status": "success", "chunk_id": chunk.get("chunk_id"), "tracks_created": created}


@shared_task(bind=True, name=PROCESS_CHUNK_TASK, acks_late=True)
def process_time_chunk(_self, user_id: int, session_id: str, chunk: dict[str, Any]):
    return run_async_from_sync(process_time_chunk_async(user_id, session_id, chunk))


async def resolve_boundaries_async(
    user_id: int,
    session_id: str,
    attempt: int = 0,
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
    queue: JobQueue | None = None,
    redis_client: Any = None,
) -> dict[str, Any] | None:
    return await BoundaryResolver(
        user_id,
        session_id,
        repository or TrackRepository(),
        settings_provider or MongoSettingsProvider(),
        scheduler=DelayedBoundaryScheduler(queue or CeleryJobQueue()),
        redis_client=redis_client,
    ).call(attempt=attempt)


@shared_task(bind=True, name=RESOLVE_BOUNDARIES_TASK)
def resolve_boundaries(_self, user_id: int, session_id: str, attempt: int = 0):
    return run_async_from_sync(resolve_boundaries_async(user_id, session_id, attempt))


async def generate_range_async(
    user_id: int,
    start_at: str | None = None,
    end_at: str | None = None,
    mode: str = "none",
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
) -> dict[str, Any]:
    created = await RangeGenerator(
        user_id,
        repository or TrackRepository(),
        settings_provider or MongoSettingsProvider(),
        start_at=parse_timestamp(start_at),
        end_at=parse_timestamp(end_at),
    ).call()
    return {"status": "success", "mode": mode, "tracks_created": created}


@shared_task(bind=True, max_retries=3, default_retry_delay=30, name=GENERATE_RANGE_TASK)
def generate_range(self, user_id: int, start_at=None, end_at=None, mode: str = "none"):
    """Bounded generation enqueued when a new point closes off a journey."""
    return run_with_retry(self, generate_range_async(user_id, start_at, end_at, mode))


async def generate_incremental_async(
    user_id: int,
    day: str | None = None,
    grace_period_minutes: int | None = None,
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
    redis_client: Any = None,
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {"day": day, "redis_client": redis_client}
    if grace_period_minutes is not None:
        kwargs["grace_period_minutes"] = grace_period_minutes
    created = await IncrementalGenerator(
        user_id,
        repository or TrackRepository(),
        settings_provider or MongoSettingsProvider(),
        **kwargs,
    ).call()
    return {"status": "success", "tracks_created": created}


@shared_task(bind=True, max_retries=3, default_retry_delay=30, name=GENERATE_INCREMENTAL_TASK)
def generate_incremental(self, user_id: int, day=None, grace_period_minutes=None):
    return run_with_retry(
        self,
        generate_incremental_async(user_id, day, grace_period_minutes),
    )


async def realtime_generate_async(
    user_id: int,
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
    queue: JobQueue | None = None,
    redis_client: Any = None,
) -> dict[str, Any]:
    await RealtimeDebouncer(
        user_id, queue or CeleryJobQueue(), redis_client=redis_client
    ).clear()
    return await generate_incremental_async(
        user_id,
        repository=repository,
        settings_provider=settings_provider,
        redis_client=redis_client,
    )


@shared_task(bind=True, name=REALTIME_GENERATE_TASK)
def realtime_generate(_self, user_id: int):
    """Debounced live regeneration; see RealtimeDebouncer."""
    return run_async_from_sync(realtime_generate_async(user_id))


async def daily_generation_async(
    user_ids: list[int] | None = None,
    *,
    repository: TrackRepository | None = None,
    queue: JobQueue | None = None,
) -> dict[str, Any]:
    enqueued = await DailyGeneration(
        repository or TrackRepository(), queue or CeleryJobQueue(), user_ids
    ).call()
    logger.info("Daily generation enqueued %d users", enqueued)
    return {"status": "success", "users_enqueued": enqueued}


@shared_task(bind=True, name=DAILY_GENERATION_TASK)
def daily_generation(_self, user_ids: list[int] | None = None):
    return run_async_from_sync(daily_generation_async(user_ids))


async def process_point_async(
    point_id: str,
    *,
    repository: TrackRepository | None = None,
    settings_provider: SettingsProvider | None = None,
    queue: JobQueue | None = None,
    redis_client: Any = None,
) -> dict[str, Any]:
    repository = repository or TrackRepository()
    points = await repository.points_by_ids([point_id])
    if not points:
        msg = f"Point {point_id} not found"
        raise TrackPersistenceError(msg)

    action = await IncrementalProcessor(
        points[0],
        repository,
        settings_provider or MongoSettingsProvider(),
        queue or CeleryJobQueue(),
        redis_client=redis_client,
    ).call()
    return {"status": "success", "point_id": point_id, "action": action}


@shared_task(bind=True, name=PROCESS_POINT_TASK)
def process_point(_self, point_id: str):
    """Hook for point ingestion: decide whether a new point closes a track."""
    return run_async_from_sync(process_point_async(point_id))
