"""Celery application for the track pipeline.

Redis is both broker and result backend. Chunk jobs run on the default
queue; boundary resolution and bounded live generation go to
``high_priority`` so a long bulk backlog does not starve them. Celery Beat
runs the hourly daily-generation sweep.

Run workers as a non-root user (``--uid``).
"""

import asyncio
import logging
import os
import time
from datetime import timedelta

from celery import Celery, signals
from celery.utils.log import get_task_logger
from dotenv import load_dotenv
from kombu import Queue

from core.async_bridge import set_worker_loop, shutdown_worker_loop
from core.redis import get_redis_url
from db import db_manager
from db.logging_handler import MongoDBHandler
from tracks.jobs import (
    DAILY_GENERATION_TASK,
    GENERATE_RANGE_TASK,
    PROCESS_POINT_TASK,
    REALTIME_GENERATE_TASK,
    RESOLVE_BOUNDARIES_TASK,
)

logger = get_task_logger(__name__)

load_dotenv()

REDIS_URL = get_redis_url()
BROKER_PING_ATTEMPTS = 10
BROKER_PING_DELAY = 5

HIGH_PRIORITY_TASKS = (
    RESOLVE_BOUNDARIES_TASK,
    GENERATE_RANGE_TASK,
    REALTIME_GENERATE_TASK,
    PROCESS_POINT_TASK,
)


def wait_for_broker() -> None:
    """Block until the Redis broker answers PING, up to BROKER_PING_ATTEMPTS tries."""
    import redis
    from redis.exceptions import ConnectionError as RedisConnectionError

    for attempt in range(1, BROKER_PING_ATTEMPTS + 1):
        try:
            redis.from_url(REDIS_URL).ping()
        except RedisConnectionError as e:
            if attempt == BROKER_PING_ATTEMPTS:
                logger.error("Redis broker unreachable after %d attempts", attempt)
                raise
            logger.warning(
                "Redis broker not reachable (attempt %d/%d): %s",
                attempt,
                BROKER_PING_ATTEMPTS,
                e,
            )
            time.sleep(BROKER_PING_DELAY)
        else:
            logger.info("Connected to Redis broker")
            return


app = Celery("tracks", broker=REDIS_URL, backend=REDIS_URL, include=["tasks.tracks"])

app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_queues=[
        Queue("default", routing_key="default"),
        Queue("high_priority", routing_key="high_priority"),
    ],
    task_default_queue="default",
    task_default_routing_key="default",
    task_routes={name: {"queue": "high_priority"} for name in HIGH_PRIORITY_TASKS},
    worker_concurrency=int(os.getenv("CELERY_WORKER_CONCURRENCY", "4")),
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=1800,
    task_soft_time_limit=1500,
    result_expires=3600,
    broker_connection_retry_on_startup=True,
    beat_schedule={
        "track-daily-generation": {
            "task": DAILY_GENERATION_TASK,
            "schedule": timedelta(hours=1),
            "options": {"queue": "default"},
        },
    },
)


@signals.task_failure.connect
def log_task_failure(sender=None, task_id=None, exception=None, **kwargs):
    logger.error(
        "Task %s (%s) failed: %s",
        getattr(sender, "name", "unknown"),
        task_id,
        exception,
        exc_info=True,
    )


@signals.worker_init.connect
def check_broker(**kwargs):
    wait_for_broker()


async def _prepare_database() -> None:
    await db_manager.ensure_indexes()
    handler = MongoDBHandler(db_manager.db)
    handler.setLevel(logging.INFO)
    await handler.setup_indexes()
    logging.getLogger("tracks").addHandler(handler)


@signals.worker_process_init.connect(weak=False)
def init_worker_process(**kwargs):
    """Give each worker process its own event loop, indexes and MongoDB log handler."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    set_worker_loop(loop)
    loop.run_until_complete(_prepare_database())
    logger.info("Worker process %d ready", os.getpid())


@signals.worker_process_shutdown.connect(weak=False)
def shutdown_worker_process(**kwargs):
    shutdown_worker_loop()
