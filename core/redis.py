"""
The Redis client shared by the track pipeline's cache users.

Generation sessions, realtime debounce keys, per-day point buffers and the
transportation recalculation status are all short-lived Redis keys. Each of
those components accepts an injected client (tests pass fakeredis) and
otherwise falls back to :func:`get_shared_redis`. Celery workers call
:func:`close_shared_redis` when their event loop shuts down.
"""

from __future__ import annotations

import logging
import os
from typing import Final

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL: Final[str] = "redis://redis:6379"
REDIS_URL_ENV_VAR: Final[str] = "REDIS_URL"

_shared_client: aioredis.Redis | None = None


def get_redis_url() -> str:
    """Broker and cache URL: ``REDIS_URL`` if set, else the compose default."""
    return os.getenv(REDIS_URL_ENV_VAR, "").strip() or DEFAULT_REDIS_URL


async def _responds(client: aioredis.Redis) -> bool:
    try:
        await client.ping()
    except (RedisConnectionError, OSError):
        return False
    return True


async def get_shared_redis() -> aioredis.Redis:
    """
    Process-wide async client, created on first use.

    The cached client is pinged before it is handed out and replaced when
    the connection has dropped, so a worker survives a Redis restart.
    """
    global _shared_client
    if _shared_client is not None:
        if await _responds(_shared_client):
            return _shared_client
        logger.warning("Shared Redis connection lost, reconnecting")

    client = aioredis.from_url(
        get_redis_url(),
        decode_responses=True,
        socket_connect_timeout=2,
    )
    await client.ping()
    _shared_client = client
    logger.info("Shared Redis client connected")
    return client


async def close_shared_redis() -> None:
    global _shared_client
    client, _shared_client = _shared_client, None
    if client is not None:
        await client.aclose()
        logger.info("Shared Redis client closed")
