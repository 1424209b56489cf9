"""Single-flight scheduling of live regeneration per user."""

from __future__ import annotations

import logging

import redis.asyncio as aioredis

from core.redis import get_shared_redis
from tracks.config import DEBOUNCE_SECONDS
from tracks.jobs import REALTIME_GENERATE_TASK, JobQueue

logger = logging.getLogger(__name__)

KEY_PREFIX = "track_debounce"


class RealtimeDebouncer:
    """
    Coalesces bursts of incoming points into one delayed job.

    The first trigger claims ``track_debounce:<user_id>`` with ``SET NX EX``
    and enqueues the job delayed by the window. Triggers that find the key
    only push its expiry out. The job clears the key when it starts.
    """

    def __init__(
        self,
        user_id: int,
        queue: JobQueue,
        redis_client: aioredis.Redis | None = None,
        window_seconds: int = DEBOUNCE_SECONDS,
    ) -> None:
        self.user_id = user_id
        self.queue = queue
        self.window_seconds = window_seconds
        self._client = redis_client

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}:{self.user_id}"

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = await get_shared_redis()
        return self._client

    async def trigger(self) -> bool:
        """Returns True when this call enqueued the job."""
        client = await self._redis()
        claimed = await client.set(self.key, "1", nx=True, ex=self.window_seconds)
        if not claimed:
            await client.expire(self.key, self.window_seconds)
            logger.debug("Regeneration already pending for user %s", self.user_id)
            return False

        await self.queue.enqueue(
            REALTIME_GENERATE_TASK, self.user_id, countdown=self.window_seconds
        )
        logger.debug(
            "Scheduled regeneration for user %s in %ds", self.user_id, self.window_seconds
        )
        return True

    async def clear(self) -> None:
        client = await self._redis()
        await client.delete(self.key)

    async def pending(self) -> bool:
        client = await self._redis()
        return bool(await client.exists(self.key))
