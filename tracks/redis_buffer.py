"""
Per-user, per-day cache of in-progress points for incremental generation.

Segments that are still growing are parked here between incremental runs so
the next run does not rescan the day's points. Reads never fail the caller:
a Redis or decoding error is logged and treated as an empty buffer.
"""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import TYPE_CHECKING, Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from core.date_utils import parse_day
from core.redis import get_shared_redis
from tracks.config import BUFFER_TTL_SECONDS

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tracks.models import Point

logger = logging.getLogger(__name__)

KEY_PREFIX = "track_buffer"


class RedisBuffer:
    def __init__(
        self,
        user_id: int,
        day: date | str | None = None,
        redis_client: aioredis.Redis | None = None,
    ) -> None:
        self.user_id = user_id
        self.day = parse_day(day)
        self._client = redis_client

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}:{self.user_id}:{self.day.isoformat()}"

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = await get_shared_redis()
        return self._client

    @staticmethod
    def serialize_point(point: Point) -> dict[str, Any]:
        return {
            "id": point.id,
            "lonlat": point.lonlat,
            "timestamp": point.timestamp,
            "lat": point.lat,
            "lon": point.lon,
            "altitude": point.altitude,
            "user_id": point.user_id,
        }

    async def store(self, points: Sequence[Point]) -> None:
        if not points:
            return
        payload = json.dumps([self.serialize_point(p) for p in points])
        client = await self._redis()
        await client.set(self.key, payload, ex=BUFFER_TTL_SECONDS)
        logger.debug(
            "Stored %d points in buffer for user %s, day %s",
            len(points),
            self.user_id,
            self.day,
        )

    async def retrieve(self) -> list[dict[str, Any]]:
        try:
            client = await self._redis()
            raw = await client.get(self.key)
            if not raw:
                return []
            return json.loads(raw)
        except (RedisError, OSError, ValueError) as e:
            logger.error(
                "Failed to retrieve buffered points for user %s, day %s: %s",
                self.user_id,
                self.day,
                e,
            )
            return []

    async def clear(self) -> None:
        client = await self._redis()
        await client.delete(self.key)

    async def exists(self) -> bool:
        client = await self._redis()
        return bool(await client.exists(self.key))
