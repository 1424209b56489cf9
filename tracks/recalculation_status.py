"""Progress of a per-user transportation-mode recalculation, polled by the UI."""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis

from core.date_utils import get_current_utc_time
from core.redis import get_shared_redis
from tracks.config import RECALCULATION_STATUS_TTL_SECONDS

logger = logging.getLogger(__name__)

KEY_PREFIX = "track_transportation_recalculation"

STATUS_IDLE = "idle"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class TransportationRecalculationStatus:
    def __init__(self, user_id: int, redis_client: aioredis.Redis | None = None) -> None:
        self.user_id = user_id
        self._client = redis_client

    @property
    def key(self) -> str:
        return f"{KEY_PREFIX}:{self.user_id}"

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = await get_shared_redis()
        return self._client

    async def _write(self, fields: dict[str, Any]) -> None:
        client = await self._redis()
        mapping = {k: str(v) for k, v in fields.items() if v is not None}
        async with client.pipeline(transaction=True) as pipe:
            pipe.hset(self.key, mapping=mapping)
            pipe.expire(self.key, RECALCULATION_STATUS_TTL_SECONDS)
            await pipe.execute()

    async def start(self, total_tracks: int) -> None:
        client = await self._redis()
        await client.delete(self.key)
        await self._write(
            {
                "status": STATUS_PROCESSING,
                "total_tracks": total_tracks,
                "processed_tracks": 0,
                "started_at": get_current_utc_time().isoformat(),
            }
        )

    async def update_progress(self, processed_tracks: int, total_tracks: int) -> None:
        await self._write(
            {"processed_tracks": processed_tracks, "total_tracks": total_tracks}
        )

    async def complete(self) -> None:
        await self._write(
            {
                "status": STATUS_COMPLETED,
                "completed_at": get_current_utc_time().isoformat(),
            }
        )

    async def fail(self, error_message: str) -> None:
        logger.warning(
            "Transportation recalculation failed for user %s: %s",
            self.user_id,
            error_message,
        )
        await self._write(
            {
                "status": STATUS_FAILED,
                "error_message": error_message,
                "completed_at": get_current_utc_time().isoformat(),
            }
        )

    async def data(self) -> dict[str, Any]:
        client = await self._redis()
        raw = await client.hgetall(self.key)
        if not raw:
            return {"status": STATUS_IDLE}
        return {
            "status": raw.get("status", STATUS_IDLE),
            "total_tracks": int(raw.get("total_tracks") or 0),
            "processed_tracks": int(raw.get("processed_tracks") or 0),
            "started_at": raw.get("started_at"),
            "completed_at": raw.get("completed_at"),
            "error_message": raw.get("error_message"),
        }

    async def in_progress(self) -> bool:
        return (await self.data())["status"] == STATUS_PROCESSING

    async def clear(self) -> None:
        client = await self._redis()
        await client.delete(self.key)
