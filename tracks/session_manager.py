"""
Progress tracking for a multi-chunk generation run.

A session is a Redis hash at
``track_generation:user:<user_id>:session:<session_id>``. Scalar fields are
written with ``HSET`` so an update only touches the fields it names, counters
move with ``HINCRBY``, and every mutation runs under ``WATCH`` so a session
that was cleaned up (or expired) is never recreated by a late chunk job.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from core.date_utils import get_current_utc_time
from core.redis import get_shared_redis
from tracks.config import SESSION_TTL_SECONDS
from tracks.models import SessionStatus

logger = logging.getLogger(__name__)

KEY_PREFIX = "track_generation"
COUNTER_FIELDS = ("total_chunks", "completed_chunks", "failed_chunks", "tracks_created")
JSON_FIELDS = ("metadata",)


def session_key(user_id: int, session_id: str) -> str:
    return f"{KEY_PREFIX}:user:{user_id}:session:{session_id}"


def _encode(updates: dict[str, Any]) -> tuple[dict[str, str], list[str]]:
    to_set: dict[str, str] = {}
    to_delete: list[str] = []
    for field, value in updates.items():
        if value is None:
            to_delete.append(field)
        elif field in JSON_FIELDS:
            to_set[field] = json.dumps(value, default=str)
        else:
            to_set[field] = str(value)
    return to_set, to_delete


def _decode(raw: dict[str, str]) -> dict[str, Any]:
    data: dict[str, Any] = dict(raw)
    for field in COUNTER_FIELDS:
        data[field] = int(raw.get(field) or 0)
    for field in JSON_FIELDS:
        data[field] = json.loads(raw[field]) if raw.get(field) else {}
    for field in ("user_id",):
        if field in raw:
            data[field] = int(raw[field])
    return data


class SessionManager:
    """Reads and mutates one generation session."""

    def __init__(
        self,
        user_id: int,
        session_id: str,
        redis_client: aioredis.Redis | None = None,
    ) -> None:
        self.user_id = user_id
        self.session_id = session_id
        self._client = redis_client

    @property
    def key(self) -> str:
        return session_key(self.user_id, self.session_id)

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = await get_shared_redis()
        return self._client

    @classmethod
    async def create_for_user(
        cls,
        user_id: int,
        metadata: dict[str, Any] | None = None,
        redis_client: aioredis.Redis | None = None,
    ) -> SessionManager:
        manager = cls(user_id, str(uuid.uuid4()), redis_client)
        await manager.create_session(metadata)
        return manager

    @classmethod
    async def find_session(
        cls,
        user_id: int,
        session_id: str,
        redis_client: aioredis.Redis | None = None,
    ) -> SessionManager | None:
        manager = cls(user_id, session_id, redis_client)
        if await manager.session_exists():
            return manager
        return None

    async def create_session(self, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        data = {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "status": SessionStatus.PENDING.value,
            "total_chunks": 0,
            "completed_chunks": 0,
            "failed_chunks": 0,
            "tracks_created": 0,
            "metadata": metadata or {},
            "started_at": get_current_utc_time().isoformat(),
        }
        to_set, _ = _encode(data)
        client = await self._redis()
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(self.key)
            pipe.hset(self.key, mapping=to_set)
            pipe.expire(self.key, SESSION_TTL_SECONDS)
            await pipe.execute()
        logger.debug("Created generation session %s for user %s", self.session_id, self.user_id)
        return data

    async def get_session_data(self) -> dict[str, Any] | None:
        client = await self._redis()
        raw = await client.hgetall(self.key)
        if not raw:
            return None
        return _decode(raw)

    async def session_exists(self) -> bool:
        client = await self._redis()
        return bool(await client.exists(self.key))

    async def _mutate_existing(self, mutate: Callable[[Any], None]) -> bool:
        """Apply ``mutate`` to a MULTI pipeline if the session exists; False otherwise."""
        client = await self._redis()
        async with client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(self.key)
                    if not await pipe.exists(self.key):
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    mutate(pipe)
                    pipe.expire(self.key, SESSION_TTL_SECONDS)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Session %s changed during update, retrying", self.session_id)
                    continue

    async def update_session(self, **updates: Any) -> bool:
        """Merge ``updates`` into the session; fields not named are left untouched."""
        to_set, to_delete = _encode(updates)

        def _apply(pipe) -> None:
            if to_set:
                pipe.hset(self.key, mapping=to_set)
            if to_delete:
                pipe.hdel(self.key, *to_delete)

        return await self._mutate_existing(_apply)

    async def _increment(self, field: str, amount: int) -> bool:
        return await self._mutate_existing(lambda pipe: pipe.hincrby(self.key, field, amount))

    async def mark_started(self, total_chunks: int) -> bool:
        return await self.update_session(
            status=SessionStatus.PROCESSING.value,
            total_chunks=total_chunks,
            started_at=get_current_utc_time().isoformat(),
        )

    async def increment_completed_chunks(self) -> bool:
        return await self._increment("completed_chunks", 1)

    async def increment_failed_chunks(self) -> bool:
        return await self._increment("failed_chunks", 1)

    async def increment_tracks_created(self, count: int = 1) -> bool:
        return await self._increment("tracks_created", count)

    async def mark_completed(self) -> bool:
        return await self.update_session(
            status=SessionStatus.COMPLETED.value,
            completed_at=get_current_utc_time().isoformat(),
        )

    async def mark_failed(self, error_message: str) -> bool:
        return await self.update_session(
            status=SessionStatus.FAILED.value,
            error_message=error_message,
            completed_at=get_current_utc_time().isoformat(),
        )

    async def all_chunks_completed(self) -> bool:
        data = await self.get_session_data()
        if data is None:
            return False
        return data["completed_chunks"] >= data["total_chunks"]

    async def progress_percentage(self) -> float:
        data = await self.get_session_data()
        if not data or data["total_chunks"] == 0:
            return 0.0
        ratio = data["completed_chunks"] / data["total_chunks"]
        return round(min(ratio, 1.0) * 100, 2)

    async def cleanup_session(self) -> None:
        client = await self._redis()
        await client.delete(self.key)
