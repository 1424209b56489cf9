from __future__ import annotations

from datetime import date
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from track_fakes import BASE_TS, make_point

from tracks.config import BUFFER_TTL_SECONDS
from tracks.redis_buffer import RedisBuffer


@pytest.mark.asyncio
async def test_store_and_retrieve(redis_client) -> None:
    buffer = RedisBuffer(1, "2024-03-01", redis_client=redis_client)
    points = [make_point(BASE_TS, 1.5, 2.5, altitude=10.0), make_point(BASE_TS + 60)]

    await buffer.store(points)
    stored = await buffer.retrieve()

    assert buffer.key == "track_buffer:1:2024-03-01"
    assert [p["id"] for p in stored] == [p.id for p in points]
    assert stored[0]["lon"] == 1.5
    assert stored[0]["lat"] == 2.5
    assert stored[0]["altitude"] == 10.0
    assert 0 < await redis_client.ttl(buffer.key) <= BUFFER_TTL_SECONDS


@pytest.mark.asyncio
async def test_store_ignores_empty_lists(redis_client) -> None:
    buffer = RedisBuffer(1, date(2024, 3, 1), redis_client=redis_client)

    await buffer.store([])

    assert await buffer.exists() is False


@pytest.mark.asyncio
async def test_retrieve_degrades_to_empty_on_errors(redis_client) -> None:
    buffer = RedisBuffer(1, "2024-03-01", redis_client=redis_client)
    await redis_client.set(buffer.key, "not json")
    assert await buffer.retrieve() == []

    redis_client.get = AsyncMock(side_effect=RedisConnectionError("down"))
    assert await buffer.retrieve() == []


@pytest.mark.asyncio
async def test_clear(redis_client) -> None:
    buffer = RedisBuffer(1, "2024-03-01", redis_client=redis_client)
    await buffer.store([make_point(BASE_TS)])

    await buffer.clear()

    assert await buffer.exists() is False
    assert await buffer.retrieve() == []
