from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from core import async_bridge


@pytest.fixture(autouse=True)
def _stub_clients(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(async_bridge.db_manager, "ensure_indexes", AsyncMock())
    monkeypatch.setattr(async_bridge.db_manager, "cleanup_connections", AsyncMock())
    monkeypatch.setattr(async_bridge, "close_shared_redis", AsyncMock())
    yield
    async_bridge.set_worker_loop(None)


async def _answer() -> int:
    await asyncio.sleep(0)
    return 42


def test_runs_on_a_fresh_loop_without_a_worker_loop() -> None:
    assert async_bridge.run_async_from_sync(_answer()) == 42
    async_bridge.db_manager.ensure_indexes.assert_awaited_once()
    async_bridge.close_shared_redis.assert_awaited_once()


def test_reuses_the_registered_worker_loop() -> None:
    loop = asyncio.new_event_loop()
    async_bridge.set_worker_loop(loop)

    assert async_bridge.get_worker_loop() is loop
    assert async_bridge.run_async_from_sync(_answer()) == 42
    assert async_bridge.run_async_from_sync(_answer()) == 42
    async_bridge.close_shared_redis.assert_not_awaited()

    async_bridge.shutdown_worker_loop()
    assert loop.is_closed()
    assert async_bridge.get_worker_loop() is None
    async_bridge.db_manager.cleanup_connections.assert_awaited_once()


def test_closed_worker_loop_is_forgotten() -> None:
    loop = asyncio.new_event_loop()
    async_bridge.set_worker_loop(loop)
    loop.close()

    assert async_bridge.get_worker_loop() is None


@pytest.mark.asyncio
async def test_refuses_to_nest_inside_a_running_loop() -> None:
    with pytest.raises(RuntimeError):
        async_bridge.run_async_from_sync(_answer())
