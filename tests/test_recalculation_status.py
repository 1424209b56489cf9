from __future__ import annotations

import pytest

from tracks.recalculation_status import TransportationRecalculationStatus


@pytest.mark.asyncio
async def test_idle_when_nothing_recorded(redis_client) -> None:
    status = TransportationRecalculationStatus(1, redis_client)

    assert await status.data() == {"status": "idle"}
    assert await status.in_progress() is False


@pytest.mark.asyncio
async def test_progress_lifecycle(redis_client) -> None:
    status = TransportationRecalculationStatus(1, redis_client)

    await status.start(10)
    assert await status.in_progress() is True

    await status.update_progress(4, 10)
    data = await status.data()
    assert data["status"] == "processing"
    assert data["processed_tracks"] == 4
    assert data["total_tracks"] == 10
    assert data["started_at"]

    await status.complete()
    data = await status.data()
    assert data["status"] == "completed"
    assert data["completed_at"]
    assert data["error_message"] is None


@pytest.mark.asyncio
async def test_failure_records_message(redis_client) -> None:
    status = TransportationRecalculationStatus(1, redis_client)
    await status.start(3)

    await status.fail("classifier unavailable")

    data = await status.data()
    assert data["status"] == "failed"
    assert data["error_message"] == "classifier unavailable"


@pytest.mark.asyncio
async def test_restart_resets_previous_run(redis_client) -> None:
    status = TransportationRecalculationStatus(1, redis_client)
    await status.start(3)
    await status.fail("boom")

    await status.start(5)

    data = await status.data()
    assert data["status"] == "processing"
    assert data["total_tracks"] == 5
    assert data["error_message"] is None
