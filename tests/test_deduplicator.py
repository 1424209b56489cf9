from __future__ import annotations

from datetime import timedelta

import pytest
from bson import ObjectId
from track_fakes import BASE_TIME, BASE_TS, insert_points

from tracks.deduplicator import Deduplicator
from tracks.models import Track


async def _insert_track(repository, user_id: int, start, end, created_at) -> Track:
    track = Track(user_id=user_id, start_at=start, end_at=end, created_at=created_at)
    return await repository.insert_track(track)


@pytest.mark.asyncio
async def test_removes_older_duplicate_and_keeps_unique_tracks(repository) -> None:
    start, end = BASE_TIME, BASE_TIME + timedelta(minutes=30)
    first = await _insert_track(repository, 1, start, end, BASE_TIME)
    second = await _insert_track(
        repository, 1, start, end, BASE_TIME + timedelta(seconds=5)
    )
    unique = await _insert_track(
        repository,
        1,
        start + timedelta(hours=2),
        end + timedelta(hours=2),
        BASE_TIME,
    )
    other_a = await _insert_track(repository, 2, start, end, BASE_TIME)
    other_b = await _insert_track(
        repository, 2, start, end, BASE_TIME + timedelta(seconds=5)
    )

    removed = await Deduplicator(1, repository).call()

    assert removed == 1
    assert await repository.get_track(first.id) is None
    assert await repository.get_track(second.id) is not None
    assert await repository.get_track(unique.id) is not None
    assert await repository.get_track(other_a.id) is not None
    assert await repository.get_track(other_b.id) is not None


@pytest.mark.asyncio
async def test_equal_creation_times_fall_back_to_id_order(repository) -> None:
    start, end = BASE_TIME, BASE_TIME + timedelta(minutes=30)
    lower = await _insert_track(repository, 1, start, end, BASE_TIME)
    higher = await _insert_track(repository, 1, start, end, BASE_TIME)
    assert ObjectId(lower.id) < ObjectId(higher.id)

    assert await Deduplicator(1, repository).call() == 1

    assert await repository.get_track(lower.id) is None
    assert await repository.get_track(higher.id) is not None


@pytest.mark.asyncio
async def test_points_of_removed_duplicates_move_to_the_kept_track(repository) -> None:
    start, end = BASE_TIME, BASE_TIME + timedelta(minutes=1)
    removed_track = await _insert_track(repository, 1, start, end, BASE_TIME)
    kept = await _insert_track(repository, 1, start, end, BASE_TIME + timedelta(seconds=1))
    await insert_points(
        repository,
        [(BASE_TS, 0.0, 0.0), (BASE_TS + 60, 0.001, 0.0)],
        track_id=removed_track.id,
    )
    await repository.segments.insert_one(
        {"track_id": ObjectId(removed_track.id), "mode": "cycling"}
    )

    assert await Deduplicator(1, repository).call() == 1

    assert await repository.count_points_for_track(kept.id) == 2
    assert await repository.segments.count_documents({}) == 0


@pytest.mark.asyncio
async def test_no_duplicates_removes_nothing(repository) -> None:
    await _insert_track(
        repository, 1, BASE_TIME, BASE_TIME + timedelta(minutes=5), BASE_TIME
    )

    assert await Deduplicator(1, repository).call() == 0
