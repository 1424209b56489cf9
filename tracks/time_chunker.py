"""Splitting a user's time range into buffered, independently processable chunks."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from core.date_utils import ensure_utc, from_unix, get_current_utc_time, to_unix
from tracks.config import CHUNK_BUFFER_SECONDS, CHUNK_SIZE_SECONDS

if TYPE_CHECKING:
    from tracks.models import TimeChunk
    from tracks.repository import TrackRepository

logger = logging.getLogger(__name__)


class TimeChunker:
    """
    Splits ``[start_at, end_at)`` into fixed windows padded on both sides.

    Missing bounds are resolved from the user's points: no end means "now",
    no start means "the earliest point", and with neither the range runs from
    the earliest to the latest point. Padding is clamped to the resolved
    range, and chunks whose padded window holds no points are dropped.
    """

    def __init__(
        self,
        user_id: int,
        repository: TrackRepository,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        chunk_size: timedelta = timedelta(seconds=CHUNK_SIZE_SECONDS),
        buffer_size: timedelta = timedelta(seconds=CHUNK_BUFFER_SECONDS),
    ) -> None:
        if chunk_size.total_seconds() <= 0:
            msg = "chunk_size must be positive"
            raise ValueError(msg)
        self.user_id = user_id
        self.repository = repository
        self.start_at = ensure_utc(start_at)
        self.end_at = ensure_utc(end_at)
        self.chunk_size = chunk_size
        self.buffer_size = buffer_size

    async def call(self) -> list[TimeChunk]:
        time_range = await self._determine_time_range()
        if time_range is None:
            return []

        start_ts, end_ts = time_range
        if start_ts >= end_ts:
            return []

        chunk_seconds = int(self.chunk_size.total_seconds())
        buffer_seconds = int(self.buffer_size.total_seconds())
        chunks: list[TimeChunk] = []

        current = start_ts
        while current < end_ts:
            chunk_end = min(current + chunk_seconds, end_ts)
            buffer_start = max(current - buffer_seconds, start_ts)
            buffer_end = min(chunk_end + buffer_seconds, end_ts)

            if await self.repository.has_points_in_range(
                self.user_id, buffer_start, buffer_end
            ):
                chunks.append(
                    {
                        "chunk_id": str(uuid.uuid4()),
                        "start_timestamp": current,
                        "end_timestamp": chunk_end,
                        "buffer_start_timestamp": buffer_start,
                        "buffer_end_timestamp": buffer_end,
                        "start_time": from_unix(current),
                        "end_time": from_unix(chunk_end),
                        "buffer_start_time": from_unix(buffer_start),
                        "buffer_end_time": from_unix(buffer_end),
                    }
                )
            current = chunk_end

        logger.debug(
            "Split range %s..%s into %d chunks for user %s",
            start_ts,
            end_ts,
            len(chunks),
            self.user_id,
        )
        return chunks

    async def _determine_time_range(self) -> tuple[int, int] | None:
        if self.start_at is not None and self.end_at is not None:
            return to_unix(self.start_at), to_unix(self.end_at)

        if self.start_at is not None:
            return to_unix(self.start_at), to_unix(get_current_utc_time())

        first = await self.repository.first_point_timestamp(self.user_id)
        if first is None:
            return None

        if self.end_at is not None:
            return first, to_unix(self.end_at)

        last = await self.repository.last_point_timestamp(self.user_id)
        return first, last
