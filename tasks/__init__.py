"""
Background tasks implemented with Celery.

- tracks: track pipeline tasks (bulk fan-out, chunks, boundary resolution,
  point ingestion hook, incremental and daily generation)
"""

# Import task modules so Celery registers @shared_task decorators on startup.
from tasks.tracks import (
    daily_generation,
    generate_incremental,
    generate_range,
    parallel_generate,
    process_point,
    process_time_chunk,
    realtime_generate,
    resolve_boundaries,
)

__all__ = [
    "daily_generation",
    "generate_incremental",
    "generate_range",
    "parallel_generate",
    "process_point",
    "process_time_chunk",
    "realtime_generate",
    "resolve_boundaries",
]
