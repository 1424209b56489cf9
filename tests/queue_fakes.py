from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class EnqueuedJob:
    task_name: str
    args: tuple[Any, ...]
    kwargs: dict[str, Any]
    countdown: int | None = None


@dataclass
class RecordingQueue:
    """In-memory stand-in for the Celery job queue."""

    jobs: list[EnqueuedJob] = field(default_factory=list)

    async def enqueue(
        self,
        task_name: str,
        *args: Any,
        countdown: int | None = None,
        **kwargs: Any,
    ) -> str:
        self.jobs.append(EnqueuedJob(task_name, args, kwargs, countdown))
        return f"job-{len(self.jobs)}"

    def named(self, task_name: str) -> list[EnqueuedJob]:
        return [job for job in self.jobs if job.task_name == task_name]
