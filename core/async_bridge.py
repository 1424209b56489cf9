"""
Running pipeline coroutines from synchronous Celery task bodies.

Motor and redis.asyncio clients are bound to the event loop that created
them. Each worker process registers one long-lived loop at startup and every
task runs on it, so the shared clients are reused across tasks. Without a
registered loop (eager tasks, scripts) a throwaway loop is used and its Redis
client is closed afterwards.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from core.redis import close_shared_redis
from db.manager import db_manager

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _WorkerLoop:
    loop: asyncio.AbstractEventLoop
    pid: int
    thread_id: int

    def usable_here(self) -> bool:
        return (
            self.pid == os.getpid()
            and self.thread_id == threading.get_ident()
            and not self.loop.is_closed()
        )


_registered: _WorkerLoop | None = None


def set_worker_loop(loop: asyncio.AbstractEventLoop | None) -> None:
    """Register (or with ``None``, forget) the calling process's worker loop."""
    global _registered
    if loop is None:
        _registered = None
        return
    _registered = _WorkerLoop(loop, os.getpid(), threading.get_ident())


def get_worker_loop() -> asyncio.AbstractEventLoop | None:
    """The registered loop, or None when it belongs to another process or thread."""
    global _registered
    if _registered is None:
        return None
    if _registered.pid != os.getpid() or _registered.loop.is_closed():
        _registered = None
        return None
    if not _registered.usable_here():
        return None
    return _registered.loop


def _cancel_pending(loop: asyncio.AbstractEventLoop) -> None:
    pending = asyncio.all_tasks(loop)
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))


async def _close_clients() -> None:
    await close_shared_redis()
    await db_manager.cleanup_connections()


def shutdown_worker_loop() -> None:
    """Cancel leftover tasks, close the shared clients and the worker loop."""
    loop = get_worker_loop()
    set_worker_loop(None)
    if loop is None or loop.is_closed():
        return

    try:
        asyncio.set_event_loop(loop)
        _cancel_pending(loop)
        loop.run_until_complete(_close_clients())
    except (RuntimeError, OSError) as e:
        logger.warning("Error shutting down worker loop: %s", e)
    finally:
        loop.close()
        asyncio.set_event_loop(None)


async def _with_indexes(coro: Coroutine[Any, Any, T]) -> T:
    await db_manager.ensure_indexes()
    return await coro


def _run_on_fresh_loop(coro: Coroutine[Any, Any, T]) -> T:
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_with_indexes(coro))
    finally:
        try:
            _cancel_pending(loop)
            loop.run_until_complete(close_shared_redis())
        except (RuntimeError, OSError) as e:
            logger.warning("Error cleaning up event loop: %s", e)
        finally:
            loop.close()
            asyncio.set_event_loop(None)


def run_async_from_sync(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run ``coro`` to completion from synchronous code and return its result.

    Raises RuntimeError when called from inside a running event loop.

    Example:
        # From a synchronous Celery task
        result = run_async_from_sync(process_time_chunk_async(user_id, session_id, chunk))
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        coro.close()
        msg = "run_async_from_sync called while an event loop is running"
        raise RuntimeError(msg)

    loop = get_worker_loop()
    if loop is None:
        return _run_on_fresh_loop(coro)

    with contextlib.suppress(RuntimeError):
        asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_with_indexes(coro))
    except Exception:
        logger.exception("Task coroutine failed on the worker loop")
        raise
