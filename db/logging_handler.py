"""
MongoDB logging handler for storing worker logs in MongoDB.

Chunk jobs run on many workers at once; persisting their logs lets a failed
generation session be traced by user and session id from one place.
"""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

LOG_RETENTION_SECONDS = 30 * 24 * 60 * 60
CONTEXT_FIELDS = ("user_id", "session_id", "chunk_id", "track_id")


class MongoDBHandler(logging.Handler):
    """Logging handler that writes log records to a MongoDB collection."""

    def __init__(self, db: AsyncIOMotorDatabase, collection_name: str = "server_logs"):
        super().__init__()
        self.collection = db[collection_name]
        self._setup_complete = False
        self._pending: set[asyncio.Task] = set()

    async def setup_indexes(self) -> None:
        """Create timestamp/level indexes and the 30-day TTL index."""
        if self._setup_complete:
            return

        try:
            await self.collection.create_index("level")
            await self.collection.create_index(
                "timestamp", expireAfterSeconds=LOG_RETENTION_SECONDS
            )
            self._setup_complete = True
        except PyMongoError as e:
            logging.getLogger(__name__).warning(
                "Could not create log indexes: %s", e
            )

    def emit(self, record: logging.LogRecord) -> None:
        """
        Schedule the insert on the running event loop.

        Records emitted outside a running loop are left to the other
        handlers; a synchronous insert would block the worker.
        """
        try:
            log_entry = self._format_log_entry(record)
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            task = loop.create_task(self._async_emit(log_entry))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        except Exception:
            self.handleError(record)

    async def _async_emit(self, log_entry: dict[str, Any]) -> None:
        try:
            await self.collection.insert_one(log_entry)
        except PyMongoError:
            # Logging about a logging failure would recurse into this handler.
            return

    def _format_log_entry(self, record: logging.LogRecord) -> dict[str, Any]:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process": record.process,
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = str(value)

        if record.exc_info:
            log_entry["exception"] = self.format(record)

        return log_entry
