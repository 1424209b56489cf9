"""
MongoDB connection management.

A single :data:`db_manager` owns the motor client for the process. Motor
clients are tied to the event loop they were first used on, and Celery tasks
may run on a new loop each time, so the client is rebuilt whenever the
running loop differs from the one it was created for.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC
from typing import Any

import certifi
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class MongoConfig:
    """
    Connection settings read from the environment.

    Environment Variables:
        MONGODB_URI: MongoDB URI (default: mongodb://mongo:27017)
        MONGODB_DATABASE: Database name (default: tracks)
        MONGODB_MAX_POOL_SIZE: Connection pool size (default: 50)
        MONGODB_CONNECTION_TIMEOUT_MS: Connection timeout (default: 5000)
        MONGODB_SERVER_SELECTION_TIMEOUT_MS: Server selection timeout (default: 10000)
    """

    uri: str = "mongodb://mongo:27017"
    database: str = "tracks"
    max_pool_size: int = 50
    connect_timeout_ms: int = 5000
    server_selection_timeout_ms: int = 10000

    @classmethod
    def from_env(cls) -> MongoConfig:
        return cls(
            uri=os.getenv("MONGODB_URI", "").strip() or cls.uri,
            database=os.getenv("MONGODB_DATABASE", cls.database),
            max_pool_size=_env_int("MONGODB_MAX_POOL_SIZE", cls.max_pool_size),
            connect_timeout_ms=_env_int(
                "MONGODB_CONNECTION_TIMEOUT_MS", cls.connect_timeout_ms
            ),
            server_selection_timeout_ms=_env_int(
                "MONGODB_SERVER_SELECTION_TIMEOUT_MS", cls.server_selection_timeout_ms
            ),
        )

    def client_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "tz_aware": True,
            "tzinfo": UTC,
            "maxPoolSize": self.max_pool_size,
            "connectTimeoutMS": self.connect_timeout_ms,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "retryWrites": True,
            "retryReads": True,
            "appname": "TrackPipeline",
        }
        if self.uri.startswith("mongodb+srv://"):
            kwargs.update(tls=True, tlsCAFile=certifi.where())
        return kwargs


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@dataclass
class DatabaseManager:
    """Lazily connected, loop-aware owner of the motor client."""

    config: MongoConfig = field(default_factory=MongoConfig.from_env)
    _client: AsyncIOMotorClient | None = field(default=None, init=False, repr=False)
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False, repr=False)
    _indexed_loop: asyncio.AbstractEventLoop | None = field(
        default=None, init=False, repr=False
    )

    def _stale(self) -> bool:
        if self._client is None:
            return True
        if self._loop is not None and self._loop.is_closed():
            return True
        current = _running_loop()
        return current is not None and current is not self._loop

    def _connect(self) -> AsyncIOMotorClient:
        if self._client is not None:
            logger.info("Event loop changed, reconnecting MongoDB client")
            self._close_client()
        self._client = AsyncIOMotorClient(self.config.uri, **self.config.client_kwargs())
        self._loop = _running_loop()
        logger.info("MongoDB client initialized for database %s", self.config.database)
        return self._client

    def _close_client(self) -> None:
        client, self._client = self._client, None
        self._loop = None
        self._indexed_loop = None
        if client is not None:
            client.close()

    @property
    def client(self) -> AsyncIOMotorClient:
        if self._stale():
            return self._connect()
        return self._client

    @property
    def db(self) -> AsyncIOMotorDatabase:
        return self.client[self.config.database]

    def get_collection(self, name: str) -> AsyncIOMotorCollection:
        return self.db[name]

    async def ensure_indexes(self) -> None:
        """Create the pipeline indexes once per event loop."""
        database = self.db
        if self._indexed_loop is not None and self._indexed_loop is self._loop:
            return

        from db.indexes import ensure_track_indexes

        await ensure_track_indexes(database)
        self._indexed_loop = self._loop

    async def cleanup_connections(self) -> None:
        if self._client is not None:
            logger.info("Closing MongoDB client connections...")
            self._close_client()


db_manager = DatabaseManager()
