"""
KV store adapters for the subscription indexes.

Every adapter exposes the same minimal contract: single-key ``get``/``set``
of raw bytes. There are no multi-key transactions and no compare-and-set, so
callers must not assume anything stronger than last-writer-wins per key.

Backends:
- MemoryStore: process-local dict (tests, single-process dev)
- SQLiteStore: aiosqlite file
- RedisStore: redis.asyncio
"""

from __future__ import annotations

import os
from typing import Protocol

import aiosqlite
import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from .errors import StorageError

log = structlog.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL
);
"""


class KVStore(Protocol):
    """Minimal key-value contract the subscription manager depends on."""

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def get(self, key: str) -> bytes | None:
        ...

    async def set(self, key: str, value: bytes) -> None:
        ...

    async def ping(self) -> bool:
        ...


class MemoryStore:
    """In-process store. Values are copied so callers never share buffers."""

    def __init__(self, data: dict[str, bytes] | None = None):
        self._data: dict[str, bytes] = dict(data or {})

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get(self, key: str) -> bytes | None:
        value = self._data.get(key)
        return bytes(value) if value is not None else None

    async def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    async def ping(self) -> bool:
        return True

    def snapshot(self) -> dict[str, bytes]:
        return dict(self._data)


class SQLiteStore:
    """Async SQLite-backed store, one row per key."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        os.makedirs(os.path.dirname(self._db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def get(self, key: str) -> bytes | None:
        if self._db is None:
            raise StorageError("SQLite store is not open")
        try:
            cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            log.error("store.sqlite_get_failed", key=key, error=str(exc))
            raise StorageError(f"SQLite get failed for {key!r}") from exc
        return bytes(row[0]) if row else None

    async def set(self, key: str, value: bytes) -> None:
        if self._db is None:
            raise StorageError("SQLite store is not open")
        try:
            await self._db.execute(
                """INSERT INTO kv (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
                (key, value),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.error("store.sqlite_set_failed", key=key, error=str(exc))
            raise StorageError(f"SQLite set failed for {key!r}") from exc

    async def ping(self) -> bool:
        if self._db is None:
            return False
        try:
            await self._db.execute("SELECT 1")
            return True
        except aiosqlite.Error:
            return False


class RedisStore:
    """Redis-backed store. Keys are namespaced under ``prefix``."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        prefix: str = "wiki-bridge:",
        client: redis.Redis | None = None,
    ):
        self._redis_url = redis_url
        self._prefix = prefix
        self._client = client

    async def open(self) -> None:
        if self._client is None:
            self._client = redis.from_url(self._redis_url)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None

    async def get(self, key: str) -> bytes | None:
        if self._client is None:
            raise StorageError("Redis store is not open")
        try:
            value = await self._client.get(self._prefix + key)
        except RedisError as exc:
            log.error("store.redis_get_failed", key=key, error=str(exc))
            raise StorageError(f"Redis get failed for {key!r}") from exc
        if value is None:
            return None
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    async def set(self, key: str, value: bytes) -> None:
        if self._client is None:
            raise StorageError("Redis store is not open")
        try:
            await self._client.set(self._prefix + key, value)
        except RedisError as exc:
            log.error("store.redis_set_failed", key=key, error=str(exc))
            raise StorageError(f"Redis set failed for {key!r}") from exc

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False


def build_store(backend: str, db_path: str = "", redis_url: str = "") -> KVStore:
    """Create the store adapter named in configuration."""
    if backend == "memory":
        return MemoryStore()
    if backend == "sqlite":
        return SQLiteStore(db_path)
    if backend == "redis":
        return RedisStore(redis_url)
    raise ValueError(f"Unknown store backend: {backend!r}")
