"""Tests for KV store adapters."""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from wiki_bridge.errors import StorageError
from wiki_bridge.store import MemoryStore, RedisStore, SQLiteStore, build_store


@pytest.fixture
async def sqlite_store(tmp_path):
    s = SQLiteStore(str(tmp_path / "kv.db"))
    await s.open()
    yield s
    await s.close()


async def test_memory_store_get_set():
    store = MemoryStore()
    assert await store.get("k") is None
    await store.set("k", b"v1")
    await store.set("k", b"v2")
    assert await store.get("k") == b"v2"
    assert store.snapshot() == {"k": b"v2"}
    assert await store.ping()


async def test_sqlite_store_get_set(sqlite_store: SQLiteStore):
    assert await sqlite_store.get("C1") is None

    await sqlite_store.set("C1", b'{"version":1}')
    assert await sqlite_store.get("C1") == b'{"version":1}'

    await sqlite_store.set("C1", b"{}")
    assert await sqlite_store.get("C1") == b"{}"
    assert await sqlite_store.ping()


async def test_sqlite_store_persists_across_reopen(tmp_path):
    path = str(tmp_path / "nested" / "kv.db")
    first = SQLiteStore(path)
    await first.open()
    await first.set("C1", b"data")
    await first.close()

    second = SQLiteStore(path)
    await second.open()
    try:
        assert await second.get("C1") == b"data"
    finally:
        await second.close()


async def test_sqlite_store_not_open(tmp_path):
    store = SQLiteStore(str(tmp_path / "kv.db"))
    with pytest.raises(StorageError):
        await store.get("C1")
    with pytest.raises(StorageError):
        await store.set("C1", b"x")
    assert not await store.ping()


async def test_redis_store_prefixes_keys():
    client = AsyncMock()
    client.get.return_value = b"value"
    store = RedisStore(prefix="test:", client=client)

    assert await store.get("C1") == b"value"
    client.get.assert_awaited_once_with("test:C1")

    await store.set("C1", b"new")
    client.set.assert_awaited_once_with("test:C1", b"new")


async def test_redis_store_missing_key():
    client = AsyncMock()
    client.get.return_value = None
    store = RedisStore(client=client)
    assert await store.get("C1") is None


async def test_redis_store_wraps_errors():
    client = AsyncMock()
    client.get.side_effect = RedisConnectionError("down")
    client.set.side_effect = RedisConnectionError("down")
    client.ping.side_effect = RedisConnectionError("down")
    store = RedisStore(client=client)

    with pytest.raises(StorageError):
        await store.get("C1")
    with pytest.raises(StorageError):
        await store.set("C1", b"x")
    assert not await store.ping()


def test_build_store():
    assert isinstance(build_store("memory"), MemoryStore)
    assert isinstance(build_store("sqlite", db_path="x.db"), SQLiteStore)
    assert isinstance(build_store("redis", redis_url="redis://localhost:6379/1"), RedisStore)
    with pytest.raises(ValueError):
        build_store("etcd")
