"""
Shared fixtures for subscription bridge tests.
"""

import asyncio

import pytest

from wiki_bridge.commands import BotContext, CommandDispatcher
from wiki_bridge.errors import StorageError
from wiki_bridge.metrics import MetricsCollector
from wiki_bridge.store import MemoryStore
from wiki_bridge.subscriptions import SubscriptionManager

BOT_USER_ID = "bot_wiki"


class FlakyStore(MemoryStore):
    """MemoryStore that records calls and fails on chosen keys."""

    def __init__(self, yield_control: bool = False):
        super().__init__()
        self.gets: list[str] = []
        self.sets: list[str] = []
        self.fail_get: set[str] = set()
        self.fail_set: set[str] = set()
        self._yield_control = yield_control

    async def get(self, key: str) -> bytes | None:
        if self._yield_control:
            await asyncio.sleep(0)
        self.gets.append(key)
        if key in self.fail_get:
            raise StorageError(f"injected get failure for {key}")
        return await super().get(key)

    async def set(self, key: str, value: bytes) -> None:
        if self._yield_control:
            await asyncio.sleep(0)
        self.sets.append(key)
        if key in self.fail_set:
            raise StorageError(f"injected set failure for {key}")
        await super().set(key, value)

    def reset_calls(self) -> None:
        self.gets.clear()
        self.sets.clear()


class FakePoster:
    def __init__(self) -> None:
        self.posts: list[dict] = []

    async def post_ephemeral(
        self, user_id: str, channel_id: str, message: str, bot_user_id: str
    ) -> bool:
        self.posts.append(
            {
                "user_id": user_id,
                "channel_id": channel_id,
                "message": message,
                "bot_user_id": bot_user_id,
            }
        )
        return True


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def manager(store, metrics):
    return SubscriptionManager(store, metrics=metrics)


@pytest.fixture
def poster():
    return FakePoster()


@pytest.fixture
def dispatcher(manager, poster, metrics):
    return CommandDispatcher(manager, BotContext(BOT_USER_ID, poster), metrics=metrics)


@pytest.fixture
def interleaving_store():
    """Store whose calls yield to the event loop, so concurrent tasks interleave."""
    return FlakyStore(yield_control=True)
