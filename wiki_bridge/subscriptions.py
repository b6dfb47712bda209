"""
Subscription index: channel index and reverse index kept in step.

The channel index (key: channel id) answers "what does channel X subscribe
to?"; the reverse index (key: derived from base URL + space key) answers
"which channels want events from space Y at Z?". The store only offers
single-key atomicity, so every mutation writes the two keys in a fixed order
chosen so that a failure between the writes leaves an inert channel-side
record rather than a reverse entry pointing at a channel that no longer holds
the subscription.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

import structlog
from pydantic import ValidationError

from .errors import (
    AliasConflict,
    InvalidSubscription,
    PartialConsistencyViolation,
    StorageError,
    SubscriptionNotFound,
)
from .metrics import MetricsCollector
from .models import (
    STORED_CONTEXT,
    ChannelIndexEntry,
    ReverseIndexEntry,
    Subscription,
    reverse_index_key,
)
from .store import KVStore

log = structlog.get_logger()


class KeyLocks:
    """
    Per-key asyncio locks for serializing read-modify-write cycles.

    Only protects against races inside this process. Keys passed to one
    ``hold`` call are acquired in sorted order; callers that nest holds must
    always take the channel key before reverse keys.
    """

    def __init__(self, enabled: bool = True, metrics: MetricsCollector | None = None) -> None:
        self._enabled = enabled
        self._metrics = metrics
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @property
    def active(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        if not self._enabled:
            yield
            return

        ordered = sorted(set(keys))
        for key in ordered:
            self._locks.setdefault(key, asyncio.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        self._publish()

        held: list[str] = []
        try:
            for key in ordered:
                await self._locks[key].acquire()
                held.append(key)
            yield
        finally:
            for key in reversed(held):
                self._locks[key].release()
            for key in ordered:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]
            self._publish()

    def _publish(self) -> None:
        if self._metrics:
            self._metrics.set_gauge("locks_held", self.active)


class SubscriptionManager:
    """Create, list, update and delete channel subscriptions."""

    def __init__(
        self,
        store: KVStore,
        metrics: MetricsCollector | None = None,
        serialize_writes: bool = True,
    ):
        self._store = store
        self._metrics = metrics
        self._locks = KeyLocks(enabled=serialize_writes, metrics=metrics)

    # --- Queries ---

    async def list_subscriptions(self, channel_id: str) -> list[Subscription]:
        """Return the channel's subscriptions sorted by alias; empty if none."""
        channel = await self._read_channel(channel_id)
        return [channel.subscriptions[a] for a in sorted(channel.subscriptions)]

    async def channels_for_space(self, base_url: str, space_key: str) -> dict[str, list[str]]:
        """Return ``{channel_id: events}`` for every channel watching the space."""
        reverse = await self._read_reverse(reverse_index_key(base_url, space_key))
        return {channel_id: list(events) for channel_id, events in reverse.channels.items()}

    # --- Mutations ---

    async def create_subscription(
        self,
        channel_id: str,
        alias: str,
        base_url: str,
        space_key: str,
        events: Iterable[str] = (),
    ) -> Subscription:
        """
        Add a subscription to a channel.

        Writes the channel index first, then the reverse index. If the second
        write fails the channel holds a record the reverse index does not
        route to yet, which is inert until the create is retried.
        """
        try:
            sub = Subscription(
                alias=alias,
                channel_id=channel_id,
                base_url=base_url,
                space_key=space_key,
                events=list(events),
            )
        except ValidationError as exc:
            raise InvalidSubscription(_describe(exc)) from exc

        async with self._locks.hold(channel_id):
            channel = await self._read_channel(channel_id)
            if sub.alias in channel.subscriptions:
                raise AliasConflict(channel_id, sub.alias)

            key = sub.reverse_key
            async with self._locks.hold(key):
                reverse = await self._read_reverse(key)

                channel.subscriptions[sub.alias] = sub
                reverse.channels[channel_id] = channel.events_for(sub.base_url, sub.space_key)

                await self._store.set(channel_id, channel.encode())
                await self._write_second(
                    key, reverse.encode(), channel_id=channel_id, reverse_key=key, operation="create"
                )

        self._inc("subscriptions_created_total")
        log.info(
            "subscriptions.created",
            channel_id=channel_id,
            alias=sub.alias,
            base_url=sub.base_url,
            space_key=sub.space_key,
        )
        return sub

    async def update_subscription(
        self, channel_id: str, alias: str, events: Iterable[str]
    ) -> Subscription:
        """Replace the event list of an existing subscription."""
        async with self._locks.hold(channel_id):
            channel = await self._read_channel(channel_id)
            current = channel.subscriptions.get(alias)
            if current is None:
                raise SubscriptionNotFound(channel_id, alias)

            try:
                updated = Subscription.model_validate(
                    {**current.model_dump(), "events": list(events)},
                    context={STORED_CONTEXT: True},
                )
            except ValidationError as exc:
                raise InvalidSubscription(_describe(exc)) from exc

            key = current.reverse_key
            async with self._locks.hold(key):
                reverse = await self._read_reverse(key)

                channel.subscriptions[alias] = updated
                reverse.channels[channel_id] = channel.events_for(
                    updated.base_url, updated.space_key
                )

                await self._store.set(key, reverse.encode())
                await self._write_second(
                    channel_id, channel.encode(), channel_id=channel_id, reverse_key=key, operation="update"
                )

        log.info("subscriptions.updated", channel_id=channel_id, alias=alias, events=updated.events)
        return updated

    async def delete_subscription(self, channel_id: str, alias: str) -> Subscription:
        """
        Remove a subscription from both indexes and return it.

        Order of store calls:
        1. read channel index (missing alias -> SubscriptionNotFound, no writes)
        2. read reverse index
        3. write reverse index
        4. write channel index

        A failure at 3 leaves both indexes untouched. A failure at 4 leaves the
        channel record in place with no reverse route to it; that case raises
        PartialConsistencyViolation.
        """
        async with self._locks.hold(channel_id):
            channel = await self._read_channel(channel_id)
            sub = channel.subscriptions.get(alias)
            if sub is None:
                log.info("subscriptions.not_found", channel_id=channel_id, alias=alias)
                raise SubscriptionNotFound(channel_id, alias)

            key = sub.reverse_key
            async with self._locks.hold(key):
                reverse = await self._read_reverse(key)

                del channel.subscriptions[alias]
                # Another alias in this channel may still watch the same space.
                if channel.watches(sub.base_url, sub.space_key):
                    reverse.channels[channel_id] = channel.events_for(sub.base_url, sub.space_key)
                else:
                    reverse.channels.pop(channel_id, None)

                await self._store.set(key, reverse.encode())
                await self._write_second(
                    channel_id, channel.encode(), channel_id=channel_id, reverse_key=key, operation="delete"
                )

        self._inc("subscriptions_deleted_total")
        log.info("subscriptions.deleted", channel_id=channel_id, alias=alias)
        return sub

    # --- Internals ---

    async def _read_channel(self, channel_id: str) -> ChannelIndexEntry:
        return ChannelIndexEntry.decode(await self._store.get(channel_id))

    async def _read_reverse(self, key: str) -> ReverseIndexEntry:
        return ReverseIndexEntry.decode(await self._store.get(key))

    async def _write_second(
        self,
        key: str,
        value: bytes,
        *,
        channel_id: str,
        reverse_key: str,
        operation: str,
    ) -> None:
        """Write the second of two index keys; a failure here means drift."""
        try:
            await self._store.set(key, value)
        except StorageError as exc:
            self._inc("index_drift_total")
            log.error(
                "subscriptions.index_drift",
                operation=operation,
                channel_id=channel_id,
                reverse_key=reverse_key,
                failed_key=key,
                error=str(exc),
            )
            raise PartialConsistencyViolation(
                f"{operation} left channel {channel_id!r} and {reverse_key!r} out of step",
                channel_id=channel_id,
                reverse_key=reverse_key,
            ) from exc

    def _inc(self, name: str) -> None:
        if self._metrics:
            self._metrics.inc(name)


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
