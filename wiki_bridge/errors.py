"""
Error taxonomy for subscription index operations.

Every failure is scoped to a single command invocation; none of these are
fatal to the bridge process.
"""

from __future__ import annotations


class SubscriptionError(Exception):
    """Base class for subscription index errors."""


class StorageError(SubscriptionError):
    """The KV store failed a read or write, or a stored value did not decode."""


class PartialConsistencyViolation(StorageError):
    """
    The first of two index writes succeeded and the second failed.

    The channel index and the reverse index now disagree. Reported to users as
    a plain StorageError, but logged and counted separately so index drift can
    be detected.
    """

    def __init__(self, message: str, *, channel_id: str, reverse_key: str):
        super().__init__(message)
        self.channel_id = channel_id
        self.reverse_key = reverse_key


class SubscriptionNotFound(SubscriptionError):
    """The requested alias does not exist in the channel."""

    def __init__(self, channel_id: str, alias: str):
        super().__init__(f"Subscription {alias!r} not found in channel {channel_id!r}")
        self.channel_id = channel_id
        self.alias = alias


class AliasConflict(SubscriptionError):
    """The alias is already used by another subscription in the channel."""

    def __init__(self, channel_id: str, alias: str):
        super().__init__(f"Alias {alias!r} already exists in channel {channel_id!r}")
        self.channel_id = channel_id
        self.alias = alias


class InvalidSubscription(SubscriptionError):
    """A subscription failed validation before any store access."""
