"""
Subscription records and the stored index envelopes.

Both indexes are persisted as versioned JSON envelopes:

- channel index:  {"version": 1, "subscriptions": {alias: Subscription}}
- reverse index:  {"version": 1, "channels": {channel_id: [event, ...]}}

Values written before envelopes existed (a bare mapping with camelCase record
fields) are read as version 0 and rewritten in the current format on the next
write.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .errors import StorageError

SCHEMA_VERSION = 1
REVERSE_KEY_PREFIX = "wikisub_"

# Validation context flag for records read back from the store.
STORED_CONTEXT = "stored"


def _is_stored(info: ValidationInfo) -> bool:
    return bool(info.context and info.context.get(STORED_CONTEXT))


def normalize_base_url(base_url: str) -> str:
    return base_url.strip().lower().rstrip("/")


def normalize_space_key(space_key: str) -> str:
    return space_key.strip()


def reverse_index_key(base_url: str, space_key: str) -> str:
    """Derive the reverse index store key for a (base URL, space key) pair."""
    # NUL cannot appear in a URL, so the joined form is unambiguous.
    raw = f"{normalize_base_url(base_url)}\x00{normalize_space_key(space_key)}"
    return REVERSE_KEY_PREFIX + hashlib.sha256(raw.encode("utf-8")).hexdigest()


def merge_events(*groups: list[str]) -> list[str]:
    """Ordered union of event lists, first occurrence wins."""
    merged: list[str] = []
    for group in groups:
        for event in group:
            if event not in merged:
                merged.append(event)
    return merged


class Subscription(BaseModel):
    """A channel's subscription to events of one wiki space."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    alias: str
    channel_id: str = Field(validation_alias=AliasChoices("channel_id", "channelID"))
    base_url: str = Field(validation_alias=AliasChoices("base_url", "baseURL"))
    space_key: str = Field(validation_alias=AliasChoices("space_key", "spaceKey"))
    events: list[str] = Field(default_factory=list)

    @field_validator("alias")
    @classmethod
    def _check_alias(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        if not v:
            raise ValueError("alias must not be empty")
        # Commands are whitespace-tokenized, so an alias with spaces could
        # never be addressed by `delete <alias>`. Older records may still
        # carry one and must stay readable.
        if not _is_stored(info) and len(v.split()) != 1:
            raise ValueError("alias must not contain whitespace")
        return v

    @field_validator("channel_id")
    @classmethod
    def _check_channel_id(cls, v: str) -> str:
        if not v:
            raise ValueError("channel_id must not be empty")
        return v

    @field_validator("base_url")
    @classmethod
    def _check_base_url(cls, v: str) -> str:
        v = normalize_base_url(v)
        if not v:
            raise ValueError("base_url must not be empty")
        return v

    @field_validator("space_key")
    @classmethod
    def _check_space_key(cls, v: str) -> str:
        v = normalize_space_key(v)
        if not v:
            raise ValueError("space_key must not be empty")
        return v

    @field_validator("events", mode="before")
    @classmethod
    def _null_events(cls, v: Any) -> Any:
        # Older records store an empty event list as null.
        return [] if v is None else v

    @field_validator("events")
    @classmethod
    def _dedupe_events(cls, v: list[str]) -> list[str]:
        return merge_events([e.strip() for e in v if e.strip()])

    @property
    def reverse_key(self) -> str:
        return reverse_index_key(self.base_url, self.space_key)

    def targets(self, other: Subscription) -> bool:
        """True if both subscriptions watch the same wiki space."""
        return self.base_url == other.base_url and self.space_key == other.space_key


class ChannelIndexEntry(BaseModel):
    """All subscriptions of one channel, keyed by alias."""

    model_config = ConfigDict(extra="ignore")

    version: int = SCHEMA_VERSION
    subscriptions: dict[str, Subscription] = Field(default_factory=dict)

    def events_for(self, base_url: str, space_key: str) -> list[str]:
        """Events the channel wants for a space, across all matching aliases."""
        key = reverse_index_key(base_url, space_key)
        return merge_events(
            *(s.events for s in self.subscriptions.values() if s.reverse_key == key)
        )

    def watches(self, base_url: str, space_key: str) -> bool:
        key = reverse_index_key(base_url, space_key)
        return any(s.reverse_key == key for s in self.subscriptions.values())

    def encode(self) -> bytes:
        return _encode(self)

    @classmethod
    def decode(cls, raw: bytes | None) -> ChannelIndexEntry:
        return _decode(cls, raw, "subscriptions")


class ReverseIndexEntry(BaseModel):
    """Channels subscribed to one wiki space, with the events each wants."""

    model_config = ConfigDict(extra="ignore")

    version: int = SCHEMA_VERSION
    channels: dict[str, list[str]] = Field(default_factory=dict)

    def encode(self) -> bytes:
        return _encode(self)

    @classmethod
    def decode(cls, raw: bytes | None) -> ReverseIndexEntry:
        return _decode(cls, raw, "channels")


def _encode(entry: BaseModel) -> bytes:
    payload = entry.model_dump(mode="json")
    payload["version"] = SCHEMA_VERSION
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _decode(cls: Any, raw: bytes | None, field: str) -> Any:
    if raw is None:
        return cls()
    try:
        data = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StorageError(f"Undecodable {cls.__name__}: {exc}") from exc
    if not isinstance(data, dict):
        raise StorageError(f"Undecodable {cls.__name__}: expected an object")

    # An envelope has an integer version next to its payload field. Anything
    # else is a bare legacy mapping, even one with a "version" key in it.
    version = data.get("version")
    if isinstance(version, int) and not isinstance(version, bool) and field in data:
        if version > SCHEMA_VERSION:
            raise StorageError(
                f"{cls.__name__} has schema version {version!r}, "
                f"this build reads up to {SCHEMA_VERSION}"
            )
    else:
        data = {"version": 0, field: data}

    try:
        return cls.model_validate(data, context={STORED_CONTEXT: True})
    except ValidationError as exc:
        raise StorageError(f"Invalid {cls.__name__}: {exc}") from exc
