"""
Configuration loading and validation.

Loads bridge configuration from YAML file with environment variable resolution
for secrets (the chat bot token is never stored in config files).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field


class ChatConfig(BaseModel):
    url: str = "http://localhost:8065"
    bot_user_id: str = ""
    token_env: str = "WIKI_BRIDGE_BOT_TOKEN"
    verify_tls: bool = True
    request_timeout_seconds: int = 10

    @property
    def token(self) -> str | None:
        return os.environ.get(self.token_env)


class CommandConfig(BaseModel):
    trigger: str = "wiki"


class StoreConfig(BaseModel):
    backend: Literal["memory", "sqlite", "redis"] = "sqlite"
    db_path: str = "./data/subscriptions.db"
    redis_url: str = "redis://localhost:6379/0"


class SubscriptionsConfig(BaseModel):
    # Per-key in-process locking around read-modify-write cycles.
    serialize_writes: bool = True


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8090


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "text"] = "json"


class BridgeConfig(BaseModel):
    chat: ChatConfig = Field(default_factory=ChatConfig)
    command: CommandConfig = Field(default_factory=CommandConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    subscriptions: SubscriptionsConfig = Field(default_factory=SubscriptionsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> BridgeConfig:
    """Load and validate bridge configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return BridgeConfig.model_validate(raw)
