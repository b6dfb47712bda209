"""Tests for bridge wiring, lifecycle and the CLI entry point."""

import pytest
import structlog
from structlog.testing import capture_logs

from wiki_bridge.bridge import WikiBridge
from wiki_bridge.config import BridgeConfig
from wiki_bridge.main import configure_logging, run
from wiki_bridge.store import MemoryStore


def _config(**overrides) -> BridgeConfig:
    data = {
        "chat": {"url": "http://127.0.0.1:1", "bot_user_id": "bot1", "token_env": "TEST_WIKI_BOT_TOKEN"},
        "store": {"backend": "memory"},
        "server": {"host": "127.0.0.1", "port": 0},
        "logging": {"level": "debug", "format": "text"},
    }
    data.update(overrides)
    return BridgeConfig.model_validate(data)


async def test_start_requires_bot_token(monkeypatch):
    monkeypatch.delenv("TEST_WIKI_BOT_TOKEN", raising=False)
    bridge = WikiBridge(_config())
    with pytest.raises(RuntimeError):
        await bridge.start()


async def test_start_and_stop(monkeypatch):
    monkeypatch.setenv("TEST_WIKI_BOT_TOKEN", "tok")
    store = MemoryStore()
    bridge = WikiBridge(_config(), store=store)

    await bridge.start()
    try:
        await bridge.manager.create_subscription("C1", "a1", "https://w", "ENG", ["page_created"])
        subs = await bridge.manager.list_subscriptions("C1")
        assert [s.alias for s in subs] == ["a1"]
    finally:
        await bridge.stop()

    # Stopping twice is harmless.
    await bridge.stop()


def test_configure_logging_formats():
    configure_logging("debug", "text")
    configure_logging("info", "json")


def test_configure_logging_filters_below_level():
    configure_logging("warning", "json")
    try:
        with capture_logs() as logs:
            log = structlog.get_logger()
            log.info("bridge.quiet")
            log.warning("bridge.loud")
        assert [entry["event"] for entry in logs] == ["bridge.loud"]
    finally:
        structlog.reset_defaults()


def test_run_exits_on_missing_config(tmp_path):
    with pytest.raises(SystemExit) as info:
        run(["-c", str(tmp_path / "missing.yaml")])
    assert info.value.code == 1


def test_run_exits_on_invalid_config(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("store:\n  backend: etcd\n")
    with pytest.raises(SystemExit) as info:
        run(["-c", str(path)])
    assert info.value.code == 1


def test_run_exits_on_unknown_log_level(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("logging:\n  level: loud\n")
    with pytest.raises(SystemExit) as info:
        run(["-c", str(path)])
    assert info.value.code == 1
