"""
Main Bridge orchestrator.

Builds every component from configuration and owns their lifecycle: store,
subscription manager, ephemeral poster, command dispatcher and HTTP server.
Nothing is held in module globals; the bot identity travels in a BotContext.
"""

from __future__ import annotations

import asyncio
import signal

import structlog

from .commands import BotContext, CommandDispatcher
from .config import BridgeConfig
from .metrics import MetricsCollector
from .poster import EphemeralPoster
from .server import BridgeServer
from .store import KVStore, build_store
from .subscriptions import SubscriptionManager

log = structlog.get_logger()

SHUTDOWN_TIMEOUT = 15.0


class WikiBridge:
    """Main bridge process: wiring, startup and graceful shutdown."""

    def __init__(self, config: BridgeConfig, store: KVStore | None = None):
        self._config = config
        self._metrics = MetricsCollector()
        self._store = store or build_store(
            config.store.backend,
            db_path=config.store.db_path,
            redis_url=config.store.redis_url,
        )
        self.manager = SubscriptionManager(
            self._store,
            metrics=self._metrics,
            serialize_writes=config.subscriptions.serialize_writes,
        )
        self._poster = EphemeralPoster(
            chat_url=config.chat.url,
            token=config.chat.token or "",
            verify_tls=config.chat.verify_tls,
            request_timeout=config.chat.request_timeout_seconds,
            metrics=self._metrics,
        )
        self.dispatcher = CommandDispatcher(
            self.manager,
            BotContext(bot_user_id=config.chat.bot_user_id, poster=self._poster),
            metrics=self._metrics,
        )
        self._server = BridgeServer(
            self.dispatcher,
            self._store,
            host=config.server.host,
            port=config.server.port,
            trigger=config.command.trigger,
            metrics=self._metrics,
        )
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Open the store and poster, then start accepting commands."""
        log.info("bridge.starting", store=self._config.store.backend)

        if not self._config.chat.token:
            log.error("bridge.missing_bot_token", env=self._config.chat.token_env)
            raise RuntimeError(f"{self._config.chat.token_env} is not set")

        await self._store.open()
        await self._poster.open()
        await self._server.start()

        self._running = True
        log.info(
            "bridge.started",
            host=self._config.server.host,
            port=self._config.server.port,
            trigger=self._config.command.trigger,
        )

    async def stop(self) -> None:
        """Graceful shutdown: stop accepting commands, then close clients."""
        if not self._running:
            return
        self._running = False
        log.info("bridge.stopping")

        await self._server.stop()
        await self._poster.close()
        await self._store.close()

        log.info("bridge.stopped")

    async def run_forever(self) -> None:
        """Run until shutdown signal."""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._shutdown_event.set)

        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await asyncio.wait_for(self.stop(), timeout=SHUTDOWN_TIMEOUT)
