"""
HTTP server for slash commands, health checks and metrics.

Exposes:
- POST /commands: slash command callback from the chat platform
- GET /health: JSON health status
- GET /metrics: Prometheus-compatible metrics
"""

from __future__ import annotations

from aiohttp import web
import structlog

from .commands import CommandContext, CommandDispatcher
from .metrics import MetricsCollector
from .store import KVStore

log = structlog.get_logger()


class BridgeServer:
    """Lightweight aiohttp server in front of the command dispatcher."""

    def __init__(
        self,
        dispatcher: CommandDispatcher,
        store: KVStore,
        host: str = "127.0.0.1",
        port: int = 8090,
        trigger: str = "wiki",
        metrics: MetricsCollector | None = None,
    ):
        self._dispatcher = dispatcher
        self._store = store
        self._host = host
        self._port = port
        self._trigger = trigger
        self._metrics = metrics or MetricsCollector()
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/commands", self._command_handler)
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/metrics", self._metrics_handler)
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    async def _command_handler(self, request: web.Request) -> web.Response:
        if request.content_type == "application/json":
            try:
                data = await request.json()
            except ValueError as exc:
                log.warning("server.bad_request", error=str(exc))
                return web.json_response({"error": "malformed JSON body"}, status=400)
            if not isinstance(data, dict):
                log.warning("server.bad_request", error="JSON body is not an object")
                return web.json_response({"error": "malformed JSON body"}, status=400)
        else:
            data = await request.post()

        channel_id = str(data.get("channel_id", "")).strip()
        user_id = str(data.get("user_id", "")).strip()
        if not channel_id or not user_id:
            return web.json_response(
                {"error": "channel_id and user_id are required"}, status=400
            )

        trigger = str(data.get("command", "")).strip() or f"/{self._trigger}"
        text = str(data.get("text", "")).strip()
        ctx = CommandContext(
            channel_id=channel_id,
            user_id=user_id,
            command=f"{trigger} {text}".strip(),
        )

        try:
            await self._dispatcher.execute(ctx)
        except Exception:
            log.exception("server.command_failed", channel_id=channel_id)
            return web.json_response({"error": "internal error"}, status=500)

        # The reply is delivered as an ephemeral post, not in this response.
        return web.json_response({})

    async def _health_handler(self, request: web.Request) -> web.Response:
        store_ok = await self._store.ping()
        body = {
            "status": "healthy" if store_ok else "degraded",
            "store_reachable": store_ok,
        }
        return web.json_response(body)

    async def _metrics_handler(self, request: web.Request) -> web.Response:
        return web.Response(
            text=self._metrics.to_prometheus(),
            content_type="text/plain",
        )
