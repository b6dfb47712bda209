"""
Slash command routing and reply rendering.

Routes `/<trigger> <command> [args]` to subscription manager operations and
posts the reply as an ephemeral message from the bot user.

Command names may span several words; the longest matching prefix of the
argument tokens wins, so a two-word command shadows its first word alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

import structlog

from .errors import StorageError, SubscriptionNotFound
from .metrics import MetricsCollector
from .models import Subscription
from .subscriptions import SubscriptionManager

log = structlog.get_logger()

INVALID_COMMAND = "Invalid command"
NO_SUBSCRIPTIONS = "No subscription found for this channel."
LIST_ERROR = "Encountered an error getting channel subscriptions."
HELP_TEXT = (
    "Available commands:\n"
    "* `list` - list the subscriptions of this channel\n"
    "* `delete <alias>` - delete the subscription with the given alias\n"
    "* `help` - show this message"
)


class Poster(Protocol):
    async def post_ephemeral(
        self, user_id: str, channel_id: str, message: str, bot_user_id: str
    ) -> bool:
        ...


@dataclass(frozen=True)
class BotContext:
    """Bot identity and delivery client, built once at startup."""

    bot_user_id: str
    poster: Poster


@dataclass(frozen=True)
class CommandContext:
    """One slash command invocation."""

    channel_id: str
    user_id: str
    command: str


HandlerFunc = Callable[[CommandContext, list[str]], Awaitable[str]]


class CommandHandler:
    """Longest-prefix dispatch over a fixed table of command names."""

    def __init__(self, handlers: dict[str, HandlerFunc], default: HandlerFunc):
        self._handlers = handlers
        self._default = default

    @property
    def names(self) -> list[str]:
        return sorted(self._handlers)

    async def handle(self, ctx: CommandContext, args: list[str]) -> str:
        for n in range(len(args), 0, -1):
            handler = self._handlers.get("/".join(args[:n]))
            if handler is not None:
                return await handler(ctx, args[n:])
        return await self._default(ctx, args)


def render_subscriptions(subscriptions: list[Subscription]) -> str:
    """Render subscriptions as a markdown table."""
    if not subscriptions:
        return NO_SUBSCRIPTIONS
    lines = [
        "| Alias | Base Url | Space Key | Events |",
        "| :----: | :--------: | :--------: | :-----: |",
    ]
    for sub in subscriptions:
        lines.append(f"|{sub.alias}|{sub.base_url}|{sub.space_key}|{', '.join(sub.events)}|")
    return "\n".join(lines)


class CommandDispatcher:
    """Runs a command against the subscription manager and posts the reply."""

    def __init__(
        self,
        manager: SubscriptionManager,
        bot: BotContext,
        metrics: MetricsCollector | None = None,
    ):
        self._manager = manager
        self._bot = bot
        self._metrics = metrics
        self._handler = CommandHandler(
            {
                "list": self._list,
                "delete": self._delete,
                "help": self._help,
            },
            default=self._invalid,
        )

    async def execute(self, ctx: CommandContext) -> str:
        """Dispatch a raw command line (trigger word included) and post the reply."""
        args = ctx.command.split()[1:]
        self._inc("commands_total")
        log.info(
            "commands.dispatched",
            channel_id=ctx.channel_id,
            user_id=ctx.user_id,
            args=args[:2],
        )

        reply = await self._handler.handle(ctx, args)
        await self._bot.poster.post_ephemeral(
            ctx.user_id, ctx.channel_id, reply, self._bot.bot_user_id
        )
        return reply

    # --- Handlers ---

    async def _list(self, ctx: CommandContext, args: list[str]) -> str:
        try:
            subscriptions = await self._manager.list_subscriptions(ctx.channel_id)
        except StorageError as exc:
            self._storage_failed("list", ctx, exc)
            return LIST_ERROR
        return render_subscriptions(subscriptions)

    async def _delete(self, ctx: CommandContext, args: list[str]) -> str:
        if not args:
            return "Usage: `delete <alias>`"
        alias = args[0]
        try:
            await self._manager.delete_subscription(ctx.channel_id, alias)
        except SubscriptionNotFound:
            return f"Subscription with alias **{alias}** not found."
        except StorageError as exc:
            self._storage_failed("delete", ctx, exc)
            return f"Error occurred while deleting subscription with alias **{alias}**."
        return f"Subscription with alias **{alias}** deleted successfully."

    async def _help(self, ctx: CommandContext, args: list[str]) -> str:
        return HELP_TEXT

    async def _invalid(self, ctx: CommandContext, args: list[str]) -> str:
        self._inc("commands_invalid_total")
        return INVALID_COMMAND

    # --- Helpers ---

    def _storage_failed(self, command: str, ctx: CommandContext, exc: StorageError) -> None:
        self._inc("storage_errors_total")
        log.warning(
            "commands.storage_error",
            command=command,
            channel_id=ctx.channel_id,
            kind=type(exc).__name__,
            error=str(exc),
        )

    def _inc(self, name: str) -> None:
        if self._metrics:
            self._metrics.inc(name)
