"""Prefix commands and named event handlers on top of :class:`InterpalsClient`.

::

    bot = Bot(SessionCredentials(auth_token="..."), command_prefix=["!", "?"])

    @bot.command("ping", aliases=["p"])
    async def ping(ctx, *args):
        await ctx.reply("pong " + " ".join(args))

    @bot.event()
    def on_ready(_):
        print("connected")

    await bot.connect()
"""

import asyncio
import inspect
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .client import InterpalsClient
from .errors import DispatchError
from .events import ThreadNewMessageEvent
from .models import Entity
from .utils import get_short_error_info

EVENT_ALIASES = {
    "on_ready": "ready",
    "on_message": "message",
    "on_typing": "typing",
    "on_user_typing": "typing",
    "on_notification": "notification",
    "on_disconnect": "disconnect",
    "on_error": "error",
}


def event_name(handler_name: str) -> str:
    """Dispatcher event for a handler name such as ``on_profile_view``."""
    if handler_name in EVENT_ALIASES:
        return EVENT_ALIASES[handler_name]
    return handler_name.removeprefix("on_")


@dataclass(frozen=True)
class Command:
    name: str
    handler: Callable[..., Any]
    aliases: tuple[str, ...] = ()
    help: str | None = None


@dataclass
class CommandContext:
    bot: "Bot"
    thread_id: str | None
    sender_id: str | None
    sender_name: str | None
    content: str
    event: ThreadNewMessageEvent = field(repr=False)

    async def reply(self, content: Any, **extra: Any) -> Entity:
        """Send ``content`` to the thread the command came from."""
        return await self.bot.send_message(self.thread_id, content, **extra)


class Bot(InterpalsClient):
    """An :class:`InterpalsClient` that answers prefixed chat commands.

    Parameters
    ----------
    command_prefix : str | Sequence[str]
        One prefix or several; the first that matches wins.

    Other arguments are those of :class:`InterpalsClient`.
    """

    def __init__(self, *args: Any, command_prefix: str | Sequence[str] = "!", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.command_prefix = command_prefix
        self.commands: dict[str, Command] = {}
        self._tasks: set[asyncio.Task] = set()
        self.on("message").subscribe(self._handle_message)

    @property
    def prefixes(self) -> tuple[str, ...]:
        if isinstance(self.command_prefix, str):
            return (self.command_prefix,)
        return tuple(self.command_prefix)

    def command(
        self,
        name: str,
        handler: Callable[..., Any] | None = None,
        *,
        aliases: Sequence[str] = (),
        help: str | None = None,
    ):
        """Register ``handler(ctx, *args)`` under ``name`` and its aliases.

        Without ``handler`` this returns a decorator.
        """

        def register(func: Callable[..., Any]) -> Callable[..., Any]:
            command = Command(name.lower(), func, tuple(a.lower() for a in aliases), help)
            for key in (command.name, *command.aliases):
                self.commands[key] = command
            self._logger.debug(f"Registered command {command.name}")
            return func

        if handler is not None:
            return register(handler)
        return register

    def event(self, name: str | Callable[..., Any] | None = None):
        """Decorator subscribing a handler to the event its name points at.

        ``@bot.event()`` uses the function name (``on_message`` -> ``message``);
        ``@bot.event("on_typing")`` names it explicitly.
        """

        def register(func: Callable[..., Any]) -> Callable[..., Any]:
            target = event_name(name if isinstance(name, str) else func.__name__)
            self.on(target).subscribe(
                lambda payload: self._invoke(func, target, func.__name__, payload)
            )
            return func

        if callable(name):
            return register(name)
        return register

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await super().aclose()

    def _handle_message(self, event: ThreadNewMessageEvent) -> None:
        sender = event.sender
        if sender is not None and sender.is_self:
            return
        content = event.content or ""
        prefix = next((p for p in self.prefixes if content.startswith(p)), None)
        if prefix is None:
            return
        words = content[len(prefix):].split()
        if not words:
            return
        command = self.commands.get(words[0].lower())
        if command is None:
            return

        ctx = CommandContext(
            bot=self,
            thread_id=event.thread_id,
            sender_id=event.message.sender_id or (sender.id if sender else None),
            sender_name=(sender.username or sender.name) if sender else None,
            content=content,
            event=event,
        )
        self._invoke(command.handler, "command", command.name, ctx, *words[1:])

    def _invoke(self, handler: Callable[..., Any], event_type: str, note: str, *args: Any) -> None:
        def report(e: Exception) -> None:
            # a failing error handler must not feed the error event again
            if event_type == "error":
                self._logger.error(f"Error handler {note} failed: {get_short_error_info(e)}")
            else:
                self.dispatcher.report_error(DispatchError(e, event_type, note=note))

        try:
            result = handler(*args)
        except Exception as e:
            report(e)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(self._settle(result, report))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _settle(awaitable: Awaitable[Any], report: Callable[[Exception], None]) -> None:
        try:
            await awaitable
        except Exception as e:
            report(e)
