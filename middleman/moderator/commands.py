"""Moderator `!commands`."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, cast

from middleman.core.relay.ports import NoticePort
from middleman.core.relay.runtime import RelayOrchestrator
from middleman.envelope import Side


def command(name: str, *aliases: str):
    """Decorator to register a command handler.

    Args:
        name: Primary command name (e.g., "!retry")
        *aliases: Additional names that trigger this command
    """

    def decorator(
        func: Callable[..., Awaitable[bool]],
    ) -> Callable[..., Awaitable[bool]]:
        setattr(func, "_command_name", name)
        setattr(func, "_command_aliases", aliases)
        return func

    return decorator


def split_command(body: str) -> tuple[str, list[str]]:
    """`"!topic foo  bar"` -> `("!topic", ["foo", "bar"])`."""
    parts = body.strip().split()
    if not parts:
        return "", []
    return parts[0].lower(), parts[1:]


class CommandHandler:
    """Handles moderator commands for the relay.

    Commands are registered via the @command decorator on methods.
    The handler auto-discovers all decorated methods on init.
    """

    def __init__(self, relay: RelayOrchestrator, notices: NoticePort):
        self.relay = relay
        self.notices = notices
        self._commands: dict[str, Callable[..., Awaitable[bool]]] = {}
        self._discover_commands()

    def _discover_commands(self) -> None:
        """Find all @command decorated methods and register them."""
        for name in dir(self):
            method = getattr(self, name)
            if callable(method) and hasattr(method, "_command_name"):
                m = cast(Any, method)
                handler = cast(Callable[..., Awaitable[bool]], method)
                self._commands[cast(str, m._command_name)] = handler
                for alias in cast(tuple[str, ...], m._command_aliases):
                    self._commands[alias] = handler

    @property
    def names(self) -> list[str]:
        return sorted(self._commands)

    async def handle(self, body: str) -> bool:
        """Handle a command. Returns True if command was handled."""
        cmd, args = split_command(body)
        if not cmd.startswith("!"):
            return False
        handler = self._commands.get(cmd)
        if handler is None:
            await self.notices.post(f"Unknown: {cmd}. Try !help")
            return False
        return await handler(args)

    @command("!topic", "!topics")
    async def topic(self, args: list[str]) -> bool:
        """Set topics for the next chat (no words clears them)."""
        await self.relay.set_topics(args)
        return True

    @command("!retry")
    async def retry(self, _args: list[str]) -> bool:
        """Drop both strangers and look for new ones."""
        await self.relay.retry()
        return True

    @command("!saya")
    async def say_a(self, args: list[str]) -> bool:
        """Speak as Person A (delivered to stranger B)."""
        return await self._say(Side.A, args)

    @command("!sayb")
    async def say_b(self, args: list[str]) -> bool:
        """Speak as Person B (delivered to stranger A)."""
        return await self._say(Side.B, args)

    async def _say(self, side: Side, args: list[str]) -> bool:
        text = " ".join(args)
        if not text:
            return True
        if not self.relay.state.active:
            await self.notices.post("No active chat session.")
            return True
        await self.relay.inject(side, text)
        return True

    @command("!status")
    async def status(self, _args: list[str]) -> bool:
        """Show session state and topics."""
        await self.notices.post(self.relay.describe())
        return True

    @command("!help")
    async def help(self, _args: list[str]) -> bool:
        """List commands."""
        lines = ["Commands:"]
        seen: set[int] = set()
        for name in self.names:
            handler = self._commands[name]
            key = id(getattr(handler, "__func__", handler))
            if key in seen:
                continue
            seen.add(key)
            doc = (handler.__doc__ or "").strip().splitlines()
            lines.append(f"  {name} - {doc[0]}" if doc else f"  {name}")
        await self.notices.post("\n".join(lines))
        return True
