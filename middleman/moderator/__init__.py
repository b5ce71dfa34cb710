"""Moderator channel over XMPP: persona bots, notices and !commands."""

from middleman.moderator.bot import PersonaBot, RelayBot
from middleman.moderator.channel import ModeratorChannel
from middleman.moderator.commands import CommandHandler

__all__ = ["CommandHandler", "ModeratorChannel", "PersonaBot", "RelayBot"]
