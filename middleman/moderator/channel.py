"""Moderator channel: the relay's NoticePort over XMPP persona bots."""

from __future__ import annotations

import logging
from typing import Mapping

from middleman.core.relay.ports import NoticePort, Persona
from middleman.moderator.bot import PersonaBot

log = logging.getLogger("moderator")


class ModeratorChannel(NoticePort):
    def __init__(self, bots: Mapping[Persona, PersonaBot], *, timeout_s: float = 15.0):
        if Persona.RELAY not in bots:
            raise ValueError("ModeratorChannel needs a relay persona bot")
        self._bots = dict(bots)
        self.timeout_s = timeout_s

    def bot_for(self, persona: Persona) -> PersonaBot:
        return self._bots.get(persona) or self._bots[Persona.RELAY]

    async def post(self, text: str, persona: Persona = Persona.RELAY) -> bool:
        bot = self.bot_for(persona)
        if not await bot.wait_connected(self.timeout_s):
            log.warning("Notice dropped: %s bot not connected after %.0fs", persona.value, self.timeout_s)
            return False
        sent = bot.send_notice(text)
        if not sent:
            log.warning("Notice as %s was not sent", persona.value)
        return sent
