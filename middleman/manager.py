"""Relay manager - wires the session hosts, relay and moderator bots."""

from __future__ import annotations

import logging

from middleman.chat import ChatClient
from middleman.config import ChatConfig
from middleman.core.relay import Persona, RelayOrchestrator
from middleman.envelope import Side
from middleman.host import SessionHost
from middleman.moderator import CommandHandler, ModeratorChannel, PersonaBot, RelayBot

log = logging.getLogger("manager")


class RelayManager:
    """Owns the two session hosts, the relay and the moderator channel."""

    def __init__(self, *, chat: ChatConfig, xmpp: dict):
        self.chat_config = chat
        self.xmpp_server: str = xmpp["server"]
        self.xmpp_port: int = xmpp.get("port", 5222)

        personas = xmpp["personas"]
        recipient = xmpp["recipient"]
        room_jid = xmpp.get("room_jid")
        labels = {p.label for p in personas.values()}

        self.relay_bot = RelayBot(
            personas["relay"], recipient=recipient, room_jid=room_jid, own_nicks=labels
        )
        self.bots: dict[Persona, PersonaBot] = {
            Persona.RELAY: self.relay_bot,
            Persona.A: PersonaBot(Persona.A, personas["A"], recipient=recipient, room_jid=room_jid),
            Persona.B: PersonaBot(Persona.B, personas["B"], recipient=recipient, room_jid=room_jid),
        }
        self.channel = ModeratorChannel(self.bots, timeout_s=xmpp.get("notice_timeout_s", 15.0))

        self.hosts: dict[Side, SessionHost] = {
            side: SessionHost(
                side,
                client=self._make_client(),
                emit=self._emit,
                restart_delay_s=chat.restart_delay_s,
            )
            for side in (Side.A, Side.B)
        }
        self.relay = RelayOrchestrator(
            hosts=self.hosts,
            notices=self.channel,
            topics=chat.topics,
            side_labels={Side.A: personas["A"].label, Side.B: personas["B"].label},
        )
        self.commands = CommandHandler(self.relay, self.channel)
        self.relay_bot.on_command = self.commands.handle

    def _make_client(self) -> ChatClient:
        cfg = self.chat_config
        return ChatClient(
            servers=cfg.servers,
            addresses=cfg.addresses,
            topics=cfg.topics,
            poll_interval_s=cfg.poll_interval_s,
            max_poll_failures=cfg.max_poll_failures,
            http_timeout_s=cfg.http_timeout_s,
        )

    async def _emit(self, side: Side, wire: dict) -> None:
        await self.relay.submit(side, wire)

    async def start(self) -> None:
        for persona, bot in self.bots.items():
            bot.connect_to_server(self.xmpp_server, self.xmpp_port)
            log.info("Started %s bot: %s", persona.value, bot.boundjid.bare)
        self.relay.start()
        for side, host in self.hosts.items():
            host.start()
            log.info("Started session host %s", side.value)

    async def stop(self) -> None:
        self.relay.shutdown()
        for host in self.hosts.values():
            await host.stop()
        for bot in self.bots.values():
            bot.shutdown()
        log.info("Relay stopped")
