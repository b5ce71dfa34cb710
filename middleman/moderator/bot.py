"""Persona bots - one XMPP account per moderator-channel identity."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, cast

from middleman.config import PersonaConfig
from middleman.core.relay.ports import Persona
from middleman.utils import BaseXMPPBot

CommandCallback = Callable[[str], Awaitable[bool]]


class PersonaBot(BaseXMPPBot):
    """XMPP bot posting notices under one persona.

    Posts to the configured room (joined with the persona's label as nick),
    or directly to the moderator when no room is set.
    """

    def __init__(
        self,
        persona: Persona,
        cfg: PersonaConfig,
        *,
        recipient: str,
        room_jid: str | None = None,
    ):
        super().__init__(cfg.jid, cfg.password, recipient=recipient)
        # Initialize logger early because Slixmpp can deliver stanzas before
        # session_start fires.
        self.log = logging.getLogger(f"moderator.{persona.value}")
        self.persona = persona
        self.label = cfg.label
        self.icon_url = cfg.icon_url
        self.room_jid = room_jid
        self.shutting_down = False

        self._reconnect_task: asyncio.Task | None = None
        self._reconnect_attempt = 0

        self.add_event_handler("session_start", self.on_start)
        self.add_event_handler("disconnected", self.on_disconnected)

    # -------------------------------------------------------------------------
    # XMPP lifecycle
    # -------------------------------------------------------------------------

    async def on_start(self, event):
        await self.guard(self._on_start(event), context=f"{self.persona.value}.on_start")

    async def _on_start(self, event):
        self.send_presence()
        try:
            await asyncio.wait_for(self.get_roster(), timeout=15)
        except asyncio.TimeoutError:
            self.log.error("Startup timed out during roster fetch")
            self.disconnect()
            return
        if self.room_jid and not await self._join_room():
            self.disconnect()
            return
        self.log.info("Connected as %s", self.label)
        self.set_connected(True)
        self._reconnect_attempt = 0

    async def _join_room(self) -> bool:
        try:
            muc = cast(Any, self["xep_0045"])
            await muc.join_muc(self.room_jid, self.label)  # type: ignore[attr-defined]
            return True
        except Exception:
            self.log.exception("Failed to join room: %s", self.room_jid)
            return False

    def on_disconnected(self, event):
        self.set_connected(False)
        if self.shutting_down:
            self.log.info("Disconnected during shutdown; not reconnecting")
            return
        if self._reconnect_task and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    async def _reconnect(self):
        _MAX_ATTEMPTS = 10
        _BASE_DELAY = 5
        _MAX_DELAY = 60
        while self._reconnect_attempt < _MAX_ATTEMPTS:
            if self.shutting_down:
                return
            self._reconnect_attempt += 1
            delay = min(_BASE_DELAY * (2 ** (self._reconnect_attempt - 1)), _MAX_DELAY)
            self.log.warning(
                "Reconnecting (attempt %d/%d) in %ds...",
                self._reconnect_attempt, _MAX_ATTEMPTS, delay,
            )
            await asyncio.sleep(delay)
            if self.shutting_down:
                return
            try:
                self.connect()
            except Exception:
                self.log.warning("Reconnect connect() failed", exc_info=True)
                continue
            return
        self.log.error("Giving up reconnect after %d attempts", _MAX_ATTEMPTS)

    def shutdown(self) -> None:
        self.shutting_down = True
        task = self._reconnect_task
        self._reconnect_task = None
        if task and not task.done():
            task.cancel()
        self.set_connected(False)
        self.disconnect()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    def send_notice(self, text: str) -> bool:
        target = self.room_jid or self.recipient
        attrs = {"persona": self.persona.value, "name": self.label}
        if self.icon_url:
            attrs["icon"] = self.icon_url
        return self.send_reply(
            text,
            recipient=target,
            mtype="groupchat" if self.room_jid else "chat",
            meta_type="persona",
            meta_attrs=attrs,
        )


class RelayBot(PersonaBot):
    """The relay persona; also accepts `!commands` from the moderator."""

    def __init__(
        self,
        cfg: PersonaConfig,
        *,
        recipient: str,
        room_jid: str | None = None,
        own_nicks: set[str] | None = None,
    ):
        super().__init__(Persona.RELAY, cfg, recipient=recipient, room_jid=room_jid)
        self.own_nicks = set(own_nicks or ()) | {cfg.label}
        self.on_command: CommandCallback | None = None
        self.add_event_handler("message", self.on_message)

    async def on_message(self, msg):
        await self.guard(self._handle_message(msg), context="relay.on_message")

    def is_moderator_message(self, msg) -> bool:
        msg_type = msg["type"]
        sender = str(msg["from"].bare)
        if msg_type == "groupchat":
            if not self.room_jid or sender != self.room_jid:
                return False
            nick = str(msg["from"].resource or "")
            return bool(nick) and nick not in self.own_nicks
        if msg_type in ("chat", "normal"):
            owner = (self.recipient or "").split("/", 1)[0]
            return sender == owner
        return False

    async def _handle_message(self, msg):
        body = (msg["body"] or "").strip()
        if not body.startswith("!"):
            return
        if not self.is_moderator_message(msg):
            return
        self.log.info("Moderator command: %s", body[:80])
        if self.on_command is not None:
            await self.on_command(body)
