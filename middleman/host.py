"""Session host: one chat client running as its own actor.

The host owns a ChatClient, turns its events into envelopes for the relay,
and applies control envelopes from the relay one at a time. Errors stay
inside the host; a broken session never stalls the relay or the other side.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from middleman.chat import ChatClient, ChatError
from middleman.chat import models
from middleman.chat.models import ChatEvent
from middleman.envelope import Envelope, EnvelopeError, EventKind, Side

RESTART_DELAY_S = 2.5

EmitCallback = Callable[[Side, dict], Awaitable[None]]


class SessionHost:
    def __init__(
        self,
        side: Side,
        *,
        client: ChatClient,
        emit: EmitCallback,
        restart_delay_s: float = RESTART_DELAY_S,
    ):
        self.side = side
        self.client = client
        self.restart_delay_s = restart_delay_s
        self.log = logging.getLogger(f"host.{side.value}")
        self.shutting_down = False

        self._emit_cb = emit
        self._inbox: asyncio.Queue[object] = asyncio.Queue()
        self._control_task: asyncio.Task | None = None
        self._event_task: asyncio.Task | None = None

        self._handlers: dict[EventKind, Callable[[Envelope], Awaitable[None]]] = {
            EventKind.MESSAGE: self._on_message,
            EventKind.TYPING: self._on_typing,
            EventKind.STOPPED_TYPING: self._on_stopped_typing,
            EventKind.SET_TOPICS: self._on_set_topics,
            EventKind.KILL: self._on_kill,
            EventKind.RESTART: self._on_restart,
            # Relayed from the other side; nothing to send to our stranger.
            EventKind.CONNECTED: self._on_partner_event,
            EventKind.COMMON_INTERESTS: self._on_partner_event,
        }

    @property
    def topics(self) -> list[str]:
        return list(self.client.topics)

    # -------------------------------------------------------------------------
    # Channel
    # -------------------------------------------------------------------------

    async def send(self, envelope: Envelope) -> None:
        """Queue a control envelope (copied into wire form)."""
        await self.deliver(envelope.to_wire())

    async def deliver(self, wire: object) -> None:
        await self._inbox.put(wire)

    def pending_count(self) -> int:
        return self._inbox.qsize()

    async def _emit(self, kind: EventKind, payload: object = None) -> None:
        await self._emit_cb(self.side, Envelope(kind, payload).to_wire())  # type: ignore[arg-type]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self.shutting_down:
            return
        if self._control_task and not self._control_task.done():
            return
        self._event_task = asyncio.create_task(self._event_loop())
        self._control_task = asyncio.create_task(self._control_loop(connect_first=True))

    async def stop(self) -> None:
        self.shutting_down = True
        for task in (self._control_task, self._event_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._control_task = None
        self._event_task = None
        await self._disconnect("shutdown")

    async def _connect(self, context: str) -> None:
        try:
            params = await self.client.connect(self.client.topics)
        except ChatError as e:
            self.log.error("%s/connection failed: %s", context, e)
            await self._emit(EventKind.CONNECTION_ERROR)
            return
        except Exception:
            self.log.exception("%s/connection failed", context)
            await self._emit(EventKind.CONNECTION_ERROR)
            return
        self.log.info("%s/connected via %s", context, params.server)
        await self._emit(EventKind.CONNECTED)

    async def _disconnect(self, context: str) -> None:
        try:
            await self.client.disconnect()
        except ChatError as e:
            self.log.error("%s/disconnect failed: %s", context, e)
            return
        self.log.info("%s/disconnect", context)

    # -------------------------------------------------------------------------
    # Control loop (relay -> chat)
    # -------------------------------------------------------------------------

    async def _control_loop(self, *, connect_first: bool = False) -> None:
        try:
            if connect_first:
                try:
                    await self._connect("start")
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.log.exception("Host error during startup connect")
            while not self.shutting_down:
                wire = await self._inbox.get()
                try:
                    env = Envelope.from_wire(wire)
                except EnvelopeError as e:
                    self.log.error("Rejected envelope from relay: %s", e)
                    continue
                try:
                    await self.apply(env)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.log.exception("Host error while applying %s", env.kind.name)
        except asyncio.CancelledError:
            return

    async def apply(self, env: Envelope) -> None:
        handler = self._handlers.get(env.kind)
        if handler is None:
            self.log.error("Rejected envelope from relay: unsupported kind %s", env.kind.name)
            return
        await handler(env)

    async def _on_message(self, env: Envelope) -> None:
        try:
            await self.client.send_message(env.text)
        except ChatError as e:
            self.log.error("sending message to stranger: %s", e)
            return
        self.log.info("sent message to stranger: %s", env.text)

    async def _on_typing(self, _env: Envelope) -> None:
        try:
            await self.client.set_typing(True)
        except ChatError as e:
            self.log.error("sending typing to stranger: %s", e)
            return
        self.log.debug("sent typing to stranger")

    async def _on_stopped_typing(self, _env: Envelope) -> None:
        try:
            await self.client.set_typing(False)
        except ChatError as e:
            self.log.error("sending stopped typing to stranger: %s", e)
            return
        self.log.debug("sent stopped typing to stranger")

    async def _on_set_topics(self, env: Envelope) -> None:
        self.client.topics = list(env.items)
        self.log.info("topics for next connect: %s", ", ".join(env.items) or "(none)")

    async def _on_partner_event(self, env: Envelope) -> None:
        self.log.debug("partner event: %s", env)

    async def _on_kill(self, _env: Envelope) -> None:
        await self._disconnect("kill")

    async def _on_restart(self, _env: Envelope) -> None:
        # Reconnect even if the disconnect failed; it must not get stuck.
        await self._disconnect("restart")
        await asyncio.sleep(self.restart_delay_s)
        await self._connect("restart")

    # -------------------------------------------------------------------------
    # Event loop (chat -> relay)
    # -------------------------------------------------------------------------

    async def _event_loop(self) -> None:
        try:
            while not self.shutting_down:
                event = await self.client.events.get()
                try:
                    await self._forward(event)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    self.log.exception("Host error while forwarding %s", event[0])
        except asyncio.CancelledError:
            return

    async def _forward(self, event: ChatEvent) -> None:
        name, arg = event
        if name == models.MESSAGE:
            self.log.info("got message from stranger: %s", arg)
            await self._emit(EventKind.MESSAGE, str(arg or ""))
        elif name == models.TYPING:
            self.log.debug("stranger typing")
            await self._emit(EventKind.TYPING)
        elif name == models.STOPPED_TYPING:
            self.log.debug("stranger stopped typing")
            await self._emit(EventKind.STOPPED_TYPING)
        elif name == models.STRANGER_DISCONNECTED:
            self.log.info("stranger disconnected")
            await self._emit(EventKind.DISCONNECTED)
        elif name == models.COMMON_INTERESTS:
            likes = list(arg) if isinstance(arg, list) else []
            self.log.info("common interests: %s", ", ".join(likes))
            await self._emit(EventKind.COMMON_INTERESTS, likes)
        elif name in (models.ERROR, models.CONNECTION_LOST):
            self.log.error("chat session lost (%s): %s", name, arg)
            await self._emit(EventKind.CONNECTION_ERROR)
        elif name in (models.CAPTCHA_REQUIRED, models.CAPTCHA_REJECTED):
            self.log.warning("%s (not forwarded): %s", name, arg)
        elif name == models.BANNED:
            self.log.warning("banned by chat service (not forwarded)")
        else:
            self.log.info("%s", name)
