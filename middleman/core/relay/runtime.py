"""RelayOrchestrator.

This is the single place that owns:
- the joint session state (active / common-interest guard / topics)
- forwarding between the two session hosts
- the recovery sequence (notice -> kill -> restart)

All work, host envelopes and moderator commands alike, runs through one
queue and is handled one item at a time, so the state needs no locks.
It depends only on ports, not on concrete hosts or XMPP.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Sequence

from middleman.core.relay import formatting
from middleman.core.relay.ports import HostPort, NoticePort, Persona
from middleman.core.relay.state import RelayState
from middleman.envelope import Envelope, EnvelopeError, EventKind, Side

log = logging.getLogger("relay")

DEFAULT_SIDE_LABELS = {Side.A: "Person A", Side.B: "Person B"}


@dataclass(frozen=True)
class _WorkItem:
    kind: str  # "envelope" | "topics" | "retry" | "inject"
    side: Side | None = None
    payload: object = None
    done: asyncio.Future[None] | None = None
    enqueued_at: float = field(default_factory=time.monotonic)


class RelayOrchestrator:
    def __init__(
        self,
        *,
        hosts: Mapping[Side, HostPort],
        notices: NoticePort,
        topics: Sequence[str] = (),
        side_labels: Mapping[Side, str] | None = None,
    ):
        if set(hosts) != {Side.A, Side.B}:
            raise ValueError("RelayOrchestrator needs exactly one host per side")
        self._hosts = dict(hosts)
        self._notices = notices
        self._labels = dict(side_labels or DEFAULT_SIDE_LABELS)

        self.state = RelayState(topics=list(topics))
        self.shutting_down = False

        self._queue: asyncio.Queue[_WorkItem] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._mirror_tail: asyncio.Task | None = None

    # -------------------------------------------------------------------------
    # Queue / loop
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self.shutting_down:
            return
        if self._task and not self._task.done():
            return
        self._task = asyncio.create_task(self.run())

    def shutdown(self) -> None:
        self.shutting_down = True
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
        mirror = self._mirror_tail
        self._mirror_tail = None
        if mirror and not mirror.done():
            mirror.cancel()
        while not self._queue.empty():
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item.done and not item.done.done():
                item.done.set_exception(asyncio.CancelledError())

    def pending_count(self) -> int:
        return self._queue.qsize()

    async def _enqueue(
        self,
        item_kind: str,
        *,
        side: Side | None = None,
        payload: object = None,
        wait: bool = False,
    ) -> None:
        if self.shutting_down:
            return
        done: asyncio.Future[None] | None = None
        if wait:
            done = asyncio.get_running_loop().create_future()
        await self._queue.put(_WorkItem(kind=item_kind, side=side, payload=payload, done=done))
        if done is not None:
            await done

    async def submit(self, side: Side, wire: object) -> None:
        """Host emit callback: queue an envelope (wire form) from one side."""
        await self._enqueue("envelope", side=side, payload=wire)

    async def set_topics(self, topics: Sequence[str], *, wait: bool = False) -> None:
        await self._enqueue("topics", payload=list(topics), wait=wait)

    async def retry(self, *, wait: bool = False) -> None:
        await self._enqueue("retry", wait=wait)

    async def inject(self, side: Side, text: str, *, wait: bool = False) -> None:
        """Say `text` as persona `side`; delivered to the other side's stranger."""
        await self._enqueue("inject", side=side, payload=text, wait=wait)

    async def run(self) -> None:
        try:
            while not self.shutting_down:
                item = await self._queue.get()
                try:
                    await self._process(item)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    log.exception("Relay loop error (%s)", item.kind)
                finally:
                    if item.done and not item.done.done():
                        item.done.set_result(None)
        except asyncio.CancelledError:
            return

    async def _process(self, item: _WorkItem) -> None:
        if item.kind == "envelope":
            if item.side is None:
                log.error("Dropping envelope work item without a side")
                return
            try:
                env = Envelope.from_wire(item.payload)
            except EnvelopeError as e:
                log.error("Dropping envelope from %s: %s", item.side.value, e)
                return
            await self.handle(item.side, env)
        elif item.kind == "topics":
            await self.apply_topics(item.payload)  # type: ignore[arg-type]
        elif item.kind == "retry":
            await self.force_retry()
        elif item.kind == "inject":
            if item.side is None:
                log.error("Dropping inject work item without a side")
                return
            await self.apply_inject(item.side, str(item.payload))
        else:
            log.error("Unknown relay work item: %s", item.kind)

    # -------------------------------------------------------------------------
    # Envelope handling
    # -------------------------------------------------------------------------

    async def handle(self, side: Side, env: Envelope) -> None:
        state = self.state
        kind = env.kind

        if kind is EventKind.CONNECTED and not state.active:
            # First side up activates the joint session; the other may still be searching.
            state.active = True
            log.info("Side %s connected; session active", side.value)
            await self._post(formatting.connected_notice(state.topics))
            return

        if not state.active:
            if kind is EventKind.CONNECTION_ERROR:
                log.warning("Side %s failed to connect while searching; retrying that side", side.value)
                await self._send(side, Envelope(EventKind.RESTART))
                return
            log.debug("Dropping %s from %s: no active session", kind.name, side.value)
            return

        if kind is EventKind.DISCONNECTED:
            log.info("Stranger %s disconnected; restarting both sides", side.value)
            await self._post(formatting.disconnected_notice(self._labels[side]))
            await self._kill_all()
            await self.recover()
            return

        if kind is EventKind.IDLE:
            log.info("Side %s idle; restarting both sides", side.value)
            await self.recover()
            return

        if kind is EventKind.CONNECTION_ERROR:
            log.warning("Side %s lost its connection; restarting both sides", side.value)
            await self._kill_all()
            await self._post(formatting.connection_error_notice())
            await self.recover()
            return

        await self._send(side.other, env)

        if kind is EventKind.MESSAGE:
            self._mirror(formatting.relayed_message(env.text), Persona.for_side(side))

        if kind is EventKind.COMMON_INTERESTS and not state.notified_common_interests:
            state.notified_common_interests = True
            await self._post(formatting.common_interests_notice(env.items))

    async def recover(self) -> None:
        """Close the joint session, announce it, then restart both hosts.

        RESTART is only sent after the searching notice has been sent (or has
        failed), so a fast reconnect never races a stale notice.
        """
        self.state.reset_session()
        posted = await self._post(formatting.searching_notice(self.state.topics))
        if not posted:
            log.warning("Searching notice was not delivered; restarting anyway")
        await self._broadcast(Envelope(EventKind.RESTART))

    # -------------------------------------------------------------------------
    # Moderator operations
    # -------------------------------------------------------------------------

    async def apply_topics(self, topics: Sequence[str]) -> None:
        self.state.topics = [t for t in topics if t]
        await self._broadcast(Envelope(EventKind.SET_TOPICS, tuple(self.state.topics)))
        await self._post(formatting.topics_notice(self.state.topics))

    async def force_retry(self) -> None:
        log.info("Moderator requested retry")
        await self._post(formatting.retry_notice())
        await self._kill_all()
        await self.recover()

    async def apply_inject(self, side: Side, text: str) -> bool:
        if not self.state.active:
            log.info("Ignoring injected message as %s: no active session", side.value)
            return False
        await self._send(side.other, Envelope(EventKind.MESSAGE, text))
        self._mirror(formatting.relayed_message(text), Persona.for_side(side))
        return True

    def describe(self) -> str:
        return formatting.status_notice(active=self.state.active, topics=self.state.topics)

    # -------------------------------------------------------------------------
    # Effects
    # -------------------------------------------------------------------------

    def _mirror(self, text: str, persona: Persona) -> None:
        """Echo a relayed message in the background, after any echo still pending."""
        previous = self._mirror_tail
        self._mirror_tail = asyncio.create_task(self._mirror_after(previous, text, persona))

    async def _mirror_after(
        self, previous: asyncio.Task | None, text: str, persona: Persona
    ) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        await self._post_now(text, persona)

    async def flush_mirror(self) -> None:
        """Wait until every pending echo has been posted (or has failed)."""
        tail = self._mirror_tail
        if tail is not None and not tail.done():
            await asyncio.wait([tail])

    async def _post(self, text: str, persona: Persona = Persona.RELAY) -> bool:
        # Relay notices go out after the echoes queued before them.
        await self.flush_mirror()
        return await self._post_now(text, persona)

    async def _post_now(self, text: str, persona: Persona) -> bool:
        try:
            return bool(await self._notices.post(text, persona))
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Failed to post notice as %s", persona.value)
            return False

    async def _send(self, side: Side, env: Envelope) -> None:
        try:
            await self._hosts[side].send(env)
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Failed to send %s to host %s", env.kind.name, side.value)

    async def _broadcast(self, env: Envelope) -> None:
        await self._send(Side.A, env)
        await self._send(Side.B, env)

    async def _kill_all(self) -> None:
        await self._broadcast(Envelope(EventKind.KILL))
