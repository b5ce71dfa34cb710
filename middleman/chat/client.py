"""HTTP client for the anonymous chat service.

One ChatClient owns one chat session: the `/start` handshake, the recurring
`/events` poll and the outbound send/typing/disconnect calls. Decoded poll
events are delivered in order on `client.events`.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Sequence

import aiohttp

from middleman.chat import models
from middleman.chat.errors import ChatError, ChatProtocolError, ChatTransportError, ConnectError
from middleman.chat.events import decode_records, is_terminal
from middleman.chat.identity import DEFAULT_SERVERS, draw_connection_params
from middleman.chat.models import ChatEvent, ConnectionParams

log = logging.getLogger("chat")

POLL_INTERVAL_S = 2.5
MAX_POLL_FAILURES = 4
HTTP_TIMEOUT_S = 15.0


def build_http_timeout(total_s: float = HTTP_TIMEOUT_S) -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(total=float(total_s))


class ChatClient:
    """HTTP + polling transport for one chat session."""

    def __init__(
        self,
        *,
        servers: Sequence[str] = DEFAULT_SERVERS,
        addresses: Sequence[str] = (),
        topics: Sequence[str] = (),
        poll_interval_s: float = POLL_INTERVAL_S,
        max_poll_failures: int = MAX_POLL_FAILURES,
        http_timeout_s: float = HTTP_TIMEOUT_S,
    ):
        self.servers = tuple(servers)
        self.addresses = tuple(addresses)
        self.topics: list[str] = list(topics)
        self.poll_interval_s = poll_interval_s
        self.max_poll_failures = max(1, int(max_poll_failures))
        self.http_timeout_s = http_timeout_s

        self.events: asyncio.Queue[ChatEvent] = asyncio.Queue()

        self._params: ConnectionParams | None = None
        self._client_id = ""
        self._session: aiohttp.ClientSession | None = None
        self._poll_task: asyncio.Task | None = None

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def params(self) -> ConnectionParams | None:
        return self._params

    @property
    def connected(self) -> bool:
        return bool(self._client_id)

    @property
    def polling(self) -> bool:
        return bool(self._poll_task and not self._poll_task.done())

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    def _open_session(self, params: ConnectionParams) -> aiohttp.ClientSession:
        connector = None
        if params.local_address:
            # Bind outbound sockets so each attempt can leave from a different NIC.
            connector = aiohttp.TCPConnector(local_addr=(params.local_address, 0))
        return aiohttp.ClientSession(
            base_url=params.base_url,
            connector=connector,
            timeout=build_http_timeout(self.http_timeout_s),
        )

    async def request_json(
        self, session: aiohttp.ClientSession, method: str, path: str, **kwargs
    ) -> object | None:
        try:
            async with session.request(method, path, **kwargs) as resp:
                # Undecodable bytes become U+FFFD.
                text = await resp.text(errors="replace")
                if resp.status >= 400:
                    raise ChatTransportError(
                        method=method,
                        url=path,
                        status=resp.status,
                        detail=text.strip() or resp.reason,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChatTransportError(
                method=method, url=path, detail=f"{type(e).__name__}: {e}"
            ) from e
        if not text:
            return None
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return text

    def _require_session(self) -> tuple[aiohttp.ClientSession, str]:
        if not self._session or not self._client_id:
            raise ChatError("Not connected to a chat session")
        return self._session, self._client_id

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, topics: Sequence[str] | None = None) -> ConnectionParams:
        """Start a new chat session and begin polling.

        Every attempt draws a fresh random ID, server and source address.
        Raises ConnectError if the handshake fails.
        """
        if topics is not None:
            self.topics = list(topics)

        # A leftover session (e.g. after a terminal event) is dropped locally.
        await self._release()
        self._drain_events()

        params = draw_connection_params(self.servers, self.addresses)
        query = {"rcs": "1", "firstevents": "1", "spid": "", "randid": params.randid}
        if self.topics:
            query["topics"] = json.dumps(self.topics)

        session = self._open_session(params)
        try:
            body = await self.request_json(session, "POST", "/start", params=query)
        except ChatTransportError as e:
            await session.close()
            raise ConnectError(f"Failed to start chat session on {params.server}: {e}") from e

        client_id = body.get("clientID") if isinstance(body, dict) else None
        if not isinstance(client_id, str) or not client_id:
            await session.close()
            raise ConnectError(f"Failed to retrieve `clientID` from {params.server}")

        self._session = session
        self._params = params
        self._client_id = client_id
        log.info("Chat session %s started on %s (randid=%s)", client_id, params.server, params.randid)

        # firstevents=1 piggybacks the first poll onto the handshake.
        first = body.get("events") if isinstance(body, dict) else None
        stop = False
        if first:
            try:
                stop = await self._publish(decode_records(first))
            except ChatProtocolError as e:
                log.warning("Ignoring malformed first events: %s", e)

        if not stop:
            self._poll_task = asyncio.create_task(self._poll_loop(session, client_id))
        return params

    async def disconnect(self) -> None:
        """Stop polling and end the session.

        Local state is disconnected even if the request fails; the transport
        error is re-raised afterwards so the caller can log it.
        """
        await self._stop_polling()
        session, client_id = self._session, self._client_id
        self._session = None
        self._client_id = ""
        self._params = None
        if session is None:
            return
        try:
            if client_id:
                await self.request_json(session, "POST", "/disconnect", data={"id": client_id})
                log.info("Chat session %s disconnected", client_id)
        finally:
            await session.close()

    async def send_message(self, text: str) -> None:
        session, client_id = self._require_session()
        await self.request_json(session, "POST", "/send", data={"msg": text, "id": client_id})

    async def set_typing(self, typing: bool) -> None:
        session, client_id = self._require_session()
        path = "/typing" if typing else "/stoppedtyping"
        await self.request_json(session, "POST", path, data={"id": client_id})

    async def submit_recaptcha(self, challenge: str, answer: str) -> None:
        session, client_id = self._require_session()
        await self.request_json(
            session,
            "POST",
            "/recaptcha",
            data={"challenge": challenge, "response": answer, "id": client_id},
        )

    async def close(self) -> None:
        """Drop the session without telling the server."""
        await self._release()

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    async def _publish(self, events: list[ChatEvent]) -> bool:
        """Queue events; True if one of them ends the session."""
        stop = False
        for event in events:
            await self.events.put(event)
            if is_terminal(event):
                stop = True
        return stop

    async def _poll_loop(self, session: aiohttp.ClientSession, client_id: str) -> None:
        failures = 0
        while True:
            await asyncio.sleep(self.poll_interval_s)
            try:
                body = await self.request_json(session, "POST", "/events", data={"id": client_id})
            except Exception as e:
                failures += 1
                if isinstance(e, ChatTransportError):
                    log.warning(
                        "Poll failed for %s (%d/%d): %s",
                        client_id, failures, self.max_poll_failures, e,
                    )
                else:
                    log.exception(
                        "Poll error for %s (%d/%d)", client_id, failures, self.max_poll_failures
                    )
                if failures >= self.max_poll_failures:
                    await self.events.put((models.CONNECTION_LOST, str(e)))
                    return
                continue

            failures = 0
            try:
                events = decode_records(body)
            except ChatProtocolError as e:
                log.warning("Ignoring malformed poll response for %s: %s", client_id, e)
                continue

            if await self._publish(events):
                log.info("Chat session %s ended by server; polling stopped", client_id)
                return

    async def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _release(self) -> None:
        await self._stop_polling()
        session = self._session
        self._session = None
        self._client_id = ""
        self._params = None
        if session is not None and not session.closed:
            await session.close()

    def _drain_events(self) -> None:
        while not self.events.empty():
            try:
                self.events.get_nowait()
            except asyncio.QueueEmpty:
                break
