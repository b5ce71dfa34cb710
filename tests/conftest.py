"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections import deque

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from middleman.chat.errors import ChatTransportError, ConnectError
from middleman.chat.models import ConnectionParams
from middleman.core.relay import Persona, RelayOrchestrator
from middleman.envelope import Envelope, Side


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Spin the loop until predicate() is true."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


# =============================================================================
# Fake chat service (real HTTP, local aiohttp server)
# =============================================================================


class FakeChatService:
    def __init__(self):
        self.host = ""
        self.client_id = "central2:abc123"
        self.start_requests: list[dict[str, str]] = []
        self.first_events: list | None = None
        self.polls: deque = deque()
        self.poll_count = 0
        self.sent: list[dict[str, str]] = []
        self.typing: list[str] = []
        self.disconnects: list[str] = []
        self.recaptchas: list[dict[str, str]] = []
        self.fail_start = False
        self.omit_client_id = False
        self.fail_events = False
        self.fail_disconnect = False
        self.raw_polls: deque = deque()

        self.app = web.Application()
        self.app.router.add_post("/start", self._start)
        self.app.router.add_post("/events", self._events)
        self.app.router.add_post("/send", self._send)
        self.app.router.add_post("/typing", self._typing)
        self.app.router.add_post("/stoppedtyping", self._stopped_typing)
        self.app.router.add_post("/disconnect", self._disconnect)
        self.app.router.add_post("/recaptcha", self._recaptcha)

    async def _start(self, request: web.Request) -> web.Response:
        self.start_requests.append(dict(request.query))
        if self.fail_start:
            return web.Response(status=503, text="overloaded")
        if self.omit_client_id:
            return web.json_response({})
        body: dict[str, object] = {"clientID": self.client_id}
        if self.first_events is not None:
            body["events"] = self.first_events
        return web.json_response(body)

    async def _events(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.poll_count += 1
        if self.fail_events:
            return web.Response(status=500, text="boom")
        assert form.get("id") == self.client_id
        if self.raw_polls:
            return web.Response(
                body=self.raw_polls.popleft(),
                headers={"Content-Type": "application/json; charset=utf-8"},
            )
        body = self.polls.popleft() if self.polls else None
        return web.Response(text=json.dumps(body), content_type="application/json")

    async def _send(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.sent.append({"msg": str(form.get("msg")), "id": str(form.get("id"))})
        return web.Response(text="win")

    async def _typing(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.typing.append(f"typing:{form.get('id')}")
        return web.Response(text="win")

    async def _stopped_typing(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.typing.append(f"stopped:{form.get('id')}")
        return web.Response(text="win")

    async def _disconnect(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.disconnects.append(str(form.get("id")))
        if self.fail_disconnect:
            return web.Response(status=500, text="nope")
        return web.Response(text="win")

    async def _recaptcha(self, request: web.Request) -> web.Response:
        form = await request.post()
        self.recaptchas.append({k: str(v) for k, v in form.items()})
        return web.Response(text="win")


@pytest.fixture
async def chat_service():
    service = FakeChatService()
    server = TestServer(service.app)
    await server.start_server()
    service.host = f"{server.host}:{server.port}"
    yield service
    await server.close()


# =============================================================================
# Fake chat client (for host tests)
# =============================================================================


class FakeChatClient:
    def __init__(self, *, fail_connect: int = 0, fail_disconnect: bool = False, connect_error=None):
        self.topics: list[str] = []
        self.events: asyncio.Queue = asyncio.Queue()
        self.fail_connect = fail_connect
        self.fail_disconnect = fail_disconnect
        self.fail_send = False
        self.connect_error = connect_error
        self.calls: list[tuple] = []
        self.connected = False

    async def connect(self, topics=None):
        if topics is not None:
            self.topics = list(topics)
        self.calls.append(("connect", list(self.topics)))
        if self.connect_error is not None:
            error, self.connect_error = self.connect_error, None
            raise error
        if self.fail_connect:
            self.fail_connect -= 1
            raise ConnectError("no clientID")
        self.connected = True
        return ConnectionParams(randid="ABCDEFGH", server="front1.example")

    async def disconnect(self):
        self.calls.append(("disconnect",))
        self.connected = False
        if self.fail_disconnect:
            raise ChatTransportError(method="POST", url="/disconnect", status=500)

    async def send_message(self, text):
        self.calls.append(("send", text))
        if self.fail_send:
            raise ChatTransportError(method="POST", url="/send", detail="reset")

    async def set_typing(self, typing):
        self.calls.append(("typing", typing))

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


# =============================================================================
# Relay fakes
# =============================================================================


class Timeline(list):
    """Shared, ordered record of notices and host sends."""


class FakeHost:
    def __init__(self, side: Side, timeline: Timeline, relay_ref: dict):
        self.side = side
        self.timeline = timeline
        self.relay_ref = relay_ref
        self.received: list[Envelope] = []
        # `active` as seen at the moment each envelope arrived.
        self.active_at_receive: list[bool] = []
        self.fail = False

    async def send(self, envelope: Envelope) -> None:
        if self.fail:
            raise RuntimeError("host channel closed")
        self.received.append(envelope)
        relay = self.relay_ref.get("relay")
        self.active_at_receive.append(bool(relay and relay.state.active))
        self.timeline.append(("send", self.side.value, envelope.kind.name))

    def kinds(self) -> list[str]:
        return [e.kind.name for e in self.received]


class RecordingNotices:
    def __init__(self, timeline: Timeline):
        self.timeline = timeline
        self.posts: list[tuple[str, Persona]] = []
        self.result = True
        self.raise_on: str | None = None

    async def post(self, text: str, persona: Persona = Persona.RELAY) -> bool:
        if self.raise_on and self.raise_on in text:
            raise RuntimeError("xmpp stream closed")
        self.posts.append((text, persona))
        self.timeline.append(("post", persona.value, text))
        return self.result

    def texts(self) -> list[str]:
        return [t for t, _ in self.posts]


class RelayRig:
    def __init__(self, topics=()):
        self.timeline = Timeline()
        ref: dict = {}
        self.host_a = FakeHost(Side.A, self.timeline, ref)
        self.host_b = FakeHost(Side.B, self.timeline, ref)
        self.notices = RecordingNotices(self.timeline)
        self.relay = RelayOrchestrator(
            hosts={Side.A: self.host_a, Side.B: self.host_b},
            notices=self.notices,
            topics=topics,
        )
        ref["relay"] = self.relay

    def host(self, side: Side) -> FakeHost:
        return self.host_a if side is Side.A else self.host_b


@pytest.fixture
def rig() -> RelayRig:
    return RelayRig()
