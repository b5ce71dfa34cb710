"""Tests for ChatClient against a local fake chat service."""

import asyncio
import json

import pytest

from middleman.chat import ChatClient, ChatError, ChatTransportError, ConnectError
from middleman.chat import models
from middleman.chat.identity import is_valid_id

from conftest import wait_until


def make_client(service, **kwargs) -> ChatClient:
    kwargs.setdefault("poll_interval_s", 0.01)
    kwargs.setdefault("http_timeout_s", 5.0)
    return ChatClient(servers=(service.host,), **kwargs)


async def next_event(client: ChatClient):
    return await asyncio.wait_for(client.events.get(), timeout=2.0)


class TestConnect:
    async def test_handshake_parameters(self, chat_service):
        client = make_client(chat_service, topics=["cats", "jazz"])
        try:
            params = await client.connect()
        finally:
            await client.close()

        assert params.server == chat_service.host
        assert is_valid_id(params.randid)
        query = chat_service.start_requests[0]
        assert query["rcs"] == "1"
        assert query["firstevents"] == "1"
        assert query["randid"] == params.randid
        assert json.loads(query["topics"]) == ["cats", "jazz"]

    async def test_no_topics_parameter_without_topics(self, chat_service):
        client = make_client(chat_service)
        try:
            await client.connect()
        finally:
            await client.close()
        assert "topics" not in chat_service.start_requests[0]

    async def test_connect_overrides_topics(self, chat_service):
        client = make_client(chat_service, topics=["old"])
        try:
            await client.connect(["new"])
        finally:
            await client.close()
        assert client.topics == ["new"]
        assert json.loads(chat_service.start_requests[0]["topics"]) == ["new"]

    async def test_connected_state(self, chat_service):
        client = make_client(chat_service)
        try:
            await client.connect()
            assert client.connected
            assert client.client_id == chat_service.client_id
            assert client.params.server == chat_service.host
            assert client.polling
        finally:
            await client.close()
        assert not client.connected
        assert not client.polling

    async def test_each_attempt_uses_fresh_identity(self, chat_service):
        client = make_client(chat_service)
        try:
            first = await client.connect()
            second = await client.connect()
        finally:
            await client.close()
        assert len(chat_service.start_requests) == 2
        assert first.randid != second.randid

    async def test_missing_client_id(self, chat_service):
        chat_service.omit_client_id = True
        client = make_client(chat_service)
        with pytest.raises(ConnectError, match="clientID"):
            await client.connect()
        assert not client.connected
        assert not client.polling

    async def test_http_error(self, chat_service):
        chat_service.fail_start = True
        client = make_client(chat_service)
        with pytest.raises(ConnectError) as exc:
            await client.connect()
        assert isinstance(exc.value.__cause__, ChatTransportError)
        assert exc.value.__cause__.status == 503

    async def test_unreachable_server(self):
        client = ChatClient(servers=("127.0.0.1:1",), http_timeout_s=2.0)
        with pytest.raises(ConnectError):
            await client.connect()

    async def test_first_events_are_published(self, chat_service):
        chat_service.first_events = [["waiting"], ["connected"]]
        client = make_client(chat_service)
        try:
            await client.connect()
            assert await next_event(client) == (models.WAITING, None)
            assert await next_event(client) == (models.CONNECTED, None)
        finally:
            await client.close()


class TestPolling:
    async def test_poll_events_delivered_in_order(self, chat_service):
        chat_service.polls.extend(
            [
                None,
                [["connected"], ["typing"]],
                [["gotMessage", "hi"], ["commonLikes", ["cats"]]],
            ]
        )
        client = make_client(chat_service)
        try:
            await client.connect()
            got = [await next_event(client) for _ in range(4)]
        finally:
            await client.close()
        assert got == [
            (models.CONNECTED, None),
            (models.TYPING, None),
            (models.MESSAGE, "hi"),
            (models.COMMON_INTERESTS, ["cats"]),
        ]

    async def test_terminal_event_stops_polling(self, chat_service):
        chat_service.polls.append([["strangerDisconnected"]])
        client = make_client(chat_service)
        try:
            await client.connect()
            assert await next_event(client) == (models.STRANGER_DISCONNECTED, None)
            await wait_until(lambda: not client.polling)
            polls = chat_service.poll_count
            await asyncio.sleep(0.1)
            assert chat_service.poll_count == polls
        finally:
            await client.close()

    async def test_dead_poll_reports_connection_lost(self, chat_service):
        chat_service.fail_events = True
        client = make_client(chat_service, max_poll_failures=3)
        try:
            await client.connect()
            name, detail = await next_event(client)
            assert name == models.CONNECTION_LOST
            assert "500" in detail
            await wait_until(lambda: not client.polling)
            assert chat_service.poll_count == 3
        finally:
            await client.close()

    async def test_undecodable_poll_body_is_delivered(self, chat_service):
        chat_service.raw_polls.append(b'[["gotMessage","\xff\xfe"]]')
        chat_service.polls.append([["gotMessage", "after"]])
        client = make_client(chat_service)
        try:
            await client.connect()
            assert await next_event(client) == (models.MESSAGE, "\ufffd\ufffd")
            assert await next_event(client) == (models.MESSAGE, "after")
            assert client.polling
        finally:
            await client.close()

    async def test_unexpected_poll_errors_count_as_failures(self, chat_service, monkeypatch):
        client = make_client(chat_service, max_poll_failures=2)

        async def broken(*_args, **_kwargs):
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

        try:
            await client.connect()
            monkeypatch.setattr(client, "request_json", broken)
            name, detail = await next_event(client)
            assert name == models.CONNECTION_LOST
            assert "utf-8" in detail
            await wait_until(lambda: not client.polling)
        finally:
            await client.close()

    async def test_reconnect_drops_stale_events(self, chat_service):
        chat_service.first_events = [["gotMessage", "stale"]]
        client = make_client(chat_service)
        try:
            await client.connect()
            chat_service.first_events = [["connected"]]
            await client.connect()
            assert await next_event(client) == (models.CONNECTED, None)
        finally:
            await client.close()


class TestOutbound:
    async def test_send_message(self, chat_service):
        client = make_client(chat_service)
        try:
            await client.connect()
            await client.send_message("hello stranger")
        finally:
            await client.close()
        assert chat_service.sent == [{"msg": "hello stranger", "id": chat_service.client_id}]

    async def test_typing_endpoints(self, chat_service):
        client = make_client(chat_service)
        try:
            await client.connect()
            await client.set_typing(True)
            await client.set_typing(False)
        finally:
            await client.close()
        cid = chat_service.client_id
        assert chat_service.typing == [f"typing:{cid}", f"stopped:{cid}"]

    async def test_submit_recaptcha(self, chat_service):
        client = make_client(chat_service)
        try:
            await client.connect()
            await client.submit_recaptcha("chal", "answer")
        finally:
            await client.close()
        assert chat_service.recaptchas == [
            {"challenge": "chal", "response": "answer", "id": chat_service.client_id}
        ]

    async def test_send_requires_session(self):
        client = ChatClient()
        with pytest.raises(ChatError):
            await client.send_message("hi")
        with pytest.raises(ChatError):
            await client.set_typing(True)


class TestDisconnect:
    async def test_disconnect_notifies_server(self, chat_service):
        client = make_client(chat_service)
        await client.connect()
        await client.disconnect()
        assert chat_service.disconnects == [chat_service.client_id]
        assert not client.connected
        assert not client.polling

    async def test_disconnect_twice_is_harmless(self, chat_service):
        client = make_client(chat_service)
        await client.connect()
        await client.disconnect()
        await client.disconnect()
        assert len(chat_service.disconnects) == 1

    async def test_disconnect_without_session(self):
        await ChatClient().disconnect()

    async def test_failed_disconnect_still_clears_state(self, chat_service):
        chat_service.fail_disconnect = True
        client = make_client(chat_service)
        await client.connect()
        with pytest.raises(ChatTransportError):
            await client.disconnect()
        assert not client.connected
        assert not client.polling
