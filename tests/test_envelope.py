"""Tests for envelope validation and wire form."""

import pytest

from middleman.envelope import Envelope, EnvelopeError, EventKind, Side


class TestEnvelopeValidation:
    def test_message_requires_text(self):
        with pytest.raises(EnvelopeError):
            Envelope(EventKind.MESSAGE)
        with pytest.raises(EnvelopeError):
            Envelope(EventKind.MESSAGE, ["hi"])

    def test_empty_message_is_allowed(self):
        assert Envelope(EventKind.MESSAGE, "").text == ""

    def test_list_payload_normalized_to_tuple(self):
        env = Envelope(EventKind.SET_TOPICS, ["foo", "bar"])
        assert env.payload == ("foo", "bar")
        assert env.items == ("foo", "bar")

    def test_list_payload_defaults_to_empty(self):
        assert Envelope(EventKind.COMMON_INTERESTS).items == ()

    @pytest.mark.parametrize("payload", ["foo", b"foo", [1, 2], {"a": 1}.items()])
    def test_list_payload_rejects_non_string_lists(self, payload):
        with pytest.raises(EnvelopeError):
            Envelope(EventKind.SET_TOPICS, payload)

    @pytest.mark.parametrize(
        "kind",
        [EventKind.CONNECTED, EventKind.KILL, EventKind.RESTART, EventKind.IDLE, EventKind.TYPING],
    )
    def test_control_kinds_carry_no_payload(self, kind):
        assert Envelope(kind).payload is None
        with pytest.raises(EnvelopeError):
            Envelope(kind, "x")

    def test_kind_must_be_event_kind(self):
        with pytest.raises(EnvelopeError):
            Envelope("MESSAGE", "hi")  # type: ignore[arg-type]


class TestWireForm:
    def test_to_wire_uses_plain_types(self):
        wire = Envelope(EventKind.SET_TOPICS, ("a", "b")).to_wire()
        assert wire == {"kind": "SET_TOPICS", "payload": ["a", "b"]}

    def test_from_wire_restores_envelope(self):
        env = Envelope(EventKind.MESSAGE, "hello")
        assert Envelope.from_wire(env.to_wire()) == env

    def test_wire_is_a_copy(self):
        topics = ["foo"]
        env = Envelope.from_wire({"kind": "SET_TOPICS", "payload": topics})
        topics.append("mutated")
        assert env.items == ("foo",)

    def test_from_wire_passes_envelopes_through(self):
        env = Envelope(EventKind.KILL)
        assert Envelope.from_wire(env) is env

    @pytest.mark.parametrize(
        "wire",
        [
            None,
            "MESSAGE",
            {},
            {"kind": ""},
            {"kind": 3},
            {"kind": "SHOUT"},
            {"kind": "MESSAGE"},
            {"kind": "KILL", "payload": "now"},
        ],
    )
    def test_from_wire_rejects_malformed(self, wire):
        with pytest.raises(EnvelopeError):
            Envelope.from_wire(wire)

    def test_str(self):
        assert str(Envelope(EventKind.KILL)) == "KILL"
        assert str(Envelope(EventKind.MESSAGE, "hi")) == "MESSAGE('hi')"


def test_side_other():
    assert Side.A.other is Side.B
    assert Side.B.other is Side.A
