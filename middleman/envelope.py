"""Event envelope exchanged between the relay and its session hosts.

Envelopes are value objects. They cross the host boundary in wire form
(a plain dict), so every crossing copies the payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class EventKind(Enum):
    CONNECTED = "CONNECTED"
    TYPING = "TYPING"
    STOPPED_TYPING = "STOPPED_TYPING"
    DISCONNECTED = "DISCONNECTED"
    MESSAGE = "MESSAGE"
    IDLE = "IDLE"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    RESTART = "RESTART"
    SET_TOPICS = "SET_TOPICS"
    COMMON_INTERESTS = "COMMON_INTERESTS"
    KILL = "KILL"


class Side(Enum):
    A = "A"
    B = "B"

    @property
    def other(self) -> "Side":
        return Side.B if self is Side.A else Side.A


_TEXT_KINDS = {EventKind.MESSAGE}
_LIST_KINDS = {EventKind.SET_TOPICS, EventKind.COMMON_INTERESTS}

Payload = str | tuple[str, ...] | None


class EnvelopeError(ValueError):
    """Envelope with a missing/unknown kind or a payload of the wrong shape."""


def _coerce_payload(kind: EventKind, payload: object) -> Payload:
    if kind in _TEXT_KINDS:
        if not isinstance(payload, str):
            raise EnvelopeError(f"{kind.name} payload must be a string")
        return payload
    if kind in _LIST_KINDS:
        if payload is None:
            return ()
        if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
            raise EnvelopeError(f"{kind.name} payload must be a list of strings")
        items = tuple(payload)
        if not all(isinstance(item, str) for item in items):
            raise EnvelopeError(f"{kind.name} payload must be a list of strings")
        return items
    if payload is not None:
        raise EnvelopeError(f"{kind.name} carries no payload")
    return None


@dataclass(frozen=True)
class Envelope:
    kind: EventKind
    payload: Payload = None

    def __post_init__(self) -> None:
        if not isinstance(self.kind, EventKind):
            raise EnvelopeError(f"Unknown envelope kind: {self.kind!r}")
        object.__setattr__(self, "payload", _coerce_payload(self.kind, self.payload))

    @property
    def text(self) -> str:
        return self.payload if isinstance(self.payload, str) else ""

    @property
    def items(self) -> tuple[str, ...]:
        return self.payload if isinstance(self.payload, tuple) else ()

    def to_wire(self) -> dict:
        payload = list(self.payload) if isinstance(self.payload, tuple) else self.payload
        return {"kind": self.kind.value, "payload": payload}

    @classmethod
    def from_wire(cls, obj: object) -> "Envelope":
        if isinstance(obj, Envelope):
            return obj
        if not isinstance(obj, dict):
            raise EnvelopeError(f"Envelope must be a mapping, got {type(obj).__name__}")
        raw_kind = obj.get("kind")
        if not isinstance(raw_kind, str) or not raw_kind:
            raise EnvelopeError("Envelope has no kind")
        try:
            kind = EventKind(raw_kind)
        except ValueError:
            raise EnvelopeError(f"Unknown envelope kind: {raw_kind!r}") from None
        return cls(kind, obj.get("payload"))

    def __str__(self) -> str:
        if self.payload is None:
            return self.kind.name
        return f"{self.kind.name}({self.payload!r})"
