"""Ports for RelayOrchestrator.

These interfaces keep the relay independent of the session hosts' transport
and of the moderator chat backend (XMPP).
"""

from __future__ import annotations

from enum import Enum
from typing import Protocol

from middleman.envelope import Envelope, Side


class Persona(Enum):
    RELAY = "relay"
    A = "A"
    B = "B"

    @classmethod
    def for_side(cls, side: Side) -> "Persona":
        return cls.A if side is Side.A else cls.B


class HostPort(Protocol):
    async def send(self, envelope: Envelope) -> None: ...


class NoticePort(Protocol):
    async def post(self, text: str, persona: Persona = Persona.RELAY) -> bool:
        """Post a notice; returns once the send has completed (True) or failed (False)."""
        ...
