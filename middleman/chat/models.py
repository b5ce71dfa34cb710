"""Shared chat-client data structures."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConnectionParams:
    """Values drawn fresh for one connection attempt."""

    randid: str
    server: str
    local_address: str | None = None

    @property
    def base_url(self) -> str:
        return f"http://{self.server}"


# (name, argument) as decoded from one poll record.
ChatEvent = tuple[str, object]

WAITING = "waiting"
CONNECTED = "connected"
MESSAGE = "message"
TYPING = "typing"
STOPPED_TYPING = "stopped_typing"
STRANGER_DISCONNECTED = "stranger_disconnected"
COMMON_INTERESTS = "common_interests"
CAPTCHA_REQUIRED = "captcha_required"
CAPTCHA_REJECTED = "captcha_rejected"
BANNED = "banned"
ERROR = "error"
# Emitted by the client itself when polling keeps failing.
CONNECTION_LOST = "connection_lost"

TERMINAL_EVENTS = frozenset({STRANGER_DISCONNECTED, ERROR, BANNED, CONNECTION_LOST})
