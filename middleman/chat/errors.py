"""Chat-service exceptions.

These exception types let the host layer tell a failed handshake apart from
a failed individual action without scraping strings.
"""

from __future__ import annotations


class ChatError(RuntimeError):
    """Base class for chat client errors."""


class ConnectError(ChatError):
    """Session handshake failed or returned no client ID."""


class ChatTransportError(ChatError):
    """HTTP or network failure talking to the chat service."""

    def __init__(
        self,
        *,
        method: str,
        url: str,
        status: int | None = None,
        detail: str | None = None,
    ):
        self.method = method
        self.url = url
        self.status = status
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        head = f"Chat {self.method} {self.url}"
        if self.status is not None:
            head = f"Chat HTTP {self.status} {self.method} {self.url}"
        detail = (self.detail or "").strip()
        if detail:
            return f"{head}: {detail}"
        return head


class ChatProtocolError(ChatError):
    """Malformed data from the chat service."""

    def __init__(self, message: str, *, payload_preview: str | None = None):
        self.message = message
        self.payload_preview = payload_preview
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.payload_preview:
            return f"Chat protocol error: {self.message} (payload={self.payload_preview!r})"
        return f"Chat protocol error: {self.message}"
