"""Chat-service protocol client package."""

from middleman.chat.client import ChatClient
from middleman.chat.errors import ChatError, ChatProtocolError, ChatTransportError, ConnectError
from middleman.chat.models import ChatEvent, ConnectionParams

__all__ = [
    "ChatClient",
    "ChatError",
    "ChatEvent",
    "ChatProtocolError",
    "ChatTransportError",
    "ConnectError",
    "ConnectionParams",
]
