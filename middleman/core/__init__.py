"""Core relay logic, independent of chat and XMPP transports."""
