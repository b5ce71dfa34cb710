"""Shared XMPP utilities for the moderator channel."""

from __future__ import annotations

import asyncio
import json
import logging

from slixmpp.clientxmpp import ClientXMPP
from slixmpp.xmlstream import ET


MIDDLEMAN_META_NS = "urn:middleman:message-meta"


def build_message_meta(
    meta_type: str,
    *,
    meta_attrs: dict[str, str] | None = None,
    meta_payload: object | None = None,
) -> ET.Element:
    """Build a message meta extension element.

    This keeps structured data (persona name/icon) out of the message body,
    while remaining compatible with clients that ignore unknown extensions.
    """

    meta = ET.Element(f"{{{MIDDLEMAN_META_NS}}}meta")
    meta.set("type", meta_type)

    if meta_attrs:
        for k, v in meta_attrs.items():
            if not k or v is None or k == "type":
                continue
            meta.set(str(k), str(v))

    if meta_payload is not None:
        payload = ET.SubElement(meta, f"{{{MIDDLEMAN_META_NS}}}payload")
        payload.set("format", "json")
        payload.text = json.dumps(
            meta_payload, ensure_ascii=True, separators=(",", ":")
        )

    return meta


# =============================================================================
# Base XMPP Bot
# =============================================================================


class BaseXMPPBot(ClientXMPP):
    """
    Base class for all XMPP bots with common setup.

    Provides:
    - Standard plugin registration (xep_0199, xep_0085, xep_0045)
    - Unencrypted plain auth setup
    - Connected-state tracking that callers can await
    - send_reply helper and a guard() error boundary
    """

    def __init__(self, jid: str, password: str, recipient: str | None = None):
        super().__init__(jid, password)
        self.recipient = recipient
        self._connected_event = asyncio.Event()

        self.register_plugin("xep_0199")  # Ping
        self.register_plugin("xep_0085")  # Chat State Notifications
        self.register_plugin("xep_0045")  # Multi-User Chat

    def connect_to_server(self, server: str, port: int = 5222):
        """Connect with standard settings (unencrypted, no TLS)."""
        self["feature_mechanisms"].unencrypted_plain = True  # type: ignore[attr-defined]
        self.enable_starttls = False
        self.enable_direct_tls = False
        self.enable_plaintext = True
        # slixmpp.ClientXMPP.connect expects a single address tuple.
        self.connect((server, port))  # type: ignore[arg-type]

    def set_connected(self, connected: bool) -> None:
        if connected:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def send_reply(
        self,
        text: str,
        recipient: str | None = None,
        *,
        mtype: str = "chat",
        meta_type: str | None = None,
        meta_attrs: dict[str, str] | None = None,
        meta_payload: object | None = None,
    ) -> bool:
        """Send a message to recipient. Returns False if the stream refused it."""
        to = recipient or self.recipient
        if not to:
            raise ValueError("No recipient specified")
        msg = self.make_message(mto=to, mbody=text, mtype=mtype)
        if mtype == "chat":
            msg["chat_state"] = "active"

        if meta_type:
            meta = build_message_meta(
                meta_type,
                meta_attrs=meta_attrs,
                meta_payload=meta_payload,
            )
            msg.xml.append(meta)

        try:
            msg.send()
            return True
        except Exception:
            log = getattr(self, "log", logging.getLogger("xmpp"))
            log.warning("XMPP send failed", exc_info=True)
            return False

    async def guard(self, coro, *, context: str | None = None):
        """Run a coroutine with a single error boundary.

        - Lets internal code raise normally.
        - Catches at the boundary and logs.
        """

        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            log = getattr(self, "log", logging.getLogger("xmpp"))
            if context:
                log.exception("Unhandled error (%s)", context)
            else:
                log.exception("Unhandled error")
            return None
