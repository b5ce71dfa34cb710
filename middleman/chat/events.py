"""Poll-response normalization helpers."""

from __future__ import annotations

import logging

from middleman.chat import models
from middleman.chat.errors import ChatProtocolError
from middleman.chat.models import ChatEvent

log = logging.getLogger("chat")


def _arg(record: list, index: int = 1) -> object | None:
    return record[index] if len(record) > index else None


def _text_arg(record: list) -> str:
    value = _arg(record)
    return value if isinstance(value, str) else ""


def _likes_arg(record: list) -> list[str]:
    value = _arg(record)
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def coerce_record(record: object) -> ChatEvent | None:
    """Map one `[tag, ...args]` record to a ChatEvent (None if unrecognized)."""
    if not isinstance(record, list) or not record or not isinstance(record[0], str):
        return None

    tag = record[0]
    if tag == "waiting":
        return (models.WAITING, None)
    if tag == "connected":
        return (models.CONNECTED, None)
    if tag == "gotMessage":
        return (models.MESSAGE, _text_arg(record))
    if tag == "typing":
        return (models.TYPING, None)
    if tag == "stoppedTyping":
        return (models.STOPPED_TYPING, None)
    if tag == "strangerDisconnected":
        return (models.STRANGER_DISCONNECTED, None)
    if tag == "commonLikes":
        return (models.COMMON_INTERESTS, _likes_arg(record))
    if tag == "recaptchaRequired":
        return (models.CAPTCHA_REQUIRED, _text_arg(record))
    if tag == "recaptchaRejected":
        return (models.CAPTCHA_REJECTED, _text_arg(record))
    if tag == "antinudeBanned":
        return (models.BANNED, None)
    if tag == "error":
        return (models.ERROR, _text_arg(record))
    return None


def decode_records(body: object) -> list[ChatEvent]:
    """Decode a poll body into events, in order.

    The service answers `null` when nothing happened. Unknown tags are
    skipped so new server events don't break old clients.
    """
    if body is None:
        return []
    if not isinstance(body, list):
        raise ChatProtocolError(
            "poll body is not a list", payload_preview=repr(body)[:200]
        )

    out: list[ChatEvent] = []
    for record in body:
        event = coerce_record(record)
        if event is None:
            log.debug("Ignoring unrecognized poll record: %r", record)
            continue
        out.append(event)
    return out


def is_terminal(event: ChatEvent) -> bool:
    return event[0] in models.TERMINAL_EVENTS
