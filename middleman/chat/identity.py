"""Per-attempt connection identity: random ID, server and source address."""

from __future__ import annotations

import secrets
from typing import Sequence

from middleman.chat.models import ConnectionParams

# No 0/1/I/O: the service's own ID alphabet.
RANDID_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
RANDID_LENGTH = 8

DEFAULT_SERVERS = tuple(f"front{i}.omegle.com" for i in range(1, 17))


def random_id() -> str:
    return "".join(secrets.choice(RANDID_ALPHABET) for _ in range(RANDID_LENGTH))


def is_valid_id(value: str) -> bool:
    return len(value) == RANDID_LENGTH and all(ch in RANDID_ALPHABET for ch in value)


def draw_connection_params(
    servers: Sequence[str] = DEFAULT_SERVERS,
    addresses: Sequence[str] = (),
) -> ConnectionParams:
    """Pick a fresh ID, a random server and (optionally) a random local address."""
    if not servers:
        raise ValueError("Server pool is empty")
    return ConnectionParams(
        randid=random_id(),
        server=secrets.choice(list(servers)),
        local_address=secrets.choice(list(addresses)) if addresses else None,
    )
