"""Environment-driven configuration (call load_env() before reading)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from middleman.chat.client import HTTP_TIMEOUT_S, MAX_POLL_FAILURES, POLL_INTERVAL_S
from middleman.chat.identity import DEFAULT_SERVERS
from middleman.host import RESTART_DELAY_S

_log = logging.getLogger("config")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"


# =============================================================================
# Environment Loading
# =============================================================================


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


def _split_list(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        _log.warning("Invalid %s=%r; using %s", name, raw, default)
        return default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        _log.warning("Invalid %s=%r; using %s", name, raw, default)
        return default


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True)
class PersonaConfig:
    """One moderator-channel identity: its own XMPP account, label and icon."""

    jid: str
    password: str
    label: str
    icon_url: str = ""


@dataclass(frozen=True)
class ChatConfig:
    servers: tuple[str, ...] = DEFAULT_SERVERS
    addresses: tuple[str, ...] = ()
    topics: tuple[str, ...] = ()
    poll_interval_s: float = POLL_INTERVAL_S
    restart_delay_s: float = RESTART_DELAY_S
    max_poll_failures: int = MAX_POLL_FAILURES
    http_timeout_s: float = HTTP_TIMEOUT_S


def _persona(prefix: str, *, domain: str, user: str, label: str) -> PersonaConfig:
    return PersonaConfig(
        jid=os.getenv(f"{prefix}_JID") or f"{user}@{domain}",
        password=os.getenv(f"{prefix}_PASSWORD") or os.getenv("XMPP_PASSWORD", ""),
        label=os.getenv(f"{prefix}_NAME") or label,
        icon_url=os.getenv(f"{prefix}_ICON", ""),
    )


def get_xmpp_config() -> dict:
    """Get XMPP moderator-channel configuration from environment."""
    server = os.getenv("XMPP_SERVER", "your.xmpp.server")
    domain = os.getenv("XMPP_DOMAIN", server)
    room_jid = os.getenv("MIDDLEMAN_ROOM_JID", "").strip().split("/", 1)[0]

    return {
        "server": server,
        "port": _int_env("XMPP_PORT", 5222),
        "domain": domain,
        "recipient": os.getenv("XMPP_RECIPIENT", f"user@{server}"),
        "room_jid": room_jid or None,
        "notice_timeout_s": _float_env("MIDDLEMAN_NOTICE_TIMEOUT_S", 15.0),
        "personas": {
            "relay": _persona(
                "MIDDLEMAN_RELAY", domain=domain, user="middleman", label="ManInTheMiddle"
            ),
            "A": _persona(
                "MIDDLEMAN_PERSONA_A", domain=domain, user="person-a", label="Person A"
            ),
            "B": _persona(
                "MIDDLEMAN_PERSONA_B", domain=domain, user="person-b", label="Person B"
            ),
        },
    }


def get_chat_config() -> ChatConfig:
    """Get chat-service configuration from environment."""
    servers = tuple(_split_list(os.getenv("MIDDLEMAN_CHAT_SERVERS"))) or DEFAULT_SERVERS
    return ChatConfig(
        servers=servers,
        addresses=tuple(_split_list(os.getenv("MIDDLEMAN_LOCAL_ADDRESSES"))),
        topics=tuple(_split_list(os.getenv("MIDDLEMAN_TOPICS"))),
        poll_interval_s=_float_env("MIDDLEMAN_POLL_INTERVAL_S", POLL_INTERVAL_S),
        restart_delay_s=_float_env("MIDDLEMAN_RESTART_DELAY_S", RESTART_DELAY_S),
        max_poll_failures=_int_env("MIDDLEMAN_MAX_POLL_FAILURES", MAX_POLL_FAILURES),
        http_timeout_s=_float_env("MIDDLEMAN_HTTP_TIMEOUT_S", HTTP_TIMEOUT_S),
    )


def setup_logging() -> None:
    """Console logging, plus a file mirror when MIDDLEMAN_LOG_FILE is set."""
    level_name = os.getenv("MIDDLEMAN_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_file = os.getenv("MIDDLEMAN_LOG_FILE", "").strip()
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
    )
    # slixmpp is chatty at INFO.
    logging.getLogger("slixmpp").setLevel(max(level, logging.WARNING))
