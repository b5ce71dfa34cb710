#!/usr/bin/env python3
"""
middleman - anonymous chat relay

Finds two strangers on the chat service and relays their conversation to
each other, so each believes the other is their partner. Everything said is
mirrored into an XMPP moderator channel:

- middleman@... posts session notices and takes !commands
- person-a@... / person-b@... repeat what each stranger says

Commands: !topic [words...], !retry, !saya <text>, !sayb <text>, !status, !help
"""

from __future__ import annotations

import asyncio
import logging

from middleman.config import get_chat_config, get_xmpp_config, load_env, setup_logging
from middleman.manager import RelayManager

log = logging.getLogger("bridge")


async def main():
    load_env()
    setup_logging()

    manager = RelayManager(chat=get_chat_config(), xmpp=get_xmpp_config())
    await manager.start()
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        await manager.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Shutting down...")


if __name__ == "__main__":
    run()
