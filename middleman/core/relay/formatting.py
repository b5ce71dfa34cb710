"""Notice text for the moderator channel.

Uses the emphasis markers both Slack and XEP-0393 message styling render:
*bold*, _italic_ and ``` for preformatted blocks.
"""

from __future__ import annotations

from typing import Sequence


def _join(items: Sequence[str], marker: str) -> str:
    return ", ".join(f"{marker}{item}{marker}" for item in items)


def with_topics(head: str, topics: Sequence[str]) -> str:
    if not topics:
        return head
    return f"{head} ({_join(topics, '*')})"


def connected_notice(topics: Sequence[str]) -> str:
    return with_topics("*_Connected to new chat partners..._*", topics)


def searching_notice(topics: Sequence[str]) -> str:
    return with_topics("*_Looking for new chat partners..._*", topics)


def disconnected_notice(label: str) -> str:
    return f"*{label}* disconnected."


def connection_error_notice() -> str:
    return "*_Error connecting to chat service. Retrying..._*"


def retry_notice() -> str:
    return "*_Disconnected from chat partners. Retrying..._*"


def common_interests_notice(likes: Sequence[str]) -> str:
    return f"You both like: {_join(likes, '_')}"


def topics_notice(topics: Sequence[str]) -> str:
    if not topics:
        return "Topics cleared for next chat."
    return f"Topics set for next chat: {_join(topics, '_')}."


def relayed_message(text: str) -> str:
    return f"```{text}```"


def status_notice(*, active: bool, topics: Sequence[str]) -> str:
    state = "connected" if active else "searching"
    topic_str = _join(topics, "_") if topics else "none"
    return f"Session: *{state}*. Topics: {topic_str}."
