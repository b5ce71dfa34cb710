"""Joint session state, owned by the relay's control loop."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RelayState:
    # True once either side reported a connected stranger.
    active: bool = False
    # At most one "you both like" notice per joint session.
    notified_common_interests: bool = False
    # Applied to the next connection attempt on both sides.
    topics: list[str] = field(default_factory=list)

    def reset_session(self) -> None:
        """Start of a recovery cycle. Topics survive."""
        self.active = False
        self.notified_common_interests = False
