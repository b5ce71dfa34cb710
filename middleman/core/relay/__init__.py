"""Two-sided relay runtime.

Links session A and session B into one conversation, mirrors it to the
moderator channel and drives recovery when either side drops.
"""

from middleman.core.relay.ports import HostPort, NoticePort, Persona
from middleman.core.relay.runtime import RelayOrchestrator
from middleman.core.relay.state import RelayState

__all__ = ["HostPort", "NoticePort", "Persona", "RelayOrchestrator", "RelayState"]
