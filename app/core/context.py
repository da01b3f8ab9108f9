"""
Request Context
===============

Who is acting on a request: a browser session, an agent holding an
API token, or the system itself.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class ActorContext:
    """Attribution carried into activities and comments."""

    source: str = "web"  # web | api | system
    actor_name: Optional[str] = None
    actor_emoji: Optional[str] = None
    note: Optional[str] = None

    @property
    def actor_type(self) -> str:
        if self.source == "api":
            return "agent"
        if self.source == "system":
            return "system"
        return "user"

    @property
    def is_agent(self) -> bool:
        return self.source == "api"


SYSTEM_CONTEXT = ActorContext(source="system")
