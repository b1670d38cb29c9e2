"""
BaseHandler. Every handler implements this interface.

A handler reads the session, never writes it. It returns the reply text
plus a partial update containing only the state fields it means to change;
the state machine merges that update and appends the turn to history.
"""

from dataclasses import dataclass, field
from typing import Optional

from .state import SessionState


@dataclass
class HandlerResult:
    """What a handler returns after processing a turn."""

    response: str = ""                                  # Text reply to user
    update: dict = field(default_factory=dict)          # Partial state update (explicit keys only)
    metadata: dict = field(default_factory=dict)        # Observability data


class BaseHandler:
    """
    Base class for all handlers. Subclass and implement handle().

    Attributes:
        name:         Internal ID ("field_collector"); one of the router's closed set
        display_name: Human-readable ("Field Collector")
        description:  What it does (used in the routing prompt and API)
    """

    name: str = ""
    display_name: str = ""
    description: str = ""

    async def handle(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]] = None,
    ) -> HandlerResult:
        raise NotImplementedError(f"Handler '{self.name}' must implement handle()")

    def describe(self) -> dict:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
        }
