"""
Handler registry. Register handlers, look them up, list them.
"""

import logging
from typing import Optional

from .base_handler import BaseHandler

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Central registry for all handlers."""

    def __init__(self):
        self._handlers: dict[str, BaseHandler] = {}

    def register(self, handler: BaseHandler) -> None:
        """Register a handler by its name."""
        if handler.name in self._handlers:
            logger.warning("Handler '%s' already registered, overwriting", handler.name)
        self._handlers[handler.name] = handler
        logger.info("Registered handler: %s (%s)", handler.name, handler.display_name)

    def get(self, name: str) -> Optional[BaseHandler]:
        return self._handlers.get(name)

    def list_handlers(self) -> list[BaseHandler]:
        return list(self._handlers.values())

    def get_handler_names(self) -> list[str]:
        return list(self._handlers.keys())


# ── Global registry ──────────────────────────────────────────────────

_registry: Optional[HandlerRegistry] = None


def get_registry() -> HandlerRegistry:
    """Get or create the global handler registry."""
    global _registry
    if _registry is None:
        _registry = HandlerRegistry()
        _register_handlers(_registry)
    return _registry


def _register_handlers(registry: HandlerRegistry) -> None:
    from ..agents.general_assistant.handler import GeneralAssistantHandler
    from ..agents.status_tracker.handler import StatusTrackerHandler
    from ..agents.field_collector.handler import FieldCollectorHandler
    from ..agents.submission_finalizer.handler import SubmissionFinalizerHandler

    registry.register(GeneralAssistantHandler())
    registry.register(StatusTrackerHandler())
    registry.register(FieldCollectorHandler())
    registry.register(SubmissionFinalizerHandler())

    logger.info(
        "Handler registry ready: %d handlers [%s]",
        len(registry.get_handler_names()),
        ", ".join(registry.get_handler_names()),
    )
