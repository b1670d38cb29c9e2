"""
Session state machine. The main per-turn loop.

Lock session → load state → route → run handler → merge update → append
(user, assistant) turn pair → check invariants → persist.

The machine never raises. A failing handler, an invalid update or a turn
over TURN_TIMEOUT_SECONDS produces an apology turn and leaves the rest of
the state untouched. A turn arriving while another holds the session lock
gets BUSY_MESSAGE and touches nothing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from ..core.config import get_settings
from ..core.errors import SessionBusy
from ..core.guardrails import check_input, check_output
from ..forms.catalog import FormCatalog, get_catalog
from ..services import realtime
from ..services.session_store import SessionStore, get_session_store
from .base_handler import HandlerResult
from .registry import HandlerRegistry, get_registry
from .router import GENERAL_ASSISTANT, RouteDecision, route
from .state import SessionState, Turn, check_invariants, merge_state, new_session

logger = logging.getLogger(__name__)

APOLOGY = "Something went wrong on my end. Please try again."
BUSY_MESSAGE = "I'm still working on your previous message. Please wait a moment and try again."


@dataclass
class TurnResult:
    response: str
    session: Optional[SessionState]  # None when the session was never loaded
    handler: str
    metadata: dict = field(default_factory=dict)


class SessionStateMachine:
    def __init__(
        self,
        store: Optional[SessionStore] = None,
        registry: Optional[HandlerRegistry] = None,
        catalog: Optional[FormCatalog] = None,
    ):
        self._store = store
        self._registry = registry
        self._catalog = catalog

    @property
    def store(self) -> SessionStore:
        return self._store or get_session_store()

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry or get_registry()

    @property
    def catalog(self) -> FormCatalog:
        return self._catalog or get_catalog()

    # ── Session access ────────────────────────────────────────────

    async def load(self, session_id: str) -> SessionState:
        """Stored session, or a fresh one if absent, expired or unreadable."""
        try:
            record = await self.store.get(session_id)
        except Exception as e:
            logger.error("Session load failed (session=%s): %s", session_id, e)
            return new_session(session_id)
        if record is None:
            return new_session(session_id)
        try:
            return SessionState.from_record(record)
        except Exception as e:
            logger.error("Stored session is corrupt, starting fresh (session=%s): %s", session_id, e)
            return new_session(session_id)

    async def save(self, session: SessionState) -> bool:
        try:
            await self.store.put(session.session_id, session.to_record())
            return True
        except Exception as e:
            logger.error("Session save failed (session=%s): %s", session.session_id, e)
            return False

    async def reset(self, session_id: str) -> None:
        await self.store.delete(session_id)
        logger.info("Session reset: %s", session_id)

    # ── Turn processing ───────────────────────────────────────────

    async def process_turn(
        self,
        session_id: str,
        user_input: str,
        attachments: Optional[list[dict]] = None,
    ) -> TurnResult:
        """Process one user turn. Turns for the same session run one at a time."""
        try:
            async with self.store.lock(session_id):
                session = await self.load(session_id)
                try:
                    return await asyncio.wait_for(
                        self._process(session, user_input, attachments),
                        timeout=get_settings().turn_timeout_seconds,
                    )
                except Exception as e:
                    logger.exception("Turn failed (session=%s): %s", session_id, e)
                    return await self._record_failure(session, user_input)
        except SessionBusy:
            logger.warning("Turn rejected, session busy (session=%s)", session_id)
            return TurnResult(response=BUSY_MESSAGE, session=None, handler="none", metadata={"busy": True})
        except Exception as e:
            logger.exception("Turn failed outside handler (session=%s): %s", session_id, e)
            return TurnResult(response=APOLOGY, session=None, handler="none", metadata={"error": True})

    async def _record_failure(self, session: SessionState, user_input: str) -> TurnResult:
        """Keep the loaded state, append the apology pair, persist."""
        merged = self._trimmed(merge_state(session, {"history": _turn_pair(user_input, APOLOGY)}))
        await self.save(merged)
        return TurnResult(response=APOLOGY, session=merged, handler="none", metadata={"error": True, "failed": True})

    @staticmethod
    def _trimmed(session: SessionState) -> SessionState:
        max_turns = get_settings().max_history_turns
        if len(session.history) > max_turns:
            return session.model_copy(update={"history": session.history[-max_turns:]})
        return session

    async def _process(
        self,
        session: SessionState,
        user_input: str,
        attachments: Optional[list[dict]],
    ) -> TurnResult:
        start = time.monotonic()
        session_id = session.session_id

        guard = check_input(user_input, session_id)
        if not guard.allowed:
            return TurnResult(response=guard.reason, session=session, handler="guardrail",
                              metadata={"rejected": True})

        await realtime.turn_started(session_id, {"message": user_input[:100]})

        try:
            decision = await route(session, user_input)
        except Exception as e:
            logger.exception("Routing failed (session=%s): %s", session_id, e)
            decision = RouteDecision(GENERAL_ASSISTANT, "router_error")

        handler = self.registry.get(decision.handler)
        if handler is None:
            logger.error("Handler '%s' not registered, falling back to %s", decision.handler, GENERAL_ASSISTANT)
            handler = self.registry.get(GENERAL_ASSISTANT)

        await realtime.handler_started(session_id, handler.name)

        failed = False
        try:
            result: HandlerResult = await handler.handle(user_input, session, attachments=attachments)
        except Exception as e:
            logger.exception("Handler '%s' failed (session=%s): %s", handler.name, session_id, e)
            result = HandlerResult(response=APOLOGY)
            failed = True

        response = result.response or APOLOGY
        checked = check_output(response)
        if checked.modified_text:
            response = checked.modified_text

        update = dict(result.update)
        if "history" in update:
            logger.warning("Handler '%s' returned history; ignoring it", handler.name)
            update.pop("history")
        if not failed:
            update["last_node"] = session.current_node
            update["current_node"] = handler.name
        update["history"] = _turn_pair(user_input, response)

        try:
            merged = merge_state(session, update)
        except Exception as e:
            logger.error("Handler '%s' returned an invalid update (session=%s): %s", handler.name, session_id, e)
            response, failed = APOLOGY, True
            merged = merge_state(session, {"history": _turn_pair(user_input, APOLOGY)})
        if failed:
            await realtime.turn_error(session_id, {"handler": handler.name})
        merged = self._trimmed(merged)

        for problem in check_invariants(merged, self.catalog):
            logger.warning("Session invariant violated (session=%s): %s", session_id, problem)

        saved = await self.save(merged)
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Turn done: handler=%s reason=%s status=%s saved=%s %dms (session=%s)",
            handler.name, decision.reason, merged.form_status.value, saved, elapsed_ms, session_id,
        )

        await realtime.turn_completed(session_id, {
            "handler": handler.name,
            "form_status": merged.form_status.value,
            "elapsed_ms": elapsed_ms,
        })

        return TurnResult(
            response=response,
            session=merged,
            handler=handler.name,
            metadata={**result.metadata, "route_reason": decision.reason, "failed": failed},
        )


def _turn_pair(user_input: str, response: str) -> list[Turn]:
    return [Turn(role="user", content=user_input), Turn(role="assistant", content=response)]


# ── Global machine ───────────────────────────────────────────────────

_machine: Optional[SessionStateMachine] = None


def get_state_machine() -> SessionStateMachine:
    global _machine
    if _machine is None:
        _machine = SessionStateMachine()
    return _machine
