"""
Intent router. Picks exactly one handler for a turn.

Session flags are ground truth and always win over classification:
  1. Collection active           → field_collector (unconditionally)
  2. Form ready / completed      → submission_finalizer
  3. Otherwise classify the input into general_assistant | status_tracker
     (keyword check first; then the model, if FF_LLM_INTENT_ROUTING)
  4. Classifier failure or unrecognized output → general_assistant

Corrections and off-topic questions during collection are handled inside
the field collector, so rule 1 never needs an exception.
"""

import json
import logging
import re
from dataclasses import dataclass

from ..core.errors import AdapterError
from ..core.flags import get_flags
from ..services import llm
from ..services.submissions import find_submission_reference
from .state import FormStatus, SessionState

logger = logging.getLogger(__name__)

GENERAL_ASSISTANT = "general_assistant"
STATUS_TRACKER = "status_tracker"
FIELD_COLLECTOR = "field_collector"
SUBMISSION_FINALIZER = "submission_finalizer"

HANDLER_NAMES = frozenset({GENERAL_ASSISTANT, STATUS_TRACKER, FIELD_COLLECTOR, SUBMISSION_FINALIZER})
CLASSIFIABLE = (GENERAL_ASSISTANT, STATUS_TRACKER)

_STATUS_PATTERNS = re.compile(
    r"\b("
    r"status|track(?:ing)?|"
    r"where(?:'s| is) my (?:application|form|submission)|"
    r"(?:application|submission|form) (?:progress|update)|"
    r"has my (?:application|form|submission)|"
    r"(?:is|was) my (?:application|form|submission) (?:approved|rejected|processed)"
    r")\b",
    re.IGNORECASE,
)

_CLASSIFIER_PROMPT = """You route messages for a government form-filling assistant.
Pick exactly one handler for the user's message:
- general_assistant: questions, finding or choosing a form, starting an application, small talk
- status_tracker: asking about the status or progress of an application already submitted

Session context:
- active form: {form_name}
- form status: {form_status}
- current field: {current_field}
- last submission id: {last_submission_id}
- turns so far: {history_length}

Reply with JSON only: {{"handler": "general_assistant" | "status_tracker"}}"""


@dataclass
class RouteDecision:
    handler: str
    reason: str


def keyword_classify(user_input: str) -> str | None:
    """Deterministic status check. Returns status_tracker or None."""
    if _STATUS_PATTERNS.search(user_input):
        return STATUS_TRACKER
    if find_submission_reference(user_input):
        return STATUS_TRACKER
    return None


def parse_classification(text: str) -> str | None:
    """Read the model's choice. JSON first, then a bare handler name."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            value = json.loads(match.group(0)).get("handler")
        except (json.JSONDecodeError, AttributeError):
            value = None
        if isinstance(value, str) and value.strip().lower() in CLASSIFIABLE:
            return value.strip().lower()

    found = [name for name in CLASSIFIABLE if name in text.lower()]
    if len(found) == 1:
        return found[0]
    return None


async def classify(session: SessionState, user_input: str) -> RouteDecision:
    keyword = keyword_classify(user_input)
    if keyword:
        return RouteDecision(keyword, "keyword")

    if not get_flags().llm_intent_routing:
        return RouteDecision(GENERAL_ASSISTANT, "default")

    system = _CLASSIFIER_PROMPT.format(
        form_name=session.form_name or "none",
        form_status=session.form_status.value,
        current_field=session.current_field or "none",
        last_submission_id=session.last_submission_id or "none",
        history_length=len(session.history),
    )
    try:
        output = await llm.complete(system, [], user_input, temperature=0, max_tokens=50)
    except AdapterError as e:
        logger.warning("Router: classifier failed (%s), defaulting", e)
        return RouteDecision(GENERAL_ASSISTANT, "classifier_failed")

    handler = parse_classification(output)
    if handler is None:
        logger.warning("Router: unrecognized classifier output %r, defaulting", output[:100])
        return RouteDecision(GENERAL_ASSISTANT, "classifier_unrecognized")
    return RouteDecision(handler, "classifier")


async def route(session: SessionState, user_input: str) -> RouteDecision:
    """Determine which handler processes this turn."""
    if session.is_form_filling_started:
        decision = RouteDecision(FIELD_COLLECTOR, "collection_active")
    elif session.is_form_ready or session.form_status == FormStatus.COMPLETED:
        decision = RouteDecision(SUBMISSION_FINALIZER, "form_ready")
    else:
        decision = await classify(session, user_input)

    logger.info("Router: → %s (%s)", decision.handler, decision.reason)
    return decision
