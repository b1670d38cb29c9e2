"""
Checks applied to every turn before routing and after the handler replies.

Field answers are free text, so suspected prompt injection is only logged.
Only empty or oversized input is rejected.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000
MAX_RESPONSE_LENGTH = 20000
TRUNCATION_NOTE = "\n\n[Response truncated due to length]"

INJECTION_RE = re.compile(
    r"ignore\s+(all\s+)?(previous\s+instructions|above)"
    r"|disregard\s+(all\s+)?previous"
    r"|you\s+are\s+now\s+an?\s+"
    r"|<\s*system\s*>",
    re.IGNORECASE,
)

# Phrases from our own system prompts that should never reach the user
PROMPT_MARKERS = ("system prompt", "you are formdesk, an", "## critical accuracy requirements")


@dataclass
class GuardrailResult:
    allowed: bool
    reason: Optional[str] = None
    modified_text: Optional[str] = None


def check_input(message: str, session_id: str = "") -> GuardrailResult:
    if not message.strip():
        return GuardrailResult(False, "Please type a message.")
    if len(message) > MAX_MESSAGE_LENGTH:
        return GuardrailResult(
            False,
            f"Your message is too long ({len(message)} characters). Please keep it under {MAX_MESSAGE_LENGTH}.",
        )
    if INJECTION_RE.search(message):
        logger.warning("Possible prompt injection (session=%s): %.100s", session_id, message)
    return GuardrailResult(True)


def check_output(response: str) -> GuardrailResult:
    lowered = response.lower()
    if any(marker in lowered for marker in PROMPT_MARKERS):
        logger.warning("Response may echo a system prompt")
    if len(response) > MAX_RESPONSE_LENGTH:
        return GuardrailResult(True, modified_text=response[:MAX_RESPONSE_LENGTH] + TRUNCATION_NOTE)
    return GuardrailResult(True)
