"""
Field Collector. Walks the user through a form one field at a time.

Every turn routed here is first classified:
  cancel        → drop the in-progress application
  skip          → leave an optional field blank (required fields are re-asked)
  correction    → "change my <field> to <value>": overwrite an earlier answer
  interruption  → a question instead of an answer: reply, then re-ask
  answer        → validate and record the value for current_field

Fields are asked in catalog order. Only required fields gate completion;
optional fields are offered once and may be skipped.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...core.errors import AdapterError
from ...core.flags import get_flags
from ...forms.presentation import format_question, format_summary
from ...orchestrator.base_handler import BaseHandler, HandlerResult
from ...orchestrator.state import (
    FieldValue,
    FormStatus,
    SessionState,
    field_by_name,
    form_reset_update,
    is_outstanding,
    next_field,
    with_value,
)
from ...services import knowledge, llm
from .validation import validate

logger = logging.getLogger(__name__)


class TurnKind(str, Enum):
    CANCEL = "cancel"
    SKIP = "skip"
    CORRECTION = "correction"
    INTERRUPTION = "interruption"
    ANSWER = "answer"


@dataclass
class Classified:
    kind: TurnKind
    field: Optional[FieldValue] = None     # Target of a correction
    value: str = ""


_CANCEL_PATTERNS = re.compile(
    r"^\s*(?:please\s+)?("
    r"cancel(?: (?:it|this|the (?:form|application)))?|stop|quit|exit|"
    r"never ?mind|forget it|start over|i don'?t want to (?:continue|fill (?:this|it))"
    r")[\s.!]*$",
    re.IGNORECASE,
)

_SKIP_PATTERNS = re.compile(
    r"^\s*(skip(?: (?:it|this|this one))?|pass|n/?a|none|not applicable|leave (?:it )?blank)[\s.!]*$",
    re.IGNORECASE,
)

_CORRECTION_PATTERNS = [
    re.compile(
        r"^\s*(?:please\s+)?(?:change|update|correct|set|fix)\s+(?:my\s+|the\s+)?(?P<field>.+?)\s+to\s+(?P<value>.+?)\s*$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^\s*(?:actually,?\s+)?(?:my\s+|the\s+)?(?P<field>.+?)\s+(?:is|should be)\s+actually\s+(?P<value>.+?)\s*$",
        re.IGNORECASE,
    ),
    re.compile(
        r"^\s*actually,?\s+(?:my\s+|the\s+)?(?P<field>.+?)\s+(?:is|should be)\s+(?P<value>.+?)\s*$",
        re.IGNORECASE,
    ),
]

_INTERRUPTION_PROMPT = """You are checking a reply in a form-filling conversation.
The assistant asked the user for: {label} ({instruction}).
Decide whether the user's reply is an ANSWER to that request (even an odd or partial one)
or an INTERRUPTION (a question or request about something else).
Reply with exactly one word: ANSWER or INTERRUPTION."""

_QUESTION_PROMPT = """You help a user fill out the {form_name}.
Ask the user for the next field in one or two short, friendly sentences.
Field: {label}
Type: {type}
Instruction: {instruction}
{options}{optional}
{preface}Do not ask for anything else. Do not invent requirements."""

_ANSWER_PROMPT = """You help a user fill out the {form_name}. They paused to ask a question.
Answer it briefly and accurately using the reference passages if they help.
If you don't know, say so. Do not ask for any form fields.

Reference passages:
{passages}"""

_SUMMARY_PROMPT = """You help a user fill out the {form_name}. All fields are collected.
Write a short, friendly summary listing every field below exactly as given (label: value),
then ask the user to confirm submission or say what to change.
Do not change, omit or add any values.

{values}"""


def normalize_label(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", text.lower()).strip()


def resolve_field(fields: list[FieldValue], text: str) -> Optional[FieldValue]:
    """Match a user's name for a field ("mobile", "father's name") to a form field."""
    wanted = normalize_label(text)
    if not wanted:
        return None
    for f in fields:
        if wanted in (normalize_label(f.name), normalize_label(f.display_label)):
            return f
    partial = [
        f for f in fields
        if wanted in normalize_label(f.display_label) or wanted in normalize_label(f.name)
    ]
    if len(partial) == 1:
        return partial[0]
    return None


def looks_like_question(user_input: str) -> bool:
    return user_input.strip().endswith("?")


def is_cancel(user_input: str) -> bool:
    return bool(_CANCEL_PATTERNS.match(user_input))


def match_correction(fields: list[FieldValue], user_input: str) -> Optional[tuple[FieldValue, str]]:
    """"Change my <field> to <value>" style edits. Returns (field, raw value) or None."""
    for pattern in _CORRECTION_PATTERNS:
        match = pattern.match(user_input)
        if match:
            target = resolve_field(fields, match.group("field"))
            if target is not None:
                return target, match.group("value")
    return None


class FieldCollectorHandler(BaseHandler):
    name = "field_collector"
    display_name = "Field Collector"
    description = "Collects form answers field by field, in catalog order"

    async def handle(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]] = None,
    ) -> HandlerResult:
        fields = session.form_fields
        current = field_by_name(fields, session.current_field)

        if current is None or not is_outstanding(current):
            return await self._repair(session)

        turn = await self._classify(user_input, session, current)
        logger.info(
            "Collector: %s (form=%s field=%s session=%s)",
            turn.kind.value, session.form_id, current.name, session.session_id,
        )

        if turn.kind == TurnKind.CANCEL:
            return HandlerResult(
                response=(
                    f"Okay, I've cancelled your {session.form_name or 'application'}. Nothing was submitted. "
                    "Let me know if you'd like to start another form."
                ),
                update=form_reset_update(),
                metadata={"turn": turn.kind.value},
            )

        if turn.kind == TurnKind.SKIP:
            if current.required:
                return HandlerResult(
                    response=f"{current.display_label} is required, so I can't skip it. {await self._question(current, session)}",
                    metadata={"turn": turn.kind.value, "rejected": True},
                )
            return await self._record(session, current, "", turn.kind)

        if turn.kind == TurnKind.CORRECTION:
            return await self._correct(session, current, turn)

        if turn.kind == TurnKind.INTERRUPTION:
            return await self._answer_interruption(user_input, session, current)

        value, error = validate(current, user_input)
        if error:
            return HandlerResult(
                response=f"{error} {await self._question(current, session)}",
                metadata={"turn": turn.kind.value, "invalid": current.name},
            )
        return await self._record(session, current, value, turn.kind)

    # ── Classification ────────────────────────────────────────────

    async def _classify(self, user_input: str, session: SessionState, current: FieldValue) -> Classified:
        if is_cancel(user_input):
            return Classified(TurnKind.CANCEL)
        if _SKIP_PATTERNS.match(user_input):
            return Classified(TurnKind.SKIP)

        correction = match_correction(session.form_fields, user_input)
        if correction is not None:
            target, value = correction
            return Classified(TurnKind.CORRECTION, field=target, value=value)

        if looks_like_question(user_input) and await self._is_interruption(user_input, current):
            return Classified(TurnKind.INTERRUPTION)

        return Classified(TurnKind.ANSWER)

    async def _is_interruption(self, user_input: str, current: FieldValue) -> bool:
        # Valid structured answers (dates, options, yes/no) are never interruptions
        _, error = validate(current, user_input)
        if error is None and current.type != "text":
            return False
        system = _INTERRUPTION_PROMPT.format(
            label=current.display_label,
            instruction=current.instruction or "no instruction",
        )
        try:
            verdict = await llm.complete(system, [], user_input, temperature=0, max_tokens=5)
        except AdapterError as e:
            logger.warning("Collector: interruption check failed, treating as answer: %s", e)
            return False
        return verdict.strip().upper().startswith("INTERRUPTION")

    # ── Turn kinds ────────────────────────────────────────────────

    async def _record(
        self,
        session: SessionState,
        current: FieldValue,
        value: str,
        kind: TurnKind,
    ) -> HandlerResult:
        fields = with_value(session.form_fields, current.name, value)
        update = {
            "form_fields": fields,
            "last_field": current.name,
            "is_form_filling_interrupted": False,
        }
        upcoming = next_field(fields)

        if upcoming is not None:
            update.update({
                "current_field": upcoming.name,
                "form_status": FormStatus.IN_PROGRESS,
                "awaiting_input": True,
            })
            return HandlerResult(
                response=await self._question(upcoming, session, preface="Thank the user briefly for the previous answer."),
                update=update,
                metadata={"turn": kind.value, "recorded": current.name, "next": upcoming.name},
            )

        update.update(self._ready_update())
        return HandlerResult(
            response=await self._summary(session, fields),
            update=update,
            metadata={"turn": kind.value, "recorded": current.name, "complete": True},
        )

    async def _correct(self, session: SessionState, current: FieldValue, turn: Classified) -> HandlerResult:
        target = turn.field
        if target.name == current.name:
            value, error = validate(current, turn.value)
            if error:
                return HandlerResult(
                    response=f"{error} {await self._question(current, session)}",
                    metadata={"turn": TurnKind.CORRECTION.value, "invalid": current.name},
                )
            return await self._record(session, current, value, TurnKind.CORRECTION)

        if target.value is None:
            return HandlerResult(
                response=(
                    f"We haven't reached {target.display_label} yet, I'll ask for it shortly. "
                    f"{await self._question(current, session)}"
                ),
                metadata={"turn": TurnKind.CORRECTION.value, "not_reached": target.name},
            )

        value, error = validate(target, turn.value)
        if error:
            return HandlerResult(
                response=f"{error} {await self._question(current, session)}",
                metadata={"turn": TurnKind.CORRECTION.value, "invalid": target.name},
            )

        logger.info("Collector: corrected %s (session=%s)", target.name, session.session_id)
        return HandlerResult(
            response=(
                f"Updated your {target.display_label} to {value or 'blank'}. "
                f"{await self._question(current, session)}"
            ),
            update={"form_fields": with_value(session.form_fields, target.name, value)},
            metadata={"turn": TurnKind.CORRECTION.value, "corrected": target.name},
        )

    async def _answer_interruption(self, user_input: str, session: SessionState, current: FieldValue) -> HandlerResult:
        passages = "none"
        if get_flags().use_retrieval:
            try:
                results = await knowledge.search(user_input, limit=3)
                if results:
                    passages = "\n\n".join(f"({r['source']}) {r['content']}" for r in results)
            except AdapterError as e:
                logger.warning("Collector: knowledge search failed: %s", e)

        system = _ANSWER_PROMPT.format(form_name=session.form_name or "form", passages=passages)
        try:
            answer = await llm.complete(system, session.history[-6:], user_input)
        except AdapterError as e:
            logger.warning("Collector: could not answer interruption: %s", e)
            answer = "Sorry, I can't answer that right now."

        return HandlerResult(
            response=f"{answer}\n\nNow, back to your {session.form_name or 'form'}. {format_question(current)}",
            update={"is_form_filling_interrupted": True, "awaiting_input": True},
            metadata={"turn": TurnKind.INTERRUPTION.value},
        )

    async def _repair(self, session: SessionState) -> HandlerResult:
        """current_field is missing or already answered: resume from the first gap."""
        logger.warning(
            "Collector: inconsistent current_field %r (form=%s session=%s), repairing",
            session.current_field, session.form_id, session.session_id,
        )
        if not session.form_fields:
            return HandlerResult(
                response=(
                    "Sorry, I lost track of your application. "
                    "Please tell me which form you'd like to fill out and we'll start again."
                ),
                update=form_reset_update(),
                metadata={"repair": "reset"},
            )

        upcoming = next_field(session.form_fields)
        if upcoming is None:
            return HandlerResult(
                response=await self._summary(session, session.form_fields),
                update=self._ready_update(),
                metadata={"repair": "ready"},
            )
        return HandlerResult(
            response=await self._question(upcoming, session),
            update={"current_field": upcoming.name, "awaiting_input": True},
            metadata={"repair": "resume", "next": upcoming.name},
        )

    # ── Text generation (model with deterministic fallback) ──────

    def _ready_update(self) -> dict:
        return {
            "current_field": None,
            "is_form_filling_started": False,
            "is_form_filling_interrupted": False,
            "is_form_ready": True,
            "form_status": FormStatus.COMPLETED,
            "awaiting_input": True,
        }

    async def _question(self, field: FieldValue, session: SessionState, preface: str = "") -> str:
        system = _QUESTION_PROMPT.format(
            form_name=session.form_name or "form",
            label=field.display_label,
            type=field.type,
            instruction=field.instruction or "none",
            options=f"Options: {', '.join(field.options)}\n" if field.options else "",
            optional="This field is optional; tell the user they can say 'skip'.\n" if not field.required else "",
            preface=f"{preface}\n" if preface else "",
        )
        try:
            return await llm.complete(system, [], f"Ask me for my {field.display_label}.", max_tokens=150)
        except AdapterError as e:
            logger.debug("Collector: question fallback for %s: %s", field.name, e)
            return format_question(field)

    async def _summary(self, session: SessionState, fields: list[FieldValue]) -> str:
        form_name = session.form_name or "application"
        values = "\n".join(f"- {f.display_label}: {f.value or 'Not provided'}" for f in fields)
        system = _SUMMARY_PROMPT.format(form_name=form_name, values=values)
        try:
            return await llm.complete(system, [], "Summarize my answers.", max_tokens=600)
        except AdapterError as e:
            logger.debug("Collector: summary fallback: %s", e)
            return format_summary(form_name, fields)
