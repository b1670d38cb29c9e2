"""
General Assistant. Answers questions, helps the user find a form, and
starts field collection once they confirm.

Deterministic paths run before the model:
  - "what forms are available"          → catalog listing
  - confirmation while a form is picked → start the application
  - an explicit form pick ("fill PAN001") → show its exact structure
Everything else goes through a bounded tool-calling loop. Any form
structure the user sees is rendered from the catalog by the tools, never
written by the model.
"""

import asyncio
import base64
import logging
import re
import time
from typing import Optional

from ...core.errors import AdapterError, FormNotFound, ToolInputError
from ...forms.catalog import FormDefinition, get_catalog
from ...orchestrator.base_handler import BaseHandler, HandlerResult
from ...orchestrator.state import SessionState
from ...services import llm
from ...services.knowledge import extract_text
from ...tools.form_catalog import begin_application, select_form
from ...tools.registry import ToolResult, get_tool, get_tools_for_llm, init_tools, run_tool

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are FormDesk, an assistant that helps people fill out government and insurance forms.

## What you do
- Answer questions about forms, eligibility, required documents and procedures.
- Help the user pick the right form and start filling it out.

## Rules
- Use list_forms to see which forms exist. Never invent a form or a form ID.
- Use get_form_structure to show a form's fields. Never list, rename or reorder fields yourself.
- Call start_application only after the user clearly confirms they want to begin.
- Use search_knowledge for factual questions about procedures, fees or documents. If nothing is found, say so.
- Be concise and friendly. Short paragraphs. No legal advice."""

MAX_TOOL_ROUNDS = 5
MAX_TOOL_RESULT_CHARS = 4000
MAX_ATTACHMENT_CHARS = 6000

APOLOGY = "Sorry, I'm having trouble answering right now. Please try again in a moment."

_LIST_FORMS_RE = re.compile(
    r"\b("
    r"(?:what|which) (?:forms|applications)|"
    r"list (?:all |the )?(?:forms|applications)|"
    r"(?:show|see) (?:me )?(?:all |the )?(?:available )?(?:forms|applications)|"
    r"(?:forms|applications) (?:are )?(?:available|can i fill|do you (?:have|support))"
    r")\b",
    re.IGNORECASE,
)

_CONFIRM_PHRASE = (
    r"(?:yes|yeah|yep|yup|sure|ok(?:ay)?|please(?: do)?|go ahead|proceed|start|begin|do it|"
    r"let'?s (?:start|begin|go|do it|proceed)|start (?:it|now|the application|filling))"
)
# The whole reply must be confirmation: "yes, but what documents do I need?" is a question
_CONFIRM_RE = re.compile(rf"^\s*{_CONFIRM_PHRASE}(?:[\s,.!]+{_CONFIRM_PHRASE})*[\s.!]*$", re.IGNORECASE)

_SELECT_RE = re.compile(
    r"\b(apply|fill|start|begin|structure|fields|select|choose|open|i want|i'd like|i would like)\b",
    re.IGNORECASE,
)


def is_start_confirmation(user_input: str) -> bool:
    return len(user_input) <= 60 and bool(_CONFIRM_RE.match(user_input))


class GeneralAssistantHandler(BaseHandler):
    name = "general_assistant"
    display_name = "General Assistant"
    description = "Answers questions, lists forms, shows form structures and starts applications"

    async def handle(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]] = None,
    ) -> HandlerResult:
        # ── Deterministic paths ───────────────────────────────────
        if _LIST_FORMS_RE.search(user_input):
            result = await run_tool_safely("list_forms", {}, session)
            return _finish(result, path="list_forms")

        if session.form_id and session.awaiting_input and is_start_confirmation(user_input):
            form = _selected_form(session)
            if form is not None:
                logger.info("Starting application %s (session=%s)", form.id, session.session_id)
                return _finish(begin_application(form), path="start_confirmed")

        form = get_catalog().find_form(user_input)
        if form is not None and _SELECT_RE.search(user_input):
            return _finish(select_form(form), path="form_selected")

        # ── Model with tools ──────────────────────────────────────
        return await self._tool_loop(user_input, session, attachments)

    async def _tool_loop(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]],
    ) -> HandlerResult:
        start_time = time.monotonic()
        init_tools()
        tools = get_tools_for_llm()
        messages = self._build_messages(user_input, session, attachments)
        tool_calls_log: list[dict] = []

        for round_num in range(MAX_TOOL_ROUNDS):
            try:
                assistant_msg = await llm.complete_with_tools(messages, tools)
            except AdapterError as e:
                logger.error("General assistant: model call failed: %s", e)
                return HandlerResult(response=APOLOGY, metadata={"error": e.capability})

            tool_calls = assistant_msg.get("tool_calls") or []
            if not tool_calls:
                content = (assistant_msg.get("content") or "").strip()
                return HandlerResult(
                    response=content or APOLOGY,
                    metadata={
                        "tool_calls": tool_calls_log or None,
                        "rounds": round_num + 1,
                        "elapsed_ms": int((time.monotonic() - start_time) * 1000),
                    },
                )

            messages.append(assistant_msg)
            outcomes = await self._execute_tool_calls(tool_calls, session, tool_calls_log)
            messages.extend(message for message, _ in outcomes)

            # A tool that shows something to the user ends the turn
            shown = [result for _, result in outcomes if result is not None and result.display]
            if shown:
                update: dict = {}
                for _, result in outcomes:
                    if result is not None:
                        update.update(result.update)
                return HandlerResult(
                    response="\n\n".join(r.display for r in shown),
                    update=update,
                    metadata={
                        "tool_calls": tool_calls_log,
                        "rounds": round_num + 1,
                        "elapsed_ms": int((time.monotonic() - start_time) * 1000),
                    },
                )

        return HandlerResult(
            response=(
                "I couldn't quite work that out. Could you tell me which form you need, "
                "or rephrase your question?"
            ),
            metadata={"tool_calls": tool_calls_log, "rounds": MAX_TOOL_ROUNDS, "hit_max_rounds": True},
        )

    def _build_messages(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]],
    ) -> list[dict]:
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]

        if session.form_id:
            messages.append({
                "role": "system",
                "content": (
                    f"[SESSION] The user has selected {session.form_name} (Form ID: {session.form_id}) "
                    "but has not started filling it out."
                ),
            })
        if session.last_submission_id:
            messages.append({
                "role": "system",
                "content": f"[SESSION] The user's last submission ID is {session.last_submission_id}.",
            })

        attached = attachment_context(attachments)
        if attached:
            messages.append({"role": "system", "content": attached})

        messages.extend(llm.history_messages(session.history))
        messages.append({"role": "user", "content": user_input})
        return messages

    # ── Tool execution ────────────────────────────────────────────

    async def _execute_tool_calls(
        self,
        tool_calls: list[dict],
        session: SessionState,
        log: list,
    ) -> list[tuple[dict, Optional[ToolResult]]]:
        """Run tool calls concurrently. Returns (tool message, result or None) pairs."""

        async def _run_one(tc: dict) -> tuple[dict, Optional[ToolResult]]:
            func = tc.get("function") or {}
            func_name = func.get("name", "")
            call_start = time.monotonic()
            log.append({"tool": func_name})
            logger.info("Tool call: %s(%s)", func_name, str(func.get("arguments") or "")[:200])

            try:
                result = await run_tool(func_name, func.get("arguments"), session=session)
            except ToolInputError as e:
                logger.warning("Tool input rejected: %s", e)
                return _tool_message(tc, f"Error: {e}. Fix the arguments and try again."), None
            except Exception as e:
                logger.error("Tool '%s' failed: %s", func_name, e)
                return _tool_message(tc, f"Error: {func_name} is unavailable right now."), None

            logger.info(
                "Tool %s completed in %dms",
                func_name, int((time.monotonic() - call_start) * 1000),
            )
            content = result.content
            if len(content) > MAX_TOOL_RESULT_CHARS:
                content = content[:MAX_TOOL_RESULT_CHARS - 30] + "\n\n... [result truncated]"
            return _tool_message(tc, content), result

        return list(await asyncio.gather(*[_run_one(tc) for tc in tool_calls]))


def _tool_message(tc: dict, content: str) -> dict:
    return {"role": "tool", "tool_call_id": tc.get("id", ""), "content": content}


def _finish(result: ToolResult, path: str) -> HandlerResult:
    return HandlerResult(
        response=result.display or result.content,
        update=result.update,
        metadata={"path": path},
    )


async def run_tool_safely(name: str, args: dict, session: SessionState) -> ToolResult:
    init_tools()
    if get_tool(name) is None:
        return ToolResult(content=APOLOGY)
    try:
        return await run_tool(name, args, session=session)
    except Exception as e:
        logger.error("Tool '%s' failed: %s", name, e)
        return ToolResult(content=APOLOGY)


def _selected_form(session: SessionState) -> Optional[FormDefinition]:
    """The form the user picked earlier; the cached structure covers catalog reloads."""
    try:
        return get_catalog().get_form_by_id(session.form_id)
    except FormNotFound:
        cached = session.cached_form_structure
        if cached and cached.get("id") == session.form_id:
            return FormDefinition.model_validate(cached)
        logger.warning("Selected form %s no longer exists", session.form_id)
        return None


def attachment_context(attachments: Optional[list[dict]]) -> str:
    """Extracted text of attached files as a system note, or ""."""
    parts = []
    for item in attachments or []:
        filename = item.get("filename") or "attachment"
        try:
            data = base64.b64decode(item.get("content_base64") or "", validate=True)
        except (ValueError, TypeError):
            logger.warning("Skipping attachment %s: content is not base64", filename)
            continue
        text = extract_text(data, filename).strip()
        if text:
            parts.append(f"--- {filename} ---\n{text[:MAX_ATTACHMENT_CHARS]}")
    if not parts:
        return ""
    return "[ATTACHED DOCUMENTS]\n" + "\n\n".join(parts)
