"""
Submission Finalizer. Runs once collection is complete and the user is
reviewing their answers.

  decline ("no", "not yet") → stay ready, explain options
  cancel                    → discard the application
  correction                → edit one value, re-show the summary
  anything else             → submit

Submitting assembles {field: value}, renders the document, stores the
artifact and the submission record, and resets the session's form state.
Rendering and storage failures never block the confirmation.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from ...core.errors import FormNotFound
from ...core.flags import get_flags
from ...core.storage import get_storage
from ...forms.catalog import FormDefinition, get_catalog
from ...forms.presentation import display_value, format_summary
from ...orchestrator.base_handler import BaseHandler, HandlerResult
from ...orchestrator.state import SessionState, form_reset_update, with_value
from ...services import realtime, renderer
from ...services.submissions import new_submission_id, save_submission
from ..field_collector.handler import is_cancel, match_correction
from ..field_collector.validation import validate

logger = logging.getLogger(__name__)

_DONT_SUBMIT_RE = re.compile(r"\b(?:don'?t|do not|not)\s+(?:submit|send)\b", re.IGNORECASE)
_SUBMIT_RE = re.compile(r"\b(?:submit|send it|go ahead|proceed|confirm|yes|yeah|yep)\b", re.IGNORECASE)
_DECLINE_RE = re.compile(r"^\s*(?:no|nope|not yet|not now|wait|hold on)\b", re.IGNORECASE)


def is_decline(user_input: str) -> bool:
    """A leading "no" declines unless the same reply asks to submit."""
    if _DONT_SUBMIT_RE.search(user_input):
        return True
    if _SUBMIT_RE.search(user_input):
        return False
    return bool(_DECLINE_RE.match(user_input))


def assemble_values(session: SessionState) -> dict:
    """{field name: value} in catalog order. Unset values become ""."""
    return {f.name: f.value or "" for f in session.form_fields}


class SubmissionFinalizerHandler(BaseHandler):
    name = "submission_finalizer"
    display_name = "Submission Finalizer"
    description = "Confirms, renders and records a completed application"

    async def handle(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]] = None,
    ) -> HandlerResult:
        if is_cancel(user_input):
            return HandlerResult(
                response=(
                    f"Okay, I've discarded your {session.form_name or 'application'}. Nothing was submitted."
                ),
                update=form_reset_update(),
                metadata={"action": "cancel"},
            )

        correction = match_correction(session.form_fields, user_input)
        if correction is not None:
            return self._correct(session, *correction)

        if is_decline(user_input):
            return HandlerResult(
                response=(
                    "No problem, I haven't submitted anything. You can say 'submit' when you're ready, "
                    "tell me what to change (for example 'change my address to ...'), or say 'cancel' to discard it."
                ),
                metadata={"action": "decline"},
            )

        return await self.submit(session)

    def _correct(self, session: SessionState, target, raw_value: str) -> HandlerResult:
        value, error = validate(target, raw_value)
        if error:
            return HandlerResult(response=error, metadata={"action": "correction", "invalid": target.name})
        fields = with_value(session.form_fields, target.name, value)
        return HandlerResult(
            response=f"Updated your {target.display_label}.\n\n" + format_summary(session.form_name or "application", fields),
            update={"form_fields": fields},
            metadata={"action": "correction", "corrected": target.name},
        )

    async def submit(self, session: SessionState) -> HandlerResult:
        submission_id = new_submission_id()
        values = assemble_values(session)
        form = _lookup_form(session.form_id)
        notes = []

        artifact_key = None
        pdf = None
        if get_flags().use_pdf_render and session.form_id:
            try:
                pdf = await renderer.render(session.form_id, values, submission_id, form=form)
            except Exception as e:
                logger.error("Render failed for %s (form=%s): %s", submission_id, session.form_id, e)
                notes.append("I couldn't generate the PDF document, but your answers were recorded.")

        if pdf is not None:
            try:
                artifact_key = await get_storage().save(pdf, f"{submission_id}.pdf", folder=session.form_id)
            except Exception as e:
                logger.error("Storing document failed for %s: %s", submission_id, e)
                notes.append("I couldn't store the PDF document, but your answers were recorded.")

        try:
            await save_submission(
                submission_id=submission_id,
                session_id=session.session_id,
                form_id=session.form_id,
                form_name=session.form_name,
                field_values=values,
                artifact_key=artifact_key,
            )
        except Exception as e:
            logger.error("Saving submission %s failed: %s", submission_id, e)

        await realtime.form_submitted(session.session_id, submission_id, session.form_id or "")

        update = form_reset_update()
        update["last_submission_id"] = submission_id
        return HandlerResult(
            response=confirmation_message(session, submission_id, artifact_key, notes),
            update=update,
            metadata={
                "action": "submit",
                "submission_id": submission_id,
                "artifact": artifact_key,
            },
        )


def _lookup_form(form_id: Optional[str]) -> Optional[FormDefinition]:
    if not form_id:
        return None
    try:
        return get_catalog().get_form_by_id(form_id)
    except FormNotFound:
        return None


def confirmation_message(
    session: SessionState,
    submission_id: str,
    artifact_key: Optional[str],
    notes: list[str],
) -> str:
    summary = "\n".join(
        f"- **{f.display_label}:** {display_value(f, f.value)}"
        for f in session.form_fields
        if f.value
    )
    lines = [
        "**Form Submitted Successfully!**",
        "",
        f"**{session.form_name or 'Application Form'}**",
        f"**Submission ID:** `{submission_id}`",
        f"**Submitted:** {datetime.now(timezone.utc):%d/%m/%Y %H:%M} UTC",
    ]
    if summary:
        lines += ["", "**Summary of your submission:**", summary]
    if artifact_key:
        lines += ["", f"Your completed document is ready: /v1/submissions/{submission_id}/document"]
    if notes:
        lines += [""] + notes
    lines += ["", "Thank you! Please save your submission ID to check the status later."]
    return "\n".join(lines)
