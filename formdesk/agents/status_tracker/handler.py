"""
Status Tracker. Answers "what's the status of my application".

Looks up a submission reference from the message, else the session's last
submission; otherwise reports progress on the application being filled.
Read-only: the update it returns is always empty.
"""

import logging
from typing import Optional

from ...orchestrator.base_handler import BaseHandler, HandlerResult
from ...orchestrator.state import SessionState, answered_count
from ...services.submissions import find_submission_reference, get_submission, status_label

logger = logging.getLogger(__name__)


class StatusTrackerHandler(BaseHandler):
    name = "status_tracker"
    display_name = "Status Tracker"
    description = "Reports the status of submitted applications and progress on the current one"

    async def handle(
        self,
        user_input: str,
        session: SessionState,
        attachments: Optional[list[dict]] = None,
    ) -> HandlerResult:
        reference = find_submission_reference(user_input) or session.last_submission_id

        if reference:
            try:
                record = await get_submission(reference)
            except Exception as e:
                logger.error("Submission lookup failed (%s): %s", reference, e)
                return HandlerResult(
                    response="Sorry, I can't look up submissions right now. Please try again shortly.",
                    metadata={"reference": reference, "error": "lookup_failed"},
                )

            if record is not None:
                submitted = record.created_at.strftime("%d/%m/%Y") if record.created_at else "recently"
                return HandlerResult(
                    response=(
                        f"The status of your {record.form_name or 'application'} "
                        f"(Submission ID: {record.id}, Form ID: {record.form_id or 'unknown'}) is: "
                        f"**{status_label(record.status)}**. It was submitted on {submitted}. "
                        "You will be notified once it has been processed."
                    ),
                    metadata={"reference": record.id, "status": record.status},
                )

            if reference != session.last_submission_id:
                return HandlerResult(
                    response=(
                        f"I couldn't find a submission with ID {reference}. "
                        "Please check the ID from your confirmation message."
                    ),
                    metadata={"reference": reference, "found": False},
                )

        if session.form_id and session.form_fields:
            total = len(session.form_fields)
            done = answered_count(session.form_fields)
            return HandlerResult(
                response=(
                    f"You haven't submitted your {session.form_name} yet. "
                    f"{done} of {total} fields are filled in."
                ),
                metadata={"form_id": session.form_id, "progress": [done, total]},
            )

        return HandlerResult(
            response=(
                "I couldn't find any submitted applications for this conversation. "
                "If you have a submission ID, share it and I'll look it up."
            ),
            metadata={"found": False},
        )
