"""
Submission repository. Async SQLAlchemy access to submitted applications.
"""

import logging
import re
import uuid
from typing import Optional

from sqlalchemy import select

from ..core.database import session_scope
from ..models.submission import Submission, SubmissionStatus

logger = logging.getLogger(__name__)

SUBMISSION_ID_PATTERN = re.compile(r"\b([0-9A-F]{8})\b", re.IGNORECASE)


def new_submission_id() -> str:
    """Short reference shown to the user, e.g. '3F9A1C2B'."""
    return uuid.uuid4().hex[:8].upper()


def find_submission_reference(text: str) -> Optional[str]:
    """Pull an 8-character submission reference out of free text."""
    for match in SUBMISSION_ID_PATTERN.finditer(text):
        candidate = match.group(1)
        # Require at least one digit so ordinary words like "ACCEPTED" don't match
        if any(ch.isdigit() for ch in candidate):
            return candidate.upper()
    return None


async def save_submission(
    submission_id: str,
    session_id: str,
    form_id: Optional[str],
    form_name: Optional[str],
    field_values: dict,
    artifact_key: Optional[str] = None,
) -> Submission:
    async with session_scope() as db:
        record = Submission(
            id=submission_id,
            session_id=session_id,
            form_id=form_id,
            form_name=form_name,
            field_values=field_values,
            status=SubmissionStatus.UNDER_REVIEW,
            artifact_key=artifact_key,
        )
        db.add(record)
    logger.info("Saved submission %s (form=%s session=%s)", submission_id, form_id, session_id)
    return record


async def get_submission(submission_id: str) -> Optional[Submission]:
    async with session_scope() as db:
        return await db.get(Submission, submission_id.upper())


async def list_submissions_for_session(session_id: str, limit: int = 20) -> list[Submission]:
    async with session_scope() as db:
        result = await db.execute(
            select(Submission)
            .where(Submission.session_id == session_id)
            .order_by(Submission.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


def status_label(status: str) -> str:
    return {
        SubmissionStatus.UNDER_REVIEW: "Under Review",
        SubmissionStatus.APPROVED: "Approved",
        SubmissionStatus.REJECTED: "Rejected",
    }.get(status, status.replace("_", " ").title())
