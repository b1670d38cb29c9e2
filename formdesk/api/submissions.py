"""
Submissions API.

GET /v1/submissions/{submission_id}           Status record
GET /v1/submissions/{submission_id}/document  Rendered PDF
GET /v1/sessions/{session_id}/submissions     Everything a session submitted
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from ..core.storage import get_storage
from ..models.submission import Submission
from ..services.submissions import get_submission, list_submissions_for_session, status_label

submissions_router = APIRouter(tags=["submissions"])


class SubmissionOut(BaseModel):
    id: str
    session_id: str
    form_id: Optional[str] = None
    form_name: Optional[str] = None
    status: str
    status_label: str
    field_values: dict
    has_document: bool
    created_at: Optional[datetime] = None


def _to_out(record: Submission) -> SubmissionOut:
    return SubmissionOut(
        id=record.id,
        session_id=record.session_id,
        form_id=record.form_id,
        form_name=record.form_name,
        status=record.status,
        status_label=status_label(record.status),
        field_values=record.field_values or {},
        has_document=bool(record.artifact_key),
        created_at=record.created_at,
    )


@submissions_router.get("/submissions/{submission_id}", response_model=SubmissionOut)
async def read_submission(submission_id: str):
    record = await get_submission(submission_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    return _to_out(record)


@submissions_router.get("/submissions/{submission_id}/document")
async def read_submission_document(submission_id: str):
    record = await get_submission(submission_id)
    if record is None or not record.artifact_key:
        raise HTTPException(status_code=404, detail="Document not found")
    data = await get_storage().read(record.artifact_key)
    if data is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{record.id}.pdf"'},
    )


@submissions_router.get("/sessions/{session_id}/submissions", response_model=list[SubmissionOut])
async def read_session_submissions(session_id: str, limit: int = 20):
    records = await list_submissions_for_session(session_id, limit=min(limit, 100))
    return [_to_out(r) for r in records]
