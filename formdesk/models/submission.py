"""
Submitted applications. Written by the submission finalizer,
read by the status tracker and the submissions API.
"""

from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class SubmissionStatus:
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"


class Submission(RecordBase):
    __tablename__ = "submissions"

    # id is the short submission reference shown to the user (e.g. "3F9A1C2B")
    session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    form_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    form_name: Mapped[str] = mapped_column(String, nullable=True)
    field_values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=SubmissionStatus.UNDER_REVIEW
    )  # under_review, approved, rejected
    artifact_key: Mapped[str] = mapped_column(String, nullable=True)
