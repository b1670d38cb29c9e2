"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import RecordBase
from .knowledge import KnowledgeChunk
from .submission import Submission, SubmissionStatus

__all__ = [
    "RecordBase",
    "KnowledgeChunk",
    "Submission", "SubmissionStatus",
]
