"""
Knowledge base passages. Rebuilt from KNOWLEDGE_PATH by services.knowledge,
searched with Postgres full-text search (ILIKE elsewhere).
"""

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import RecordBase


class KnowledgeChunk(RecordBase):
    __tablename__ = "knowledge_chunks"

    source: Mapped[str] = mapped_column(String, nullable=False, index=True)  # path relative to KNOWLEDGE_PATH
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # chunk order within the source
    content: Mapped[str] = mapped_column(Text, nullable=False)
