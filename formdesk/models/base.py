"""Shared columns for persisted records."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RecordBase(Base):
    """String primary key plus created/updated timestamps (UTC)."""

    __abstract__ = True

    # Callers assign ids; there is no generated default
    id: Mapped[str] = mapped_column(String, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, server_default=func.now(), onupdate=_now,
    )
