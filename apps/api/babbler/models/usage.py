"""Monthly usage model."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonthlyUsage(Base):
    """Seconds of translation time used during one monthly period."""

    __tablename__ = "monthly_usage"

    period_code: Mapped[str] = mapped_column(String(4), primary_key=True)
    used_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
