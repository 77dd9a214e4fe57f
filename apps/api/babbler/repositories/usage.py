"""Usage repository helpers for the SQL-backed usage store."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.usage import MonthlyUsage


async def get_by_period(session: AsyncSession, period_code: str) -> MonthlyUsage | None:
    """Return the usage row for a monthly period."""

    return await session.get(MonthlyUsage, period_code)


async def save_used_seconds(
    session: AsyncSession,
    *,
    period_code: str,
    used_seconds: int,
    updated_at: datetime,
) -> MonthlyUsage:
    """Create or update the usage row for a period."""

    usage = await session.get(MonthlyUsage, period_code)
    if usage is None:
        usage = MonthlyUsage(period_code=period_code)
        session.add(usage)

    usage.used_seconds = used_seconds
    usage.updated_at = updated_at
    await session.flush()
    return usage
