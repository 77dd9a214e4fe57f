"""Account-wide free-minute accounting shared by all rooms."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable

ZERO = timedelta(0)


def current_period_code(now: datetime) -> str:
    """Return the monthly period key (``yyMM``, UTC) for ``now``."""

    return now.astimezone(timezone.utc).strftime("%y%m")


def minutes(value: timedelta) -> float:
    return round(value.total_seconds() / 60, 2)


@dataclass
class UsageLedger:
    """Stored usage for the current period plus the quota it is measured against.

    ``used`` only holds time from sessions that have already stopped; time of
    running sessions is added on demand by :meth:`live_used`.
    """

    limit: timedelta
    used: timedelta = ZERO
    period_code: str = field(default="")
    loaded: bool = False

    def clamp(self, value: timedelta) -> timedelta:
        if value > self.limit:
            value = self.limit
        return value if value > ZERO else ZERO

    def hydrate(self, stored: timedelta, now: datetime) -> None:
        self.used = self.clamp(stored)
        self.period_code = current_period_code(now)
        self.loaded = True

    def capture(self, started_at: datetime, now: datetime) -> None:
        self.used = self.clamp(self.used + (now - started_at))

    def live_used(self, running_since: Iterable[datetime], now: datetime) -> timedelta:
        total = self.used
        for started_at in running_since:
            total += now - started_at
        return self.clamp(total)

    def remaining(self, used: timedelta) -> timedelta:
        if self.limit <= ZERO:
            return ZERO
        remaining = self.limit - used
        return remaining if remaining > ZERO else ZERO

    def roll_over(self, now: datetime) -> bool:
        """Reset usage when the calendar month changed; return whether it did."""

        code = current_period_code(now)
        if code == self.period_code:
            return False
        self.period_code = code
        self.used = ZERO
        return True
