"""Background loop that enforces the free-minute quota while rooms run."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from ..core.time import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UsageCheck:
    """Outcome of one monitor tick."""

    keep_running: bool
    persisted: bool = False


UsageCheckCallable = Callable[[datetime], Awaitable[UsageCheck]]


class UsageMonitor:
    """Supervised task that ticks while at least one room is running.

    The task is spawned lazily by :meth:`ensure_running`, exits on its own once
    no room is running, and respawns itself on exit if a room started in the
    meantime. ``ensure_running`` must be called with ``gate`` held.
    """

    def __init__(
        self,
        *,
        gate: asyncio.Lock,
        has_running_rooms: Callable[[], bool],
        check_usage: UsageCheckCallable,
        tick_interval: timedelta,
        persist_interval: timedelta,
        clock: Clock = utcnow,
    ) -> None:
        self._gate = gate
        self._has_running_rooms = has_running_rooms
        self._check_usage = check_usage
        self._tick_seconds = tick_interval.total_seconds()
        self._persist_interval = persist_interval
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def ensure_running(self) -> None:
        if self._closing or self._task is not None or not self._has_running_rooms():
            return
        next_persist_at = self._clock() + self._persist_interval
        self._task = asyncio.create_task(self._run(next_persist_at), name="usage-monitor")

    def stop_respawning(self) -> None:
        self._closing = True

    async def close(self) -> None:
        """Cancel the loop and keep it from respawning."""

        self.stop_respawning()
        task = self._task
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _run(self, next_persist_at: datetime) -> None:
        current = asyncio.current_task()
        try:
            while True:
                await asyncio.sleep(self._tick_seconds)
                check = await self._check_usage(next_persist_at)
                if check.persisted:
                    next_persist_at = self._clock() + self._persist_interval
                if not check.keep_running:
                    return
        except asyncio.CancelledError:
            logger.debug("Usage monitor cancelled")
            raise
        except Exception:  # noqa: BLE001 - loop failures are logged and the loop is respawned
            logger.exception("Background usage persistence loop failed")
        finally:
            async with self._gate:
                if self._task is current:
                    self._task = None
                self.ensure_running()
