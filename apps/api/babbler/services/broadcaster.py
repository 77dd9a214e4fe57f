"""In-memory fan-out of realtime events to room subscriber groups."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

SendCallable = Callable[[dict], Awaitable[None]]

TRANSLATION_UPDATE_EVENT = "translationUpdate"

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubscriberConnection:
    """Connection wrapper for display and presenter clients."""

    connection_id: str
    send: SendCallable


class RoomBroadcaster:
    """Manage room groups and deliver events to every member."""

    def __init__(self) -> None:
        self._groups: Dict[str, Dict[str, SubscriberConnection]] = {}
        self._lock = asyncio.Lock()

    async def join(self, room_id: str, connection: SubscriberConnection) -> int:
        """Add a connection to the room's group and return the group size."""

        async with self._lock:
            members = self._groups.setdefault(room_id, {})
            members[connection.connection_id] = connection
            return len(members)

    async def leave(self, room_id: str, connection_id: str) -> None:
        """Remove a connection from the room, cleaning up empty groups."""

        async with self._lock:
            members = self._groups.get(room_id)
            if not members:
                return
            members.pop(connection_id, None)
            if not members:
                self._groups.pop(room_id, None)

    def connection_count(self, room_id: str) -> int:
        return len(self._groups.get(room_id, {}))

    async def broadcast(self, room_id: str, event: str, payload: Any) -> None:
        """Send an event to every connection in the room.

        A failing connection is logged and skipped; the others still receive
        the message.
        """

        async with self._lock:
            members = list(self._groups.get(room_id, {}).values())

        if not members:
            return

        message = {"type": event, "payload": payload}
        results = await asyncio.gather(
            *(connection.send(message) for connection in members),
            return_exceptions=True,
        )
        for connection, result in zip(members, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Failed to deliver %s to connection %s in room %s: %s",
                    event,
                    connection.connection_id,
                    room_id,
                    result,
                )
