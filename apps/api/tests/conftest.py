"""Shared fixtures: a controllable clock and a coordinator wired to it."""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from babbler.services.broadcaster import RoomBroadcaster, SubscriberConnection
from babbler.services.coordinator import SessionCoordinator
from babbler.services.speech import SpeechTokenProvider
from babbler.services.usage_store import InMemoryUsageStore

START = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class DummyConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send(self, message: dict) -> None:
        self.messages.append(message)

    @property
    def system_messages(self) -> list[str]:
        return [
            message["payload"]["systemMessage"]
            for message in self.messages
            if message["payload"].get("systemMessage")
        ]


class CountingUsageStore(InMemoryUsageStore):
    """In-memory store that records how often usage was written."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(clock)
        self.saves = 0

    async def save_used(self, used: timedelta) -> None:
        await super().save_used(used)
        self.saves += 1


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def usage_store(clock: FakeClock) -> CountingUsageStore:
    return CountingUsageStore(clock)


@pytest.fixture
def make_coordinator(clock: FakeClock, usage_store: CountingUsageStore):
    def factory(**overrides) -> SessionCoordinator:
        options = {
            "broadcaster": RoomBroadcaster(),
            "usage_store": usage_store,
            "speech": SpeechTokenProvider("test-key", "westeurope", clock=clock),
            "free_minutes_limit": 15,
            "clock": clock,
            # Real sleeps between ticks; the fake clock decides how much time passed.
            "monitor_tick": timedelta(milliseconds=10),
        }
        options.update(overrides)
        coordinator = SessionCoordinator(**options)
        return coordinator

    return factory


@pytest.fixture
def coordinator(make_coordinator) -> SessionCoordinator:
    return make_coordinator()


async def subscribe(coordinator: SessionCoordinator, room_id: str, connection_id: str = "display") -> DummyConnection:
    connection = DummyConnection(connection_id)
    await coordinator.broadcaster.join(room_id, SubscriberConnection(connection_id, connection.send))
    return connection


async def wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
