"""Tests for room group fan-out."""
from __future__ import annotations

import pytest

from babbler.services.broadcaster import RoomBroadcaster, SubscriberConnection

from conftest import DummyConnection


@pytest.mark.asyncio
async def test_broadcaster_join_broadcast_leave():
    broadcaster = RoomBroadcaster()
    conn_a = DummyConnection("a")
    conn_b = DummyConnection("b")
    outsider = DummyConnection("c")

    assert await broadcaster.join("ROOM01", SubscriberConnection("a", conn_a.send)) == 1
    assert await broadcaster.join("ROOM01", SubscriberConnection("b", conn_b.send)) == 2
    await broadcaster.join("ROOM02", SubscriberConnection("c", outsider.send))
    assert broadcaster.connection_count("ROOM01") == 2

    await broadcaster.broadcast("ROOM01", "translationUpdate", {"translatedText": "Hej"})
    expected = {"type": "translationUpdate", "payload": {"translatedText": "Hej"}}
    assert conn_a.messages == [expected]
    assert conn_b.messages == [expected]
    assert outsider.messages == []

    await broadcaster.leave("ROOM01", "a")
    await broadcaster.broadcast("ROOM01", "translationUpdate", {"translatedText": "Då"})
    assert conn_a.messages == [expected]
    assert len(conn_b.messages) == 2

    await broadcaster.leave("ROOM01", "b")
    assert broadcaster.connection_count("ROOM01") == 0
    await broadcaster.leave("ROOM01", "b")
    await broadcaster.broadcast("ROOM01", "translationUpdate", {})


@pytest.mark.asyncio
async def test_broadcaster_skips_failing_connection():
    broadcaster = RoomBroadcaster()
    healthy = DummyConnection("healthy")

    async def broken(_message: dict) -> None:
        raise ConnectionError("socket closed")

    await broadcaster.join("ROOM01", SubscriberConnection("broken", broken))
    await broadcaster.join("ROOM01", SubscriberConnection("healthy", healthy.send))

    await broadcaster.broadcast("ROOM01", "translationUpdate", {"sourceText": "Hi"})

    assert healthy.messages == [{"type": "translationUpdate", "payload": {"sourceText": "Hi"}}]
