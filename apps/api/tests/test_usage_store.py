"""Tests for the monthly usage stores."""
from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest

from babbler.db.session import build_engine, build_sessionmaker, create_schema
from babbler.services.usage_store import (
    BitStoreUsageStore,
    InMemoryUsageStore,
    SqlUsageStore,
    decode_used_seconds,
    encode_used_seconds,
    parse_latest_record,
)

from conftest import FakeClock

BASE_URL = "https://bitstore.test"


def test_encoding_uses_period_prefix_and_base36():
    assert encode_used_seconds(0, "2603") == "26030000"
    assert encode_used_seconds(900, "2603") == "260300P0"
    assert encode_used_seconds(1_679_615, "2603") == "2603ZZZZ"

    assert decode_used_seconds("260300P0", "2603") == 900
    assert decode_used_seconds("260200P0", "2603") == 0
    assert decode_used_seconds("2603P0", "2603") is None
    assert decode_used_seconds("2603-_!!", "2603") is None
    assert decode_used_seconds(None, "2603") is None


def test_parse_latest_record_shapes():
    wrapped = parse_latest_record(json.dumps({"record": {"id": 7, "value": "260300P0"}}))
    bare = parse_latest_record(json.dumps({"id": 8, "value": "26030001"}))

    assert (wrapped.record_id, wrapped.encoded_value) == (7, "260300P0")
    assert (bare.record_id, bare.encoded_value) == (8, "26030001")
    assert parse_latest_record("").record_id is None
    assert parse_latest_record("not json").encoded_value == ""
    assert parse_latest_record(json.dumps({"record": {"id": 7}})).record_id is None


@pytest.mark.asyncio
async def test_in_memory_store_forgets_previous_month():
    clock = FakeClock()
    store = InMemoryUsageStore(clock)
    assert await store.get_used() == timedelta(0)

    await store.save_used(timedelta(seconds=90.4))
    assert await store.get_used() == timedelta(seconds=90)

    clock.advance(days=30)
    assert await store.get_used() == timedelta(0)


class FakeBitStore:
    """Minimal bucket with one record; enough for the store's read/write flow."""

    def __init__(self) -> None:
        self.records: dict[int, str] = {}
        self.requests: list[httpx.Request] = []
        self.next_id = 1
        self.fail_reads = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if self.fail_reads and request.method == "GET":
            return httpx.Response(500)
        if request.method != "GET" and request.headers.get("X-BitStore-Key") != "write-key":
            return httpx.Response(401)

        if request.method == "GET" and path == "/api/buckets/usage/latest":
            if not self.records:
                return httpx.Response(404)
            record_id = max(self.records)
            return httpx.Response(200, json={"record": {"id": record_id, "value": self.records[record_id]}})
        if request.method == "POST" and path == "/api/buckets/usage/records":
            record_id = self.next_id
            self.next_id += 1
            self.records[record_id] = json.loads(request.content)["value"]
            return httpx.Response(201, json={"id": record_id})
        if request.method == "PUT" and path.startswith("/api/buckets/usage/records/"):
            record_id = int(path.rsplit("/", 1)[1])
            if record_id not in self.records:
                return httpx.Response(404)
            self.records[record_id] = json.loads(request.content)["value"]
            return httpx.Response(200, json={"id": record_id})
        return httpx.Response(404)


def _bitstore(fake: FakeBitStore, clock: FakeClock, **overrides) -> BitStoreUsageStore:
    options = {
        "enabled": True,
        "base_url": BASE_URL + "/",
        "bucket_slug": "usage",
        "write_key": "write-key",
        "transport": httpx.MockTransport(fake.handler),
        "clock": clock,
    }
    options.update(overrides)
    return BitStoreUsageStore(**options)


@pytest.mark.asyncio
async def test_bitstore_creates_then_updates_record():
    fake = FakeBitStore()
    clock = FakeClock()
    store = _bitstore(fake, clock)

    assert await store.get_used() == timedelta(0)

    await store.save_used(timedelta(minutes=15))
    assert fake.records == {1: "260300P0"}

    await store.save_used(timedelta(minutes=16))
    assert fake.records == {1: "260300QO"}
    assert [request.method for request in fake.requests] == ["GET", "POST", "PUT"]

    assert await store.get_used() == timedelta(minutes=16)


@pytest.mark.asyncio
async def test_bitstore_recreates_deleted_record():
    fake = FakeBitStore()
    clock = FakeClock()
    store = _bitstore(fake, clock)

    await store.save_used(timedelta(seconds=10))
    fake.records.clear()
    await store.save_used(timedelta(seconds=20))

    assert fake.records == {2: "2603000K"}


@pytest.mark.asyncio
async def test_bitstore_ignores_other_months_and_clamps():
    fake = FakeBitStore()
    fake.records[1] = "260200P0"
    clock = FakeClock()
    store = _bitstore(fake, clock)

    assert await store.get_used() == timedelta(0)

    await store.save_used(timedelta(days=30))
    assert fake.records[1] == "2603ZZZZ"


@pytest.mark.asyncio
async def test_bitstore_degrades_on_errors():
    fake = FakeBitStore()
    fake.fail_reads = True
    store = _bitstore(fake, FakeClock())

    assert await store.get_used() == timedelta(0)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    offline = _bitstore(fake, FakeClock(), transport=httpx.MockTransport(unreachable))
    assert await offline.get_used() == timedelta(0)
    await offline.save_used(timedelta(minutes=1))


@pytest.mark.asyncio
async def test_bitstore_disabled_or_read_only_makes_no_requests():
    fake = FakeBitStore()
    disabled = _bitstore(fake, FakeClock(), enabled=False)
    read_only = _bitstore(fake, FakeClock(), write_key=" ")

    assert disabled.can_read is False
    assert await disabled.get_used() == timedelta(0)
    assert read_only.can_read is True
    assert read_only.can_write is False
    await read_only.save_used(timedelta(minutes=1))

    assert fake.requests == []


@pytest.mark.asyncio
async def test_sql_store_round_trip():
    clock = FakeClock()
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    store = SqlUsageStore(build_sessionmaker(engine), clock)

    try:
        assert await store.get_used() == timedelta(0)

        await store.save_used(timedelta(minutes=4))
        await store.save_used(timedelta(minutes=5, seconds=30))
        assert await store.get_used() == timedelta(minutes=5, seconds=30)

        clock.advance(days=30)
        assert await store.get_used() == timedelta(0)
    finally:
        await engine.dispose()
