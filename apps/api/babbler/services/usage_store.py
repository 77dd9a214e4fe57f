"""Durable record of free-minute usage for the current monthly period.

Every store degrades instead of failing: a read that cannot reach the backend
reports zero usage and a failed write is logged and skipped, so quota
enforcement keeps working from in-memory state.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.time import Clock, utcnow
from ..repositories import usage as usage_repo
from .usage import current_period_code

logger = logging.getLogger(__name__)

MAX_ENCODED_SECONDS = 1_679_615  # "ZZZZ" in base 36
BASE36_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
BITSTORE_TIMEOUT_SECONDS = 8.0


class MonthlyUsageStore(Protocol):
    async def get_used(self) -> timedelta:
        ...

    async def save_used(self, used: timedelta) -> None:
        ...


class InMemoryUsageStore:
    """Process-local store; forgets usage on restart."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._period_code: str | None = None
        self._used_seconds = 0

    async def get_used(self) -> timedelta:
        if self._period_code != current_period_code(self._clock()):
            return timedelta(0)
        return timedelta(seconds=self._used_seconds)

    async def save_used(self, used: timedelta) -> None:
        self._period_code = current_period_code(self._clock())
        self._used_seconds = max(0, round(used.total_seconds()))


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("Value must be non-negative.")
    if value == 0:
        return "0"

    digits: list[str] = []
    while value > 0:
        value, index = divmod(value, 36)
        digits.append(BASE36_ALPHABET[index])
    return "".join(reversed(digits))


def encode_used_seconds(used_seconds: int, period_code: str) -> str:
    """Encode as ``yyMM`` followed by four base-36 digits."""

    return f"{period_code}{to_base36(used_seconds).rjust(4, '0')}"


def decode_used_seconds(encoded: str | None, period_code: str) -> int | None:
    """Return seconds for ``period_code``, zero for another month, ``None`` if malformed."""

    trimmed = (encoded or "").strip()
    if len(trimmed) != 8:
        return None
    if trimmed[:4] != period_code:
        return 0

    digits = trimmed[4:]
    if not (digits.isascii() and digits.isalnum()):
        return None
    return int(digits, 36)


@dataclass(slots=True)
class LatestRecord:
    record_id: int | None
    encoded_value: str


def _extract_record_id(element: Any) -> int | None:
    if not isinstance(element, dict):
        return None
    record_id = element.get("id")
    if isinstance(record_id, int) and not isinstance(record_id, bool):
        return record_id
    if "record" in element:
        return _extract_record_id(element["record"])
    return None


def _extract_value(element: Any) -> str | None:
    if isinstance(element, str):
        return element if element.strip() else None
    if isinstance(element, dict):
        value = element.get("value")
        if isinstance(value, str) and value.strip():
            return value
    return None


def parse_latest_record(payload: str) -> LatestRecord:
    """Accept ``{"record": {...}}`` or a bare record object."""

    empty = LatestRecord(None, "")
    if not payload or not payload.strip():
        return empty

    try:
        root = json.loads(payload)
    except ValueError:
        return empty

    if isinstance(root, dict) and "record" in root:
        record = root["record"]
        record_id = _extract_record_id(record)
        value = _extract_value(record)
        if record_id is not None and value is not None:
            return LatestRecord(record_id, value)
        return empty

    record_id = _extract_record_id(root)
    value = _extract_value(root)
    if record_id is not None and value is not None:
        return LatestRecord(record_id, value)
    return empty


class BitStoreUsageStore:
    """Usage kept as a single encoded record in a BitStore bucket."""

    def __init__(
        self,
        *,
        enabled: bool,
        base_url: str,
        bucket_slug: str,
        write_key: str,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._enabled = enabled
        self._base_url = (base_url or "").strip().rstrip("/")
        self._bucket_slug = (bucket_slug or "").strip()
        self._write_key = (write_key or "").strip()
        self._transport = transport
        self._clock = clock
        self._cache_lock = asyncio.Lock()
        self._cached_record_id: int | None = None
        self._record_cache_loaded = False

    @property
    def can_read(self) -> bool:
        return self._enabled and bool(self._base_url) and bool(self._bucket_slug)

    @property
    def can_write(self) -> bool:
        return self.can_read and bool(self._write_key)

    async def get_used(self) -> timedelta:
        if not self.can_read:
            return timedelta(0)

        try:
            async with self._client() as client:
                latest = await self._get_latest_record(client)
            async with self._cache_lock:
                self._cached_record_id = latest.record_id
                self._record_cache_loaded = True

            used_seconds = decode_used_seconds(latest.encoded_value, current_period_code(self._clock()))
            if used_seconds is None:
                logger.warning("BitStore usage payload had invalid format: %s", latest.encoded_value)
                return timedelta(0)
            return timedelta(seconds=used_seconds)
        except Exception as exc:  # noqa: BLE001 - store failures must not fail requests
            logger.warning("Failed to load usage from BitStore: %s", exc)
            return timedelta(0)

    async def save_used(self, used: timedelta) -> None:
        if not self.can_write:
            return

        try:
            seconds = min(max(round(used.total_seconds()), 0), MAX_ENCODED_SECONDS)
            encoded = encode_used_seconds(seconds, current_period_code(self._clock()))
            async with self._cache_lock, self._client() as client:
                if not self._record_cache_loaded:
                    latest = await self._get_latest_record(client)
                    self._cached_record_id = latest.record_id
                    self._record_cache_loaded = True

                if self._cached_record_id is not None:
                    if await self._try_update_record(client, self._cached_record_id, encoded):
                        return

                self._cached_record_id = await self._create_record(client, encoded)
        except Exception as exc:  # noqa: BLE001 - store failures must not fail requests
            logger.warning("Failed to save usage to BitStore: %s", exc)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=BITSTORE_TIMEOUT_SECONDS)

    def _url(self, suffix: str) -> str:
        return f"{self._base_url}/api/buckets/{quote(self._bucket_slug, safe='')}/{suffix}"

    async def _get_latest_record(self, client: httpx.AsyncClient) -> LatestRecord:
        response = await client.get(self._url("latest"))
        if response.status_code == httpx.codes.NOT_FOUND:
            return LatestRecord(None, "")
        if response.is_error:
            logger.warning("BitStore usage read failed. Status: %s", response.status_code)
            return LatestRecord(None, "")
        return parse_latest_record(response.text)

    async def _try_update_record(self, client: httpx.AsyncClient, record_id: int, encoded: str) -> bool:
        response = await client.put(
            self._url(f"records/{record_id}"),
            headers={"X-BitStore-Key": self._write_key},
            json={"value": encoded},
        )
        if response.is_success:
            return True
        if response.status_code == httpx.codes.NOT_FOUND:
            logger.info("BitStore usage record %s no longer exists. Recreating.", record_id)
            return False

        logger.warning(
            "BitStore usage update failed. Status: %s. Body: %s",
            response.status_code,
            response.text,
        )
        return False

    async def _create_record(self, client: httpx.AsyncClient, encoded: str) -> int | None:
        response = await client.post(
            self._url("records"),
            headers={"X-BitStore-Key": self._write_key},
            json={"value": encoded},
        )
        if response.is_error:
            logger.warning(
                "BitStore usage create failed. Status: %s. Body: %s",
                response.status_code,
                response.text,
            )
            return None

        try:
            record_id = _extract_record_id(response.json())
        except ValueError:
            record_id = None
        if record_id is None:
            logger.warning("BitStore usage create response did not include record id.")
        return record_id


class SqlUsageStore:
    """Usage kept as one row per monthly period in a SQL database."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], clock: Clock = utcnow) -> None:
        self._sessionmaker = sessionmaker
        self._clock = clock

    async def get_used(self) -> timedelta:
        try:
            async with self._sessionmaker() as session:
                usage = await usage_repo.get_by_period(session, current_period_code(self._clock()))
        except Exception as exc:  # noqa: BLE001 - store failures must not fail requests
            logger.warning("Failed to load usage from database: %s", exc)
            return timedelta(0)

        if usage is None:
            return timedelta(0)
        return timedelta(seconds=max(0, usage.used_seconds))

    async def save_used(self, used: timedelta) -> None:
        now = self._clock()
        try:
            async with self._sessionmaker() as session, session.begin():
                await usage_repo.save_used_seconds(
                    session,
                    period_code=current_period_code(now),
                    used_seconds=max(0, round(used.total_seconds())),
                    updated_at=now,
                )
        except Exception as exc:  # noqa: BLE001 - store failures must not fail requests
            logger.warning("Failed to save usage to database: %s", exc)
