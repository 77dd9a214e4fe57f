"""Room registry and session coordinator.

Every mutation of room or usage state happens while holding a single
``asyncio.Lock``. Work that talks to the outside world (broadcasts and usage
store writes) is queued during the critical section and performed after the
lock is released, so a slow subscriber or store never stalls other rooms.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping

from fastapi import Response

from ..core.errors import QuotaExhaustedError, RoomIdExhaustedError, RoomNotFoundError
from ..core.time import Clock, utcnow
from ..schemas.rooms import (
    ClientTranslationUpdate,
    RoomAccessInfo,
    RoomDiagnostics,
    RoomSummary,
    SessionStatus,
    TranslationUpdate,
)
from ..schemas.speech import BrowserSpeechToken
from . import access
from .broadcaster import TRANSLATION_UPDATE_EVENT, RoomBroadcaster
from .monitor import UsageCheck, UsageMonitor
from .rooms import (
    DEFAULT_STOP_MESSAGE,
    Room,
    build_stop_message,
    generate_access_token,
    generate_pin,
    generate_room_id,
    normalize_pin,
    normalize_room_id,
    normalize_stop_reason,
    normalize_target_language,
    resolve_translated_text,
    try_normalize_room_id,
)
from .speech import SpeechTokenProvider
from .usage import ZERO, UsageLedger, current_period_code, minutes
from .usage_store import MonthlyUsageStore

logger = logging.getLogger(__name__)

STOPPED_ROOM_RETENTION = timedelta(minutes=2)
MONITOR_TICK_INTERVAL = timedelta(seconds=1)
USAGE_PERSIST_INTERVAL = timedelta(minutes=1)
ROOM_ID_ATTEMPTS = 1000

RESTART_REASON = "restart"
FREE_LIMIT_REASON = "free-limit"
FREE_LIMIT_MESSAGE = "Free translation minutes are used up. Session stopped."


@dataclass
class _Outbox:
    """Side effects collected under the gate and flushed after release."""

    notices: list[tuple[str, TranslationUpdate]] = field(default_factory=list)
    usage_snapshot: timedelta | None = None

    def notify(self, room_id: str, update: TranslationUpdate) -> None:
        self.notices.append((room_id, update))

    def persist(self, snapshot: timedelta) -> None:
        self.usage_snapshot = snapshot


class SessionCoordinator:
    """Own all rooms and the account-wide usage ledger."""

    def __init__(
        self,
        *,
        broadcaster: RoomBroadcaster,
        usage_store: MonthlyUsageStore,
        speech: SpeechTokenProvider,
        free_minutes_limit: float,
        clock: Clock = utcnow,
        monitor_tick: timedelta = MONITOR_TICK_INTERVAL,
        persist_interval: timedelta = USAGE_PERSIST_INTERVAL,
        retention: timedelta = STOPPED_ROOM_RETENTION,
    ) -> None:
        self._broadcaster = broadcaster
        self._usage_store = usage_store
        self._speech = speech
        self._clock = clock
        self._retention = retention
        self._gate = asyncio.Lock()
        self._rooms: dict[str, Room] = {}
        self._usage = UsageLedger(
            limit=timedelta(minutes=max(0.0, free_minutes_limit)),
            period_code=current_period_code(clock()),
        )
        self._monitor = UsageMonitor(
            gate=self._gate,
            has_running_rooms=self._has_running_rooms,
            check_usage=self._check_usage,
            tick_interval=monitor_tick,
            persist_interval=persist_interval,
            clock=clock,
        )

    @property
    def broadcaster(self) -> RoomBroadcaster:
        return self._broadcaster

    @property
    def monitor(self) -> UsageMonitor:
        return self._monitor

    # Registry

    async def create_room(self) -> RoomAccessInfo:
        async with self._gate:
            now = self._clock()
            self._prune_expired_stopped_rooms()
            for _ in range(ROOM_ID_ATTEMPTS):
                room_id = generate_room_id()
                if room_id in self._rooms:
                    continue
                room = Room(
                    room_id=room_id,
                    pin=generate_pin(),
                    access_token=generate_access_token(),
                    last_state_changed_at=now,
                )
                self._rooms[room_id] = room
                logger.info("Created room %s", room_id)
                return RoomAccessInfo(room_id=room.room_id, pin=room.pin)

        raise RoomIdExhaustedError("Unable to allocate a unique room ID.")

    async def get_room_access_info(self, room_id: str) -> RoomAccessInfo:
        async with self._gate:
            room = self._get_room(room_id)
            return RoomAccessInfo(room_id=room.room_id, pin=room.pin)

    async def list_rooms(self) -> list[RoomSummary]:
        """Return rooms running-first, then most recently changed."""

        async with self._gate:
            self._prune_expired_stopped_rooms()
            rooms = sorted(
                self._rooms.values(),
                key=lambda room: (room.is_running, room.last_state_changed_at),
                reverse=True,
            )
            return [
                RoomSummary(
                    room_id=room.room_id,
                    is_running=room.is_running,
                    source_language=room.source_language,
                    target_language=room.target_language,
                    last_state_changed_at_utc=room.last_state_changed_at,
                    last_stopped_at_utc=room.last_stopped_at,
                )
                for room in rooms
            ]

    # Access

    async def verify_pin(self, room_id: str, pin: str, response: Response, *, secure: bool) -> bool:
        """Check a display PIN and attach the room's access cookie on success."""

        async with self._gate:
            room = self._get_room(room_id)
            if room.pin != normalize_pin(pin):
                return False
            access.grant_room_access(response, room.room_id, room.access_token, secure=secure, now=self._clock())
            return True

    def has_display_access(self, room_id: str, cookies: Mapping[str, str]) -> bool:
        """Lock-free check used on the static page hot path."""

        normalized = try_normalize_room_id(room_id)
        if normalized is None:
            return False
        room = self._rooms.get(normalized)
        if room is None:
            return False
        return access.cookie_grants_access(cookies, normalized, room.access_token)

    async def get_speech_token(self) -> BrowserSpeechToken:
        return await self._speech.get_token()

    # Sessions

    async def start_session(self, room_id: str, source_language: str, target_language: str | None = None) -> None:
        outbox = _Outbox()
        try:
            async with self._gate:
                await self._ensure_usage_loaded()
                self._roll_over_period()
                room = self._get_room(room_id)
                self._start_room(room, source_language, normalize_target_language(target_language), outbox)
        finally:
            await self._flush(outbox)

    async def set_target_language(self, room_id: str, target_language: str) -> None:
        outbox = _Outbox()
        try:
            async with self._gate:
                await self._ensure_usage_loaded()
                self._roll_over_period()
                room = self._get_room(room_id)
                normalized = normalize_target_language(target_language)
                if room.is_running and room.target_language == normalized:
                    return

                room.target_language = normalized
                if room.is_running:
                    outbox.notify(room.room_id, self._system_update(room, f"Target language switched to {normalized}."))
        finally:
            await self._flush(outbox)

    async def stop_session(self, room_id: str, reason: str | None = None) -> None:
        outbox = _Outbox()
        try:
            async with self._gate:
                await self._ensure_usage_loaded()
                self._roll_over_period()
                room = self._get_room(room_id)
                self._stop_room(room, outbox, message=build_stop_message(reason), reason=reason)
        finally:
            await self._flush(outbox)

    async def publish_update(self, room_id: str, payload: ClientTranslationUpdate) -> None:
        """Relay a recognition result to the room's displays.

        Publishes for a stopped room, or carrying no text at all, are dropped.
        """

        update: TranslationUpdate | None = None
        async with self._gate:
            room = self._get_room(room_id)
            if not room.is_running:
                return

            source_text = (payload.source_text or "").strip() or None
            translations = payload.translations
            # Caption mode: show the source when no translation resolves.
            translated_text = resolve_translated_text(translations, room.target_language) or source_text
            if not source_text and not translated_text and not translations:
                return

            update = TranslationUpdate(
                source_text=source_text,
                translated_text=translated_text,
                source_language=payload.source_language or room.source_language,
                target_language=room.target_language,
                translations=translations,
                is_final=payload.is_final,
                timestamp_utc=self._clock(),
            )
            room.last_client_publish_at = update.timestamp_utc
            room.last_client_source_text = update.source_text
            room.last_client_translated_text = update.translated_text

        await self._deliver(room.room_id, update)

    async def publish_test_caption(self, room_id: str, text: str | None = None) -> None:
        async with self._gate:
            room = self._get_room(room_id)
            now = self._clock()
            caption = text.strip() if text and text.strip() else f"Test caption {now:%H:%M:%S}"
            update = TranslationUpdate(
                source_text=caption,
                translated_text=caption,
                source_language=room.source_language or "en-US",
                target_language=room.target_language,
                translations={room.target_language: caption},
                is_final=True,
                timestamp_utc=now,
            )
            room.last_client_publish_at = now
            room.last_client_source_text = caption
            room.last_client_translated_text = caption

        await self._deliver(room.room_id, update)

    async def get_status(self, room_id: str) -> SessionStatus:
        async with self._gate:
            await self._ensure_usage_loaded()
            self._roll_over_period()
            room = self._get_room(room_id)
            used = self._live_used()
            remaining = self._usage.remaining(used)
            return SessionStatus(
                is_running=room.is_running,
                source_language=room.source_language,
                target_language=room.target_language,
                free_minutes_used=minutes(used),
                free_minutes_limit=minutes(self._usage.limit),
                free_minutes_remaining=minutes(remaining),
                free_limit_reached=remaining <= ZERO,
            )

    async def get_diagnostics(self, room_id: str) -> RoomDiagnostics:
        async with self._gate:
            await self._ensure_usage_loaded()
            self._roll_over_period()
            room = self._get_room(room_id)
            used = self._live_used()
            return RoomDiagnostics(
                room_id=room.room_id,
                is_running=room.is_running,
                source_language=room.source_language,
                target_language=room.target_language,
                last_state_changed_at_utc=room.last_state_changed_at,
                last_stopped_at_utc=room.last_stopped_at,
                last_stop_reason=room.last_stop_reason,
                last_client_publish_at_utc=room.last_client_publish_at,
                last_client_source_text=room.last_client_source_text,
                last_client_translated_text=room.last_client_translated_text,
                active_connections=self._broadcaster.connection_count(room.room_id),
                free_minutes_used=minutes(used),
                free_minutes_remaining=minutes(self._usage.remaining(used)),
                snapshot_utc=self._clock(),
            )

    async def aclose(self) -> None:
        """Stop every running room and write one final usage snapshot."""

        outbox = _Outbox()
        try:
            async with self._gate:
                self._monitor.stop_respawning()
                for room in [room for room in self._rooms.values() if room.is_running]:
                    self._stop_room(room, outbox, persist=False)
                outbox.persist(self._live_used())
        finally:
            await self._flush(outbox)
        await self._monitor.close()

    # Internals; callers hold the gate.

    def _get_room(self, room_id: str) -> Room:
        normalized = normalize_room_id(room_id)
        room = self._rooms.get(normalized)
        if room is None:
            raise RoomNotFoundError(normalized)
        return room

    def _has_running_rooms(self) -> bool:
        return any(room.is_running for room in self._rooms.values())

    def _prune_expired_stopped_rooms(self) -> None:
        cutoff = self._clock() - self._retention
        expired = [
            room_id
            for room_id, room in self._rooms.items()
            if not room.is_running and room.last_stopped_at is not None and room.last_stopped_at <= cutoff
        ]
        for room_id in expired:
            self._rooms.pop(room_id, None)
        if expired:
            logger.info("Pruned %d stopped room(s): %s", len(expired), ", ".join(expired))

    def _live_used(self) -> timedelta:
        running_since = [
            room.session_started_at
            for room in self._rooms.values()
            if room.is_running and room.session_started_at is not None
        ]
        return self._usage.live_used(running_since, self._clock())

    def _roll_over_period(self) -> None:
        now = self._clock()
        if not self._usage.roll_over(now):
            return

        logger.info("Usage period rolled over to %s", self._usage.period_code)
        for room in self._rooms.values():
            if room.is_running:
                room.session_started_at = now

    async def _ensure_usage_loaded(self) -> None:
        if self._usage.loaded:
            return

        try:
            stored = await self._usage_store.get_used()
        except Exception as exc:  # noqa: BLE001 - fall back to zero usage
            logger.warning("Failed to load stored usage: %s", exc)
            stored = ZERO
        self._usage.hydrate(stored, self._clock())

    def _start_room(self, room: Room, source_language: str, target_language: str, outbox: _Outbox) -> None:
        self._speech.ensure_configured()

        now = self._clock()
        if room.is_running:
            self._stop_room(room, outbox, reason=RESTART_REASON, now=now)

        remaining = self._usage.remaining(self._live_used())
        if remaining <= ZERO:
            raise QuotaExhaustedError()

        room.is_running = True
        room.source_language = source_language
        room.target_language = target_language
        room.session_started_at = now
        room.last_state_changed_at = now
        room.last_stopped_at = None
        room.last_stop_reason = None

        self._monitor.ensure_running()
        logger.info("Started room %s (%s -> %s)", room.room_id, source_language, target_language)
        outbox.notify(
            room.room_id,
            self._system_update(
                room,
                f"Microphone stream connected ({source_language} -> {target_language}). "
                f"Free time left: {remaining.total_seconds() / 60:.2f} minutes.",
            ),
        )

    def _stop_room(
        self,
        room: Room,
        outbox: _Outbox,
        *,
        message: str = DEFAULT_STOP_MESSAGE,
        reason: str | None = None,
        persist: bool = True,
        now: datetime | None = None,
    ) -> None:
        now = now or self._clock()
        usage_changed = False
        if room.session_started_at is not None:
            self._usage.capture(room.session_started_at, now)
            usage_changed = True

        room.is_running = False
        room.session_started_at = None
        room.last_state_changed_at = now
        room.last_stopped_at = now
        room.last_stop_reason = normalize_stop_reason(reason)

        logger.info("Stopped room %s (reason: %s)", room.room_id, room.last_stop_reason or "none")
        outbox.notify(room.room_id, self._system_update(room, message))
        if usage_changed and persist:
            outbox.persist(self._live_used())

    async def _check_usage(self, persist_due_at: datetime) -> UsageCheck:
        """One monitor tick: roll over, enforce the quota, decide on persistence."""

        outbox = _Outbox()
        try:
            async with self._gate:
                self._roll_over_period()
                if not self._has_running_rooms():
                    return UsageCheck(keep_running=False)

                used = self._live_used()
                if used >= self._usage.limit:
                    running = [room for room in self._rooms.values() if room.is_running]
                    logger.warning("Free minutes exhausted; stopping %d running room(s)", len(running))
                    for room in running:
                        self._stop_room(room, outbox, message=FREE_LIMIT_MESSAGE, reason=FREE_LIMIT_REASON, persist=False)
                    outbox.persist(self._live_used())
                    return UsageCheck(keep_running=self._has_running_rooms(), persisted=True)

                if self._clock() >= persist_due_at:
                    outbox.persist(used)
                    return UsageCheck(keep_running=True, persisted=True)
                return UsageCheck(keep_running=True)
        finally:
            await self._flush(outbox)

    def _system_update(self, room: Room, message: str) -> TranslationUpdate:
        return TranslationUpdate(
            source_language=room.source_language,
            target_language=room.target_language,
            is_final=True,
            timestamp_utc=self._clock(),
            system_message=message,
        )

    # Side effects; callers must not hold the gate.

    async def _flush(self, outbox: _Outbox) -> None:
        for room_id, update in outbox.notices:
            await self._deliver(room_id, update)
        if outbox.usage_snapshot is not None:
            await self._persist_usage(outbox.usage_snapshot)

    async def _deliver(self, room_id: str, update: TranslationUpdate) -> None:
        try:
            await self._broadcaster.broadcast(
                room_id,
                TRANSLATION_UPDATE_EVENT,
                update.model_dump(mode="json", by_alias=True),
            )
        except Exception as exc:  # noqa: BLE001 - delivery never rolls back committed state
            logger.warning("Failed to broadcast update for room %s: %s", room_id, exc)

    async def _persist_usage(self, snapshot: timedelta) -> None:
        if not self._usage.loaded:
            return
        try:
            await self._usage_store.save_used(snapshot)
        except Exception as exc:  # noqa: BLE001 - store failures are non-fatal
            logger.warning("Failed to persist usage: %s", exc)
