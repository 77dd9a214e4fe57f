"""Room records and the pure helpers the coordinator builds on."""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from ..core.errors import InvalidRoomIdError, UnsupportedLanguageError

DEFAULT_TARGET_LANGUAGE = "en"
SUPPORTED_TARGET_LANGUAGES = ("en", "sv", "es", "fr", "de", "it", "ja")

ROOM_ID_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ROOM_ID_LENGTH = 6
ROOM_ID_MIN_LENGTH = 4
ROOM_ID_MAX_LENGTH = 24

DEFAULT_STOP_MESSAGE = "Microphone translation stopped."


@dataclass(slots=True)
class Room:
    """Mutable state for one broadcast room.

    Only the coordinator mutates a room, and only while holding its gate.
    """

    room_id: str
    pin: str
    access_token: str
    last_state_changed_at: datetime
    is_running: bool = False
    source_language: str | None = None
    target_language: str = DEFAULT_TARGET_LANGUAGE
    session_started_at: datetime | None = None
    last_stopped_at: datetime | None = None
    last_stop_reason: str | None = None
    last_client_publish_at: datetime | None = None
    last_client_source_text: str | None = None
    last_client_translated_text: str | None = None


def generate_room_id() -> str:
    return "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


def generate_pin() -> str:
    return f"{100000 + secrets.randbelow(900000):06d}"


def generate_access_token() -> str:
    return secrets.token_hex(32).upper()


def try_normalize_room_id(room_id: str | None) -> str | None:
    """Return the canonical upper-case id, or ``None`` when it is malformed."""

    normalized = (room_id or "").strip().upper()
    if not ROOM_ID_MIN_LENGTH <= len(normalized) <= ROOM_ID_MAX_LENGTH:
        return None
    if not normalized.isalnum():
        return None
    return normalized


def normalize_room_id(room_id: str | None) -> str:
    normalized = try_normalize_room_id(room_id)
    if normalized is None:
        raise InvalidRoomIdError()
    return normalized


def normalize_pin(pin: str | None) -> str:
    return "".join(character for character in pin or "" if character.isdigit())


def normalize_target_language(target_language: str | None) -> str:
    """Lower-case and validate a target tag; blank means the default."""

    if target_language is None or not target_language.strip():
        return DEFAULT_TARGET_LANGUAGE

    normalized = target_language.strip().lower()
    if normalized not in SUPPORTED_TARGET_LANGUAGES:
        raise UnsupportedLanguageError(normalized)
    return normalized


def normalize_stop_reason(reason: str | None) -> str | None:
    if reason is None or not reason.strip():
        return None
    return reason.strip()


def build_stop_message(reason: str | None) -> str:
    normalized = normalize_stop_reason(reason)
    if normalized is None:
        return DEFAULT_STOP_MESSAGE
    return f"{DEFAULT_STOP_MESSAGE} (reason: {normalized})"


def resolve_translated_text(translations: Mapping[str, str] | None, target_language: str) -> str | None:
    """Pick the text to display for ``target_language``.

    Tries an exact key, then a prefix match (``en-US`` for ``en``), then the
    first non-empty value. The last tier can surface a different language when
    the recognizer never produced the target.
    """

    if not translations:
        return None

    target = target_language.lower()
    for key, value in translations.items():
        if key.lower() == target:
            return value

    for key, value in translations.items():
        if key.lower().startswith(target):
            return value

    for value in translations.values():
        if value and value.strip():
            return value

    return None
