"""Wire contracts for rooms, sessions and realtime translation updates."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoomAccessInfo(CamelModel):
    room_id: str
    pin: str


class RoomAccessInfoResponse(RoomAccessInfo):
    join_url: str


class RoomSummary(CamelModel):
    room_id: str
    is_running: bool
    source_language: str | None = None
    target_language: str | None = None
    last_state_changed_at_utc: datetime
    last_stopped_at_utc: datetime | None = None


class SessionStatus(CamelModel):
    is_running: bool
    source_language: str | None = None
    target_language: str | None = None
    free_minutes_used: float
    free_minutes_limit: float
    free_minutes_remaining: float
    free_limit_reached: bool


class RoomDiagnostics(CamelModel):
    room_id: str
    is_running: bool
    source_language: str | None = None
    target_language: str | None = None
    last_state_changed_at_utc: datetime
    last_stopped_at_utc: datetime | None = None
    last_stop_reason: str | None = None
    last_client_publish_at_utc: datetime | None = None
    last_client_source_text: str | None = None
    last_client_translated_text: str | None = None
    active_connections: int
    free_minutes_used: float
    free_minutes_remaining: float
    snapshot_utc: datetime


class ServiceDiagnostics(CamelModel):
    utc_now: datetime
    environment: str
    version: str
    rooms_count: int
    running_rooms_count: int
    room_ids: list[str]


class TranslationUpdate(CamelModel):
    """Payload of the ``translationUpdate`` event sent to display clients."""

    source_text: str | None = None
    translated_text: str | None = None
    source_language: str | None = None
    target_language: str | None = None
    translations: dict[str, str] | None = None
    is_final: bool = False
    timestamp_utc: datetime
    system_message: str | None = None


class InboundModel(CamelModel):
    """Client payload whose keys match without regard to case or underscores.

    ``sourceText``, ``SourceText`` and ``source_text`` all land on the same
    field; unknown keys are ignored.
    """

    @model_validator(mode="before")
    @classmethod
    def _match_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data

        lookup = {name.replace("_", ""): name for name in cls.model_fields}
        matched: dict[str, Any] = {}
        for key, value in data.items():
            if not isinstance(key, str):
                continue
            field_name = lookup.get(key.replace("_", "").lower())
            if field_name is not None:
                matched.setdefault(field_name, value)
        return matched


class ClientTranslationUpdate(InboundModel):
    """Recognition result published by the presenter's browser."""

    source_text: str | None = None
    source_language: str | None = None
    is_final: bool = False
    translations: dict[str, str] | None = None

    @field_validator("source_text", "source_language", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("is_final", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value != 0
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return False

    @field_validator("translations", mode="before")
    @classmethod
    def _clean_translations(cls, value: Any) -> dict[str, str] | None:
        if not isinstance(value, dict):
            return None

        cleaned: dict[str, str] = {}
        for key, item in value.items():
            name = str(key).strip() if key is not None else ""
            text = (item if isinstance(item, str) else str(item)).strip() if item is not None else ""
            if not name or not text:
                continue
            cleaned[name] = text
        return cleaned or None


class VerifyPinRequest(InboundModel):
    pin: str | None = None


class VerifyPinResponse(CamelModel):
    success: bool


class StartSessionRequest(InboundModel):
    source_language: str | None = None
    target_language: str | None = None


class SetTargetRequest(InboundModel):
    target_language: str | None = None


class CaptionRequest(InboundModel):
    text: str | None = Field(default=None, description="Caption text; a timestamped sample when omitted")
