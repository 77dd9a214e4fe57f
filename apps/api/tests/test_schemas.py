"""Tests for wire parsing and the pure room helpers."""
from __future__ import annotations

import pytest

from babbler.core.errors import InvalidRoomIdError, UnsupportedLanguageError
from babbler.schemas.rooms import (
    CaptionRequest,
    ClientTranslationUpdate,
    SetTargetRequest,
    StartSessionRequest,
    TranslationUpdate,
    VerifyPinRequest,
)
from babbler.services.rooms import (
    build_stop_message,
    generate_access_token,
    normalize_pin,
    normalize_room_id,
    normalize_target_language,
    resolve_translated_text,
    try_normalize_room_id,
)

from conftest import START


@pytest.mark.parametrize(
    "payload",
    [
        {"sourceText": "Hello", "isFinal": True, "translations": {"sv": "Hej"}},
        {"SourceText": "Hello", "IsFinal": "true", "Translations": {"sv": "Hej"}},
        {"source_text": "Hello", "is_final": 1, "translations": {"sv": " Hej "}},
    ],
)
def test_client_update_keys_are_case_insensitive(payload):
    update = ClientTranslationUpdate.model_validate(payload)

    assert update.source_text == "Hello"
    assert update.is_final is True
    assert update.translations == {"sv": "Hej"}


def test_client_update_tolerates_odd_values():
    update = ClientTranslationUpdate.model_validate(
        {
            "sourceText": 42,
            "sourceLanguage": None,
            "isFinal": "yes",
            "translations": {"sv": "  ", " ": "Hej", "de": None},
            "unknown": "ignored",
        }
    )

    assert update.source_text == "42"
    assert update.source_language is None
    assert update.is_final is False
    assert update.translations is None
    assert ClientTranslationUpdate.model_validate({"translations": ["sv"]}).translations is None


def test_translation_update_serializes_camel_case():
    update = TranslationUpdate(source_text="Hi", timestamp_utc=START, system_message="note")

    data = update.model_dump(mode="json", by_alias=True)

    assert data["sourceText"] == "Hi"
    assert data["systemMessage"] == "note"
    assert data["isFinal"] is False
    assert data["timestampUtc"].startswith("2026-03-15T12:00:00")


def test_room_id_normalization():
    assert normalize_room_id("  abcd23 ") == "ABCD23"
    assert try_normalize_room_id("abc") is None
    assert try_normalize_room_id("A" * 25) is None
    assert try_normalize_room_id("ABC-12") is None
    assert try_normalize_room_id(None) is None
    with pytest.raises(InvalidRoomIdError):
        normalize_room_id("")


def test_pin_and_token_helpers():
    assert normalize_pin(" 12 34-56 ") == "123456"
    assert normalize_pin(None) == ""

    token = generate_access_token()
    assert len(token) == 64
    assert int(token, 16) >= 0
    assert token == token.upper()


def test_target_language_normalization():
    assert normalize_target_language(None) == "en"
    assert normalize_target_language(" SV ") == "sv"
    with pytest.raises(UnsupportedLanguageError):
        normalize_target_language("en-US")


def test_stop_message():
    assert build_stop_message(None) == "Microphone translation stopped."
    assert build_stop_message("   ") == "Microphone translation stopped."
    assert build_stop_message(" restart ") == "Microphone translation stopped. (reason: restart)"


def test_resolve_translated_text_tiers():
    assert resolve_translated_text({"SV": "Hej", "sv-SE": "Hejsan"}, "sv") == "Hej"
    assert resolve_translated_text({"de": "Hallo", "sv-SE": "Hejsan"}, "sv") == "Hejsan"
    assert resolve_translated_text({"de": " ", "fr": "Bonjour"}, "sv") == "Bonjour"
    assert resolve_translated_text({}, "sv") is None
    assert resolve_translated_text(None, "sv") is None


def test_request_bodies_match_keys_case_insensitively():
    start = StartSessionRequest.model_validate({"SourceLanguage": "en-US", "TARGETLANGUAGE": "sv"})
    target = SetTargetRequest.model_validate({"target_language": "de"})
    pin = VerifyPinRequest.model_validate({"Pin": "123456"})
    caption = CaptionRequest.model_validate({"Text": "Hello"})

    assert (start.source_language, start.target_language) == ("en-US", "sv")
    assert target.target_language == "de"
    assert pin.pin == "123456"
    assert caption.text == "Hello"
