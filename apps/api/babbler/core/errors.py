"""Domain errors raised by the room coordinator and its collaborators."""
from __future__ import annotations


class BabblerError(Exception):
    """Base class for failures that are reported back to the caller."""


class RoomNotFoundError(BabblerError):
    """Raised when a normalized room id is not in the registry."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room '{room_id}' was not found.")
        self.room_id = room_id


class InvalidRoomIdError(BabblerError):
    """Raised when a room id fails normalization."""

    def __init__(self) -> None:
        super().__init__("Room ID is invalid.")


class UnsupportedLanguageError(BabblerError):
    """Raised when a target language is outside the supported set."""

    def __init__(self, language: str) -> None:
        super().__init__(f"Target language '{language}' is not supported.")
        self.language = language


class QuotaExhaustedError(BabblerError):
    """Raised when a session start is attempted with no free time left."""

    def __init__(self) -> None:
        super().__init__("Free translation minutes are exhausted. Start is blocked.")


class SpeechNotConfiguredError(BabblerError):
    """Raised when speech credentials are required but not configured."""

    def __init__(self) -> None:
        super().__init__("Speech key and region must be set in configuration before starting.")


class CredentialFetchError(BabblerError):
    """Raised when the speech token endpoint fails or returns an empty body."""


class RoomIdExhaustedError(RuntimeError):
    """Raised when no unique room id could be allocated."""
