"""Speech credential endpoint for the presenter's browser."""
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..core.deps import get_coordinator
from ..schemas.speech import BrowserSpeechToken
from ..services.coordinator import SessionCoordinator

router = APIRouter()


@router.get("/token", response_model=BrowserSpeechToken)
async def get_speech_token(coordinator: SessionCoordinator = Depends(get_coordinator)) -> BrowserSpeechToken:
    """Return a cached or freshly issued recognizer token."""

    return await coordinator.get_speech_token()
