"""Data contracts for speech credential endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import Field

from .rooms import CamelModel


class BrowserSpeechToken(CamelModel):
    token: str = Field(..., description="Short-lived authorization token for the browser recognizer")
    region: str = Field(..., description="Speech service region the token is valid for")
    expires_at_utc: datetime
