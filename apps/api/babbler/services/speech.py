"""Short-lived speech credentials for the browser recognizer."""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

import httpx

from ..core.errors import CredentialFetchError, SpeechNotConfiguredError
from ..core.time import Clock, utcnow
from ..schemas.speech import BrowserSpeechToken

ISSUE_TOKEN_URL = "https://{region}.api.cognitive.microsoft.com/sts/v1.0/issueToken"
TOKEN_LIFETIME = timedelta(minutes=9)
REFRESH_MARGIN = timedelta(minutes=1)
REQUEST_TIMEOUT_SECONDS = 10.0

logger = logging.getLogger(__name__)


class SpeechTokenProvider:
    """Fetch recognizer tokens and reuse them until shortly before expiry."""

    def __init__(
        self,
        key: str,
        region: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._key = key.strip()
        self._region = region.strip()
        self._transport = transport
        self._clock = clock
        self._cached: BrowserSpeechToken | None = None
        self._lock = asyncio.Lock()

    @property
    def configured(self) -> bool:
        return bool(self._key and self._region)

    def ensure_configured(self) -> None:
        if not self.configured:
            raise SpeechNotConfiguredError()

    async def get_token(self) -> BrowserSpeechToken:
        self.ensure_configured()

        async with self._lock:
            cached = self._cached
            if cached is not None and cached.expires_at_utc > self._clock() + REFRESH_MARGIN:
                return cached

        token = await self._fetch_token()

        async with self._lock:
            self._cached = token
        return token

    async def _fetch_token(self) -> BrowserSpeechToken:
        url = ISSUE_TOKEN_URL.format(region=self._region)
        headers = {"Ocp-Apim-Subscription-Key": self._key, "Accept": "text/plain"}

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.post(url, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Speech token request failed: %s", exc)
            raise CredentialFetchError("Failed to fetch browser speech token.") from exc

        token = response.text.strip()
        if response.is_error or not token:
            raise CredentialFetchError(f"Failed to fetch browser speech token ({response.status_code}).")

        return BrowserSpeechToken(
            token=token,
            region=self._region,
            expires_at_utc=self._clock() + TOKEN_LIFETIME,
        )
