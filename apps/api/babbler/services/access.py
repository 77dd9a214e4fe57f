"""Display access cookies issued after a successful PIN check."""
from __future__ import annotations

import hmac
from datetime import datetime, timedelta
from typing import Mapping

from fastapi import Response

ACCESS_COOKIE_PREFIX = "babbler_display_access_"
ACCESS_COOKIE_LIFETIME = timedelta(hours=12)


def access_cookie_name(room_id: str) -> str:
    return f"{ACCESS_COOKIE_PREFIX}{room_id.lower()}"


def grant_room_access(
    response: Response,
    room_id: str,
    access_token: str,
    *,
    secure: bool,
    now: datetime,
) -> None:
    """Attach the room's access cookie to ``response``."""

    response.set_cookie(
        key=access_cookie_name(room_id),
        value=access_token,
        max_age=int(ACCESS_COOKIE_LIFETIME.total_seconds()),
        expires=now + ACCESS_COOKIE_LIFETIME,
        httponly=True,
        secure=secure,
        samesite="lax",
    )


def cookie_grants_access(cookies: Mapping[str, str], room_id: str, access_token: str) -> bool:
    """Compare the room's cookie against its token in constant time."""

    provided = cookies.get(access_cookie_name(room_id))
    if not provided or not provided.strip():
        return False

    provided_bytes = provided.encode("utf-8")
    expected_bytes = access_token.encode("utf-8")
    if len(provided_bytes) != len(expected_bytes):
        return False
    return hmac.compare_digest(provided_bytes, expected_bytes)
