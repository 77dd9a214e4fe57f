"""Operator diagnostics endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..core.config import settings
from ..core.deps import get_coordinator
from ..core.time import utcnow
from ..schemas.rooms import ServiceDiagnostics
from ..services.coordinator import SessionCoordinator

router = APIRouter()

MAX_LISTED_ROOM_IDS = 12


@router.get("/diag", response_model=ServiceDiagnostics)
async def service_diagnostics(
    request: Request,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> ServiceDiagnostics:
    """Summarize the process and its rooms."""

    rooms = await coordinator.list_rooms()
    return ServiceDiagnostics(
        utc_now=utcnow(),
        environment=settings.app_env,
        version=request.app.version,
        rooms_count=len(rooms),
        running_rooms_count=sum(1 for room in rooms if room.is_running),
        room_ids=[room.room_id for room in rooms[:MAX_LISTED_ROOM_IDS]],
    )
