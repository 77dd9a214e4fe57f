"""Room lifecycle, access and session control endpoints."""
from __future__ import annotations

from urllib.parse import quote

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from ..core.deps import get_coordinator
from ..schemas.rooms import (
    CaptionRequest,
    RoomAccessInfo,
    RoomAccessInfoResponse,
    RoomDiagnostics,
    RoomSummary,
    SessionStatus,
    SetTargetRequest,
    StartSessionRequest,
    VerifyPinRequest,
    VerifyPinResponse,
)
from ..services.coordinator import SessionCoordinator

router = APIRouter()


def _error(message: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.get("", response_model=list[RoomSummary])
async def list_rooms(coordinator: SessionCoordinator = Depends(get_coordinator)) -> list[RoomSummary]:
    """Return every live room, running rooms first."""

    return await coordinator.list_rooms()


@router.post("", response_model=RoomAccessInfo)
async def create_room(coordinator: SessionCoordinator = Depends(get_coordinator)) -> RoomAccessInfo:
    """Allocate a new room with its display PIN."""

    return await coordinator.create_room()


@router.get("/{room_id}/access-info", response_model=RoomAccessInfoResponse)
async def get_access_info(
    room_id: str,
    request: Request,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> RoomAccessInfoResponse:
    """Return the room id, PIN and the link displays use to join."""

    info = await coordinator.get_room_access_info(room_id)
    join_url = f"{request.url.scheme}://{request.url.netloc}/join.html?roomId={quote(info.room_id, safe='')}"
    return RoomAccessInfoResponse(room_id=info.room_id, pin=info.pin, join_url=join_url)


@router.post("/{room_id}/access/verify", response_model=VerifyPinResponse)
async def verify_pin(
    room_id: str,
    payload: VerifyPinRequest,
    request: Request,
    response: Response,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> VerifyPinResponse | JSONResponse:
    """Check a display PIN and set the room's access cookie."""

    if not payload.pin or not payload.pin.strip():
        return _error("PIN is required.")

    secure = request.url.scheme == "https"
    if not await coordinator.verify_pin(room_id, payload.pin, response, secure=secure):
        return _error("Invalid PIN.", status.HTTP_401_UNAUTHORIZED)
    return VerifyPinResponse(success=True)


@router.get("/{room_id}/session/status", response_model=SessionStatus)
async def get_status(room_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)) -> SessionStatus:
    """Return running state, languages and free-minute usage."""

    return await coordinator.get_status(room_id)


@router.post("/{room_id}/session/start", response_model=SessionStatus)
async def start_session(
    room_id: str,
    payload: StartSessionRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> SessionStatus | JSONResponse:
    """Start (or restart) translation for the room."""

    if not payload.source_language or not payload.source_language.strip():
        return _error("SourceLanguage is required.")

    await coordinator.start_session(room_id, payload.source_language.strip(), payload.target_language)
    return await coordinator.get_status(room_id)


@router.post("/{room_id}/session/target", response_model=SessionStatus)
async def set_target_language(
    room_id: str,
    payload: SetTargetRequest,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> SessionStatus | JSONResponse:
    """Switch the language shown on the room's displays."""

    if not payload.target_language or not payload.target_language.strip():
        return _error("TargetLanguage is required.")

    await coordinator.set_target_language(room_id, payload.target_language.strip())
    return await coordinator.get_status(room_id)


@router.post("/{room_id}/session/stop", response_model=SessionStatus)
async def stop_session(
    room_id: str,
    reason: str | None = None,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> SessionStatus:
    """Stop translation; ``reason`` is echoed to the displays."""

    await coordinator.stop_session(room_id, reason)
    return await coordinator.get_status(room_id)


@router.get("/{room_id}/diagnostics", response_model=RoomDiagnostics)
async def get_diagnostics(room_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)) -> RoomDiagnostics:
    return await coordinator.get_diagnostics(room_id)


@router.post("/{room_id}/test-caption", status_code=status.HTTP_204_NO_CONTENT)
async def publish_test_caption(
    room_id: str,
    payload: CaptionRequest | None = None,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> Response:
    """Push a sample caption to the room's displays."""

    await coordinator.publish_test_caption(room_id, payload.text if payload else None)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
