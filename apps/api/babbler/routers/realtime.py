"""Realtime translation channel for presenters and displays."""
from __future__ import annotations

import json
import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ..core.deps import get_coordinator
from ..core.errors import BabblerError
from ..schemas.rooms import ClientTranslationUpdate
from ..services.broadcaster import SubscriberConnection
from ..services.coordinator import SessionCoordinator

PUBLISH_EVENT = "publishClientTranslation"

logger = logging.getLogger(__name__)

router = APIRouter()


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"type": "error", "payload": {"message": message}})


@router.websocket("/translation")
async def translation_channel(
    websocket: WebSocket,
    coordinator: SessionCoordinator = Depends(get_coordinator),
) -> None:
    """Join the room's group and relay presenter publishes to it."""

    room_id = (websocket.query_params.get("roomId") or "").strip().upper() or None
    connection_id = str(uuid4())
    await websocket.accept()

    broadcaster = coordinator.broadcaster
    if room_id:
        await broadcaster.join(room_id, SubscriberConnection(connection_id=connection_id, send=websocket.send_json))

    await websocket.send_json(
        {"type": "connected", "payload": {"connectionId": connection_id, "roomId": room_id}}
    )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await _send_error(websocket, "Message must be JSON.")
                continue

            if not isinstance(message, dict) or message.get("type") != PUBLISH_EVENT:
                continue
            if not room_id:
                await _send_error(websocket, "Room connection is required.")
                continue

            payload = message.get("payload")
            if not isinstance(payload, dict):
                await _send_error(websocket, "Invalid translation payload.")
                continue

            try:
                update = ClientTranslationUpdate.model_validate(payload)
            except ValidationError:
                await _send_error(websocket, "Invalid translation payload.")
                continue

            try:
                await coordinator.publish_update(room_id, update)
            except BabblerError as exc:
                logger.debug("Dropped publish for room %s: %s", room_id, exc)
    except WebSocketDisconnect:
        pass
    finally:
        if room_id:
            await broadcaster.leave(room_id, connection_id)
