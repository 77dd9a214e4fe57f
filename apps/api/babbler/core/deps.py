"""FastAPI dependencies shared by the routers."""
from __future__ import annotations

from fastapi.requests import HTTPConnection

from ..services.coordinator import SessionCoordinator


def get_coordinator(connection: HTTPConnection) -> SessionCoordinator:
    """Return the coordinator created for this application instance."""

    return connection.app.state.coordinator
