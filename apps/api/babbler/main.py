"""FastAPI application for the live translation relay."""
from __future__ import annotations

import base64
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator
from urllib.parse import quote

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from sqlalchemy.ext.asyncio import AsyncEngine

from .core.config import Settings, settings
from .core.errors import BabblerError, RoomNotFoundError
from .db.session import build_engine, build_sessionmaker, create_schema
from .routers import admin, realtime, rooms, speech
from .services.broadcaster import RoomBroadcaster
from .services.coordinator import SessionCoordinator
from .services.speech import SpeechTokenProvider
from .services.usage_store import BitStoreUsageStore, InMemoryUsageStore, MonthlyUsageStore, SqlUsageStore

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


def build_usage_store(config: Settings, engine: AsyncEngine | None = None) -> MonthlyUsageStore:
    """Pick the usage backend named by ``config.usage_store``."""

    backend = config.usage_store.strip().lower()
    if backend == "bitstore":
        return BitStoreUsageStore(
            enabled=config.bitstore_enabled,
            base_url=config.bitstore_base_url,
            bucket_slug=config.bitstore_bucket_slug,
            write_key=config.bitstore_write_key,
        )
    if backend == "database":
        if engine is None:
            raise ValueError("The database usage store requires an engine")
        return SqlUsageStore(build_sessionmaker(engine))
    if backend != "memory":
        logger.warning("Unknown usage store %r; keeping usage in memory", config.usage_store)
    return InMemoryUsageStore()


def build_coordinator(config: Settings, usage_store: MonthlyUsageStore) -> SessionCoordinator:
    return SessionCoordinator(
        broadcaster=RoomBroadcaster(),
        usage_store=usage_store,
        speech=SpeechTokenProvider(config.speech_key, config.speech_region),
        free_minutes_limit=config.free_minutes_limit,
        monitor_tick=timedelta(seconds=config.monitor_tick_seconds),
        persist_interval=timedelta(seconds=config.usage_persist_seconds),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    engine: AsyncEngine | None = None
    coordinator: SessionCoordinator | None = getattr(app.state, "coordinator", None)
    if coordinator is None:
        if settings.usage_store.strip().lower() == "database":
            engine = build_engine(settings.database_url)
            await create_schema(engine)
        coordinator = build_coordinator(settings, build_usage_store(settings, engine))
        app.state.coordinator = coordinator

    try:
        yield
    finally:
        await coordinator.aclose()
        app.state.coordinator = None
        if engine is not None:
            await engine.dispose()


class NoCacheStaticFiles(StaticFiles):
    """Static files whose HTML pages are never cached."""

    def file_response(self, full_path, stat_result, scope, status_code: int = 200) -> Response:
        response = super().file_response(full_path, stat_result, scope, status_code)
        if str(full_path).lower().endswith(".html"):
            response.headers.update(NO_STORE_HEADERS)
        return response


app = FastAPI(title="Babbler Translation Relay", version="0.1.0", lifespan=lifespan)

if settings.cors_allow_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(BabblerError)
async def babbler_error_handler(_request: Request, exc: BabblerError) -> JSONResponse:
    """Missing rooms are 404s; every other domain failure is a bad request."""

    status_code = 404 if isinstance(exc, RoomNotFoundError) else 400
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


@app.middleware("http")
async def display_access_gate(request: Request, call_next):
    """Send displays without a valid access cookie to the PIN page."""

    if request.url.path.lower() == "/display.html":
        room_id = request.query_params.get("roomId", "").strip()
        if not room_id:
            return RedirectResponse("/join.html", status_code=302)

        coordinator: SessionCoordinator = request.app.state.coordinator
        if not coordinator.has_display_access(room_id, request.cookies):
            return RedirectResponse(f"/join.html?roomId={quote(room_id, safe='')}", status_code=302)

    return await call_next(request)


FAVICON_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGMAAQAABQABDQottAAAAABJRU5ErkJggg=="
)


@app.get("/api/health", tags=["meta"])
async def health() -> dict[str, str]:
    """Simple liveness probe."""

    return {"status": "ok"}


@app.head("/api/health", tags=["meta"])
async def health_head() -> Response:
    """Allow HEAD for uptime monitors that only need the status code."""

    return Response(status_code=200)


@app.get("/robots.txt", response_class=PlainTextResponse, include_in_schema=False)
async def robots() -> PlainTextResponse:
    """Serve a minimal robots.txt to avoid 404 noise."""

    return PlainTextResponse("User-agent: *\nDisallow: /api/")


@app.get("/favicon.ico", include_in_schema=False)
async def favicon() -> Response:
    """Return a tiny placeholder favicon."""

    return Response(content=FAVICON_BYTES, media_type="image/png")


app.include_router(admin.router, prefix="/api", tags=["diagnostics"])
app.include_router(speech.router, prefix="/api/speech", tags=["speech"])
app.include_router(rooms.router, prefix="/api/rooms", tags=["rooms"])
app.include_router(realtime.router, prefix="/hubs", tags=["realtime"])

if os.path.isdir(settings.static_dir):
    app.mount("/", NoCacheStaticFiles(directory=settings.static_dir, html=True), name="static")
