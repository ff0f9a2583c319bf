"""
hostpulse web application.

FastAPI + WebSocket: the sampler publishes to three broadcast channels and
every viewer connection relays one of them.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, FastAPI, WebSocket
from fastapi.responses import FileResponse
from starlette.requests import HTTPConnection

from hostpulse.broadcast import Channels
from hostpulse.config import Settings
from hostpulse.relay import relay
from hostpulse.sampler import Sampler

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"
STATIC_FILES = {
    "index.html": "text/html; charset=utf-8",
    "index.mjs": "application/javascript; charset=utf-8",
    "index.css": "text/css; charset=utf-8",
}

router = APIRouter()


def get_channels(connection: HTTPConnection) -> Channels:
    """Channels shared by the sampler and every viewer of this app."""
    return connection.app.state.channels


def _asset(name: str) -> FileResponse:
    """Serve one packaged static file."""
    return FileResponse(STATIC_DIR / name, media_type=STATIC_FILES[name])


@router.get("/")
async def root() -> FileResponse:
    """Dashboard page."""
    return _asset("index.html")


@router.get("/index.mjs")
async def index_mjs() -> FileResponse:
    """Viewer script."""
    return _asset("index.mjs")


@router.get("/index.css")
async def index_css() -> FileResponse:
    """Viewer stylesheet."""
    return _asset("index.css")


@router.websocket("/realtime/cpus")
async def realtime_cpus(websocket: WebSocket) -> None:
    """Stream per-core CPU usage and temperatures."""
    await relay(websocket, get_channels(websocket).cpus)


@router.websocket("/realtime/ram")
async def realtime_ram(websocket: WebSocket) -> None:
    """Stream memory totals."""
    await relay(websocket, get_channels(websocket).ram)


@router.websocket("/realtime/processes")
async def realtime_processes(websocket: WebSocket) -> None:
    """Stream the busiest processes."""
    await relay(websocket, get_channels(websocket).processes)


def _check_static_files() -> None:
    missing = [name for name in STATIC_FILES if not (STATIC_DIR / name).is_file()]
    if missing:
        raise RuntimeError(
            f"Static assets missing from {STATIC_DIR}: {', '.join(missing)}"
        )


def create_app(settings: Settings | None = None, *, start_sampler: bool = True) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Runtime settings. Defaults to ``Settings()``.
        start_sampler: Run the sampler thread for the app's lifetime. Tests
            disable it and publish to ``app.state.channels`` themselves.

    Raises:
        RuntimeError: If the packaged static assets are missing.
    """
    settings = settings or Settings()
    _check_static_files()
    channels = Channels.create(settings.channel_capacity)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        sampler: Sampler | None = None
        if start_sampler:
            sampler = Sampler(
                channels,
                interval=settings.interval,
                decimation=settings.decimation,
                top_processes=settings.top_processes,
            )
            sampler.start()
        app.state.sampler = sampler
        try:
            yield
        finally:
            if sampler is not None:
                # Joining the thread blocks, keep it off the event loop
                await asyncio.to_thread(sampler.stop)
            else:
                channels.close()

    app = FastAPI(title="hostpulse", lifespan=lifespan)
    app.state.settings = settings
    app.state.channels = channels
    app.include_router(router)
    return app
