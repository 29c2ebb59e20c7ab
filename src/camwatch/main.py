"""FastAPI application entry point for CamWatch.

CamWatch: camera motion alerts from an FFmpeg JPEG pipe.

Architecture:
    - FastAPI async web framework
    - One FFmpeg subprocess per session, emitting MJPEG on stdout
    - Singleton StreamSession (demux → score → debounce) held in the container
    - Snapshot store wired in as a motion-event collaborator

Lifespan:
    startup:  load settings → build session → install → auto-start
    shutdown: stop the session and release its scoring worker

Logging Strategy:
    INFO  - Application lifecycle, configuration summary
    DEBUG - Wiring details
    WARN  - Auto-start failures
    ERROR - Startup failures with stack traces
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api import health, session, snapshots
from .api.errors import (
    general_exception_handler,
    http_exception_handler,
    session_not_running_exception_handler,
    session_start_exception_handler,
    validation_exception_handler
)
from .config_io import load_settings
from .exceptions import SessionNotRunningError, SessionStartError
from .logging_config import setup_logging
from .middleware.request_id import RequestIDMiddleware
from .services import container
from .services.session import StreamSession
from .services.snapshots import SnapshotStore
from .utils.strings import mask_rtsp_credentials

logger = logging.getLogger(__name__)

# Setup logging before anything else
setup_logging()

# ============================================================================
# Application Lifespan Management
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the session on startup, stop it on shutdown."""
    logger.info("=" * 80)
    logger.info("CamWatch starting...")
    logger.info("=" * 80)

    settings = load_settings()
    logger.info(
        f"Video: {settings.video_width}x{settings.video_height} @ {settings.stream_fps}fps, "
        f"motion threshold {settings.motion_threshold}, cooldown {settings.motion_cooldown_s}s"
    )

    stream_session = StreamSession(settings)
    container.install_session(stream_session)

    store = SnapshotStore(settings.snapshot_dir)
    container.snapshot_store = store
    stream_session.register_motion_callback(store.on_motion_event)
    logger.debug(f"Snapshots: {settings.snapshot_dir}")

    if settings.auto_start and settings.source_url:
        logger.info(f"Auto-starting session: {mask_rtsp_credentials(settings.source_url)}")
        try:
            await stream_session.start(settings.source_url)
        except SessionStartError as e:
            logger.warning(f"Auto-start failed: {e}")
    elif settings.auto_start:
        logger.warning("AUTO_START_STREAM set but no source URL configured")

    logger.info("API documentation: /docs and /redoc")
    logger.info("CamWatch ready")

    yield

    logger.info("CamWatch shutting down...")
    try:
        await stream_session.close()
    except Exception as e:
        logger.error(f"Shutdown error: {e}", exc_info=True)
    finally:
        container.install_session(None)
        container.snapshot_store = None
    logger.info("CamWatch shutdown complete")


# ============================================================================
# FastAPI Application
# ============================================================================

app = FastAPI(
    title="CamWatch",
    description=(
        "Camera motion alerts.\n\n"
        "Features:\n"
        "- FFmpeg decoding with automatic reconnect\n"
        "- Live MJPEG view\n"
        "- Motion events over server-sent events\n"
        "- Motion snapshots"
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# ============================================================================
# Exception Handlers
# ============================================================================

app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore
app.add_exception_handler(SessionStartError, session_start_exception_handler)  # type: ignore
app.add_exception_handler(SessionNotRunningError, session_not_running_exception_handler)  # type: ignore
app.add_exception_handler(Exception, general_exception_handler)

# ============================================================================
# Middleware
# ============================================================================

app.add_middleware(RequestIDMiddleware)

# ============================================================================
# API Routers
# ============================================================================

app.include_router(health.router, tags=["health"])
app.include_router(session.router, prefix="/api/session", tags=["session"])
app.include_router(snapshots.router, prefix="/api", tags=["snapshots"])


def run() -> None:
    """Console entry point: serve with uvicorn on the configured host/port."""
    import uvicorn

    settings = load_settings()
    uvicorn.run("camwatch.main:app", host=settings.host, port=settings.port, log_config=None)
