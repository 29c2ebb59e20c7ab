"""REST API endpoints for the stream session.

Thin wrappers over StreamSession:
- start/stop/status of the single session
- latest frame as JPEG
- live MJPEG fed from the frame channel
- server-sent motion events fed from the motion channel

Logging Strategy:
    DEBUG - Viewer frame counts, keep-alives
    INFO  - Session start/stop requests, viewer connect/disconnect
    WARN  - Requests against a stopped session
    ERROR - Viewer generator failures
"""
from __future__ import annotations

import asyncio
import logging
from typing import Final, Optional

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import Response, StreamingResponse

from ..config.ffmpeg_defaults import (
    BASE_FFMPEG_PARAMS,
    RTSP_INPUT_PARAMS,
    get_default_ffmpeg_params_string,
    get_output_params
)
from ..exceptions import SessionNotRunningError
from ..models.frame import MotionEvent
from ..models.session import MotionEventPayload, SessionStatus, SnapshotInfo, StartSessionRequest
from ..services import container
from ..services.container import get_stream_session
from ..services.session import StreamSession
from ..utils.rtsp import validate_source_url
from ..utils.strings import mask_rtsp_credentials
from .errors import (
    raise_invalid_source_url,
    raise_service_unavailable
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["session"])

SSE_KEEPALIVE_S: Final[float] = 15.0
"""Seconds of silence before an SSE comment line keeps the connection open."""

NO_CACHE_HEADERS: Final[dict[str, str]] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# ============================================================================
# Lifecycle Endpoints
# ============================================================================

@router.post("/start")
async def start_session(
    request: Optional[StartSessionRequest] = Body(default=None),
    session: StreamSession = Depends(get_stream_session)
) -> dict:
    """Start (or restart) capture. Falls back to the configured default URL."""
    source_url = request.source_url if request is not None else None
    source_url = source_url or session.settings.source_url

    if not source_url:
        raise_invalid_source_url(None, "No source URL given and no default configured")

    is_valid, error_msg = validate_source_url(source_url)
    if not is_valid:
        raise_invalid_source_url(source_url, error_msg or "Invalid source URL")

    logger.info(f"Start requested: {mask_rtsp_credentials(source_url)}")
    await session.start(source_url)
    return {"message": "Session started", "status": session.status().model_dump(mode="json")}


@router.post("/stop")
async def stop_session(
    session: StreamSession = Depends(get_stream_session)
) -> dict:
    """Stop capture. Stopping a stopped session is not an error."""
    if not session.is_running:
        logger.debug("Stop requested but session not running")
        return {"message": "Session not running", "status": session.status().model_dump(mode="json")}

    logger.info("Stop requested")
    await session.stop()
    return {"message": "Session stopped", "status": session.status().model_dump(mode="json")}


@router.get("", response_model=SessionStatus)
async def get_status(
    session: StreamSession = Depends(get_stream_session)
) -> SessionStatus:
    return session.status()


@router.get("/ffmpeg-defaults")
async def get_ffmpeg_defaults(
    session: StreamSession = Depends(get_stream_session)
) -> dict:
    """Decoder arguments derived from the current settings."""
    settings = session.settings
    output = get_output_params(
        settings.video_width, settings.video_height, settings.stream_fps, settings.jpeg_quality
    )
    return {
        "binary": settings.ffmpeg_binary,
        "base_params": list(BASE_FFMPEG_PARAMS),
        "rtsp_input_params": list(RTSP_INPUT_PARAMS),
        "output_params": output,
        "combined_params": get_default_ffmpeg_params_string(
            settings.video_width, settings.video_height, settings.stream_fps, settings.jpeg_quality
        ),
    }


# ============================================================================
# Frame Endpoints
# ============================================================================

@router.get("/frame")
async def get_frame(
    session: StreamSession = Depends(get_stream_session)
) -> Response:
    """Latest demuxed frame as image/jpeg."""
    if not session.is_running:
        raise SessionNotRunningError("Stream session is not running")

    frame = session.current_frame()
    if frame is None:
        raise_service_unavailable("No frame received yet")

    return Response(
        content=frame.data,
        media_type="image/jpeg",
        headers={**NO_CACHE_HEADERS, "X-Frame-Sequence": str(frame.sequence)}
    )


def _multipart_part(jpeg_bytes: bytes) -> bytes:
    return (
        b'--frame\r\n'
        b'Content-Type: image/jpeg\r\n'
        b'Content-Length: ' + str(len(jpeg_bytes)).encode() + b'\r\n\r\n' +
        jpeg_bytes + b'\r\n'
    )


@router.get("/mjpeg")
async def stream_mjpeg(
    session: StreamSession = Depends(get_stream_session)
) -> StreamingResponse:
    """Live MJPEG multipart stream. Ends when the session stops."""
    if not session.is_running:
        raise SessionNotRunningError("Session must be started first")

    subscription = session.subscribe_frames()
    first = session.current_frame()
    logger.info("MJPEG viewer connected")

    async def generate_frames():
        frame_count = 0
        try:
            if first is not None:
                yield _multipart_part(first.data)
                frame_count += 1

            async for frame in subscription:
                yield _multipart_part(frame.data)
                frame_count += 1
                if frame_count % 100 == 0:
                    logger.debug(f"MJPEG viewer: {frame_count} frames")

        except asyncio.CancelledError:
            logger.info(f"MJPEG viewer cancelled ({frame_count} frames)")
            raise
        except Exception as e:
            logger.error(f"MJPEG error: {e}", exc_info=True)
        finally:
            subscription.close()
            logger.info(f"MJPEG viewer disconnected ({frame_count} frames)")

    return StreamingResponse(
        generate_frames(),
        media_type="multipart/x-mixed-replace; boundary=frame",
        headers={**NO_CACHE_HEADERS, "Connection": "close"}
    )


# ============================================================================
# Motion Events (SSE)
# ============================================================================

def to_payload(event: MotionEvent, snapshot: Optional[SnapshotInfo] = None) -> MotionEventPayload:
    """Wire shape of a MotionEvent. The screenshot is named only once it is on disk."""
    return MotionEventPayload(
        timestamp=event.timestamp_ms,
        level=event.score,
        sequence=event.frame.sequence,
        screenshot=snapshot.filename if snapshot is not None else None
    )


@router.get("/events")
async def stream_motion_events(
    session: StreamSession = Depends(get_stream_session)
) -> StreamingResponse:
    """Server-sent motion events. Ends when the session stops."""
    if not session.is_running:
        raise SessionNotRunningError("Session must be started first")

    subscription = session.subscribe_motion()
    store = container.snapshot_store
    logger.info("Motion event viewer connected")

    async def event_generator():
        event_count = 0
        try:
            while True:
                try:
                    event = await subscription.get(timeout=SSE_KEEPALIVE_S)
                except asyncio.TimeoutError:
                    logger.debug("SSE keep-alive")
                    yield ": keep-alive\n\n"
                    continue

                if event is None:
                    break

                snapshot = await store.saved(event.timestamp_ms) if store is not None else None
                payload = to_payload(event, snapshot)
                yield f"event: motion\ndata: {payload.model_dump_json()}\n\n"
                event_count += 1

        except asyncio.CancelledError:
            logger.info(f"SSE cancelled ({event_count} events)")
            raise
        except Exception as e:
            logger.error(f"SSE error: {e}", exc_info=True)
        finally:
            subscription.close()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        status_code=status.HTTP_200_OK,
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no"
        }
    )
