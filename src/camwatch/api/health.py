"""Health check and metrics endpoints for service monitoring.

Health Status Levels:
    - healthy: Session idle, or running and producing frames
    - degraded: Decoder reconnecting, failed, or running without frames
    - unhealthy: Session not initialized (startup failed)

Logging Strategy:
    DEBUG - Health check calls
    WARN  - Degraded status
    ERROR - Unhealthy status

Usage:
    >>> GET /health
    {
        "status": "healthy",
        "session": {"running": true, "supervisor_state": "running", ...}
    }

    >>> GET /health/live
    {"status": "alive"}
"""
from fastapi import APIRouter, status
from fastapi.responses import Response
from typing import Dict, Any, List, Literal
import logging

from .. import metrics
from ..models.session import SessionStatus, SupervisorState
from ..services import container

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

HealthStatus = Literal["healthy", "degraded", "unhealthy"]
ProbeStatus = Literal["alive"]


def calculate_health_status(session_status: SessionStatus) -> tuple[HealthStatus, List[str]]:
    """Derive overall health from the session status."""
    errors: List[str] = []

    if session_status.supervisor_state is SupervisorState.FAILED:
        errors.append(f"Decoder failed: {session_status.last_error or 'unknown error'}")
    elif session_status.supervisor_state is SupervisorState.RECONNECTING:
        errors.append(
            f"Decoder reconnecting (attempt {session_status.reconnect_attempts})"
        )
    elif session_status.running and session_status.frames_received == 0 \
            and session_status.supervisor_state is SupervisorState.RUNNING:
        errors.append("Decoder running but no frames received yet")

    if not errors:
        return "healthy", []
    return "degraded", errors


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(response: Response) -> Dict[str, Any]:
    """Health of the stream session."""
    logger.debug("Processing health check")

    session = container.stream_session
    if session is None:
        logger.error("Health check: unhealthy - session not initialized")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "errors": ["Stream session not initialized"]}

    session_status = session.status()
    overall_status, errors = calculate_health_status(session_status)

    result: Dict[str, Any] = {
        "status": overall_status,
        "session": session_status.model_dump(mode="json"),
    }
    if errors:
        result["errors"] = errors
        logger.warning(f"Health check: {overall_status} - {'; '.join(errors)}")

    return result


@router.get("/health/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> Dict[str, ProbeStatus]:
    """Liveness probe; does not look at the session."""
    logger.debug("Liveness check called")
    return {"status": "alive"}


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """Prometheus text exposition."""
    body, status_code, headers = metrics.get_metrics()
    return Response(content=body, status_code=status_code, headers=headers)
