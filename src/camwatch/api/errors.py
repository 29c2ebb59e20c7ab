"""Standardized error handling and response schemas for the REST API.

Error Response Format:
    All errors return JSON with this structure:
    {
        "code": "SESSION_NOT_RUNNING",
        "message": "Human-readable description",
        "details": {"additional": "context"}
    }

Error Categories:
    - Resource errors: NOT_FOUND
    - Validation errors: VALIDATION_ERROR, INVALID_SOURCE_URL
    - Session errors: SESSION_NOT_RUNNING, SESSION_START_FAILED
    - System errors: INTERNAL_ERROR, SERVICE_UNAVAILABLE

Logging Strategy:
    DEBUG - Error creation
    INFO  - Client errors (4xx)
    WARN  - Request validation failures, unavailable service
    ERROR - Server errors (5xx), unexpected exceptions
"""
from __future__ import annotations

from enum import Enum
from typing import Any, NoReturn, Optional
import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

from ..exceptions import SessionNotRunningError, SessionStartError
from ..middleware.request_id import get_request_id
from ..utils.strings import mask_rtsp_credentials

logger = logging.getLogger(__name__)

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response schema for all API errors."""

    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    details: Optional[dict[str, Any]] = Field(None, description="Additional error details")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "SESSION_NOT_RUNNING",
                    "message": "No frame available",
                    "details": None
                }
            ]
        }
    }


class ErrorCode(str, Enum):
    """Standardized error codes for the API."""

    # Resource errors (404)
    NOT_FOUND = "NOT_FOUND"

    # Validation errors (400, 422)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_SOURCE_URL = "INVALID_SOURCE_URL"

    # Session errors (409, 502)
    SESSION_NOT_RUNNING = "SESSION_NOT_RUNNING"
    SESSION_START_FAILED = "SESSION_START_FAILED"

    # System errors (500, 503)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


def create_error_response(
    code: ErrorCode | str,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> ErrorResponse:
    """Create a standardized error response."""
    code_str = code.value if isinstance(code, ErrorCode) else code
    logger.debug(f"Creating error response: code={code_str}, message={message}")
    return ErrorResponse(code=code_str, message=message, details=details)


# ============================================================================
# Specialized Error Raisers
# ============================================================================

def _raise(status_code: int, code: ErrorCode, message: str,
           details: Optional[dict[str, Any]] = None) -> NoReturn:
    error = create_error_response(code, message, details)
    raise HTTPException(status_code=status_code, detail=error.model_dump())


def raise_not_found(resource: str, resource_id: str) -> NoReturn:
    """Raise a standardized 404 error."""
    logger.debug(f"Resource not found: {resource} with id={resource_id}")
    _raise(
        status.HTTP_404_NOT_FOUND,
        ErrorCode.NOT_FOUND,
        f"{resource.capitalize()} not found",
        {"resource": resource, "id": resource_id}
    )


def raise_invalid_source_url(url: Optional[str], reason: str) -> NoReturn:
    """Raise a 400 for a missing or unusable source URL (credentials masked)."""
    logger.debug(f"Invalid source URL: {mask_rtsp_credentials(url)}, reason: {reason}")
    _raise(
        status.HTTP_400_BAD_REQUEST,
        ErrorCode.INVALID_SOURCE_URL,
        reason,
        {"source_url": mask_rtsp_credentials(url)}
    )


def raise_service_unavailable(
    message: str = "Service temporarily unavailable",
    details: Optional[dict[str, Any]] = None
) -> NoReturn:
    """Raise a standardized 503 service unavailable error."""
    logger.warning(f"Service unavailable: {message}, details={details}")
    _raise(status.HTTP_503_SERVICE_UNAVAILABLE, ErrorCode.SERVICE_UNAVAILABLE, message, details)


# ============================================================================
# Global Exception Handlers
# ============================================================================

def _json_error(
    status_code: int,
    code: ErrorCode,
    message: str,
    details: Optional[dict[str, Any]] = None
) -> JSONResponse:
    error = create_error_response(code, message, details)
    return JSONResponse(status_code=status_code, content=error.model_dump())


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """422 with one {loc, msg, type} entry per failed field."""
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    logger.warning(f"Rejected {request.method} {request.url.path}: {len(errors)} invalid field(s)")
    logger.debug(f"Validation errors: {errors}")
    return _json_error(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        {"errors": errors}
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Pass through pre-formatted errors; wrap anything else."""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(level, f"{request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")

    if isinstance(exc.detail, dict) and "code" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    code = ErrorCode.NOT_FOUND if exc.status_code == status.HTTP_404_NOT_FOUND else ErrorCode.INTERNAL_ERROR
    return _json_error(exc.status_code, code, str(exc.detail) if exc.detail else "Request failed")


async def session_start_exception_handler(
    request: Request,
    exc: SessionStartError
) -> JSONResponse:
    """Map a failed session start to 502 (the decoder is the upstream)."""
    logger.error(f"Session start failed: {exc}")
    return _json_error(status.HTTP_502_BAD_GATEWAY, ErrorCode.SESSION_START_FAILED, str(exc))


async def session_not_running_exception_handler(
    request: Request,
    exc: SessionNotRunningError
) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path} needs a running session")
    return _json_error(
        status.HTTP_409_CONFLICT,
        ErrorCode.SESSION_NOT_RUNNING,
        str(exc) or "Stream session is not running"
    )


async def general_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """500 without internals; the request ID ties the response to the log."""
    request_id = get_request_id(request)
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path} "
        f"(request {request_id}): {exc}",
        exc_info=exc
    )
    return _json_error(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_ERROR,
        "An internal server error occurred",
        {"request_id": request_id}
    )
