"""Camera source utilities for FFmpeg-based decoding.

Builds the decoder command line, validates source URLs, and classifies
decoder stderr lines for logging.

Logging Strategy:
    DEBUG - Command building, validation details
    WARN  - Invalid URLs, security violations

FFmpeg Pipeline:
    Camera → FFmpeg (decode, scale, rate-limit) → JPEG image pipe → stdout
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Final
from urllib.parse import urlparse

from ..config.ffmpeg_defaults import BASE_FFMPEG_PARAMS, RTSP_INPUT_PARAMS, get_output_params

if TYPE_CHECKING:
    from ..config_io import Settings

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

FORBIDDEN_SHELL_CHARS: Final[set[str]] = {";", "&", "|", ">", "<", "`", "$", "\n", "\r"}
"""Shell metacharacters forbidden for security."""

NETWORK_SCHEMES: Final[set[str]] = {"rtsp", "rtsps", "rtmp", "http", "https", "udp", "tcp"}
"""URL schemes that require a host."""

LOCAL_SCHEMES: Final[set[str]] = {"file"}
"""URL schemes for local media (testing, replays)."""

CONNECTION_MARKERS: Final[tuple[str, ...]] = ("Input #", "Stream #", "Output #")
"""Stderr substrings that describe the connection (logged at INFO)."""

# ============================================================================
# FFmpeg Command Building
# ============================================================================

def build_decoder_command(source_url: str, settings: Settings) -> list[str]:
    """Build the FFmpeg command that turns a camera into a JPEG pipe.

    Command structure:
    1. Base params (banner, log level, no stdin)
    2. Transport params for RTSP inputs
    3. Input (-i URL)
    4. Scale, frame rate, no audio, MJPEG image pipe to stdout

    Args:
        source_url: Camera URL or local media path
        settings: Output geometry, rate and quality

    Returns:
        Command list for asyncio.create_subprocess_exec()

    Example:
        >>> cmd = build_decoder_command("rtsp://cam/stream", Settings())
        >>> cmd[-1]
        '-'
    """
    cmd = [settings.ffmpeg_binary]
    cmd.extend(BASE_FFMPEG_PARAMS)

    scheme = urlparse(source_url).scheme.lower()
    if scheme in ("rtsp", "rtsps"):
        cmd.extend(RTSP_INPUT_PARAMS)

    cmd.extend(["-i", source_url])
    cmd.extend(get_output_params(
        settings.video_width,
        settings.video_height,
        settings.stream_fps,
        settings.jpeg_quality,
    ))

    logger.debug(
        f"Built decoder command: {settings.video_width}x{settings.video_height}"
        f"@{settings.stream_fps}fps, {len(cmd)} args"
    )
    return cmd


# ============================================================================
# Validation
# ============================================================================

def validate_source_url(url: str) -> tuple[bool, str | None]:
    """Validate a camera source URL.

    Checks:
    - Non-empty string without shell metacharacters
    - Known scheme (network schemes need a host)
    - Bare paths are accepted as local media

    Args:
        url: Source URL to validate

    Returns:
        (is_valid, error_message)
    """
    if not url or not isinstance(url, str):
        logger.warning("Invalid URL: empty or wrong type")
        return False, "Source URL is required"

    if any(char in url for char in FORBIDDEN_SHELL_CHARS):
        logger.warning("Forbidden character in source URL")
        return False, "Source URL contains forbidden characters"

    if url.startswith("-"):
        logger.warning("Source URL looks like an option")
        return False, "Source URL must not start with '-'"

    try:
        parsed = urlparse(url)
    except ValueError as e:
        logger.warning(f"URL parse failed: {e}")
        return False, "Source URL could not be parsed"

    scheme = parsed.scheme.lower()
    if not scheme:
        return True, None

    if scheme in NETWORK_SCHEMES:
        if not parsed.netloc:
            logger.warning("URL missing host")
            return False, "Source URL is missing a host"
        return True, None

    if scheme in LOCAL_SCHEMES:
        return True, None

    logger.warning(f"Unsupported scheme: {scheme}")
    return False, f"Unsupported URL scheme '{scheme}'"


# ============================================================================
# Stderr Classification
# ============================================================================

def classify_decoder_line(line: str) -> int:
    """Map a decoder stderr line to a log level.

    Substring matching only; the result never drives control flow.

    Args:
        line: One decoded stderr line

    Returns:
        logging level constant
    """
    lowered = line.lower()
    if "error" in lowered or "fatal" in lowered:
        return logging.ERROR
    if "warning" in lowered:
        return logging.WARNING
    if line.lstrip().startswith(CONNECTION_MARKERS):
        return logging.INFO
    return logging.DEBUG
