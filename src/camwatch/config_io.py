"""Settings loading from YAML with environment overrides.

Resolution order (later wins):
    1. Field defaults on Settings
    2. YAML file at CONFIG_PATH (optional)
    3. Environment variables (see ENV_OVERRIDES)

A missing config file is normal. A corrupt one is logged and ignored so the
service still comes up on defaults and environment. Values are validated by
pydantic after merging; an invalid value is a startup error.

Logging Strategy:
    DEBUG - File operations, applied overrides
    INFO  - Config source selection
    WARN  - Invalid file format, unreadable file
    ERROR - YAML parsing failures
"""
from __future__ import annotations

import io
import logging
import os
from pathlib import Path
from typing import Any, Final, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

DEFAULT_CONFIG_PATH: Final[Path] = Path(os.getenv("CONFIG_PATH", "config.yml"))
"""YAML settings file (optional)."""

ENV_OVERRIDES: Final[dict[str, str]] = {
    "DEFAULT_RTSP_URL": "source_url",
    "AUTO_START_STREAM": "auto_start",
    "VIDEO_WIDTH": "video_width",
    "VIDEO_HEIGHT": "video_height",
    "STREAM_FPS": "stream_fps",
    "JPEG_QUALITY": "jpeg_quality",
    "ANALYSIS_WIDTH": "analysis_width",
    "ANALYSIS_HEIGHT": "analysis_height",
    "PIXEL_THRESHOLD": "pixel_threshold",
    "MOTION_THRESHOLD": "motion_threshold",
    "MOTION_COOLDOWN_S": "motion_cooldown_s",
    "MAX_RECONNECT_ATTEMPTS": "max_reconnect_attempts",
    "RECONNECT_DELAY_S": "reconnect_delay_s",
    "MAX_PENDING_FRAME_BYTES": "max_pending_frame_bytes",
    "SNAPSHOT_DIR": "snapshot_dir",
    "FFMPEG_BINARY": "ffmpeg_binary",
    "HOST": "host",
    "PORT": "port",
}
"""Environment variable -> Settings field."""

TRUTHY: Final[set[str]] = {"true", "1", "yes", "on"}

# ============================================================================
# Settings Model
# ============================================================================

class Settings(BaseModel):
    """Runtime configuration for the capture core and its HTTP wrapper."""

    model_config = {"extra": "ignore"}

    # Source
    source_url: Optional[str] = Field(
        default=None,
        description="Default camera URL used by auto-start and empty start requests"
    )
    auto_start: bool = Field(
        default=False,
        description="Start the session on boot when source_url is set"
    )

    # Decoder output
    video_width: int = Field(default=640, ge=16, le=7680)
    video_height: int = Field(default=480, ge=16, le=4320)
    stream_fps: int = Field(default=10, ge=1, le=60)
    jpeg_quality: int = Field(default=5, ge=2, le=31)
    ffmpeg_binary: str = Field(default="ffmpeg", min_length=1)

    # Motion analysis
    analysis_width: int = Field(default=160, ge=8, le=1920)
    analysis_height: int = Field(default=120, ge=8, le=1080)
    pixel_threshold: int = Field(
        default=30,
        ge=0,
        le=255,
        description="Per-pixel intensity delta below which a change is sensor noise"
    )
    motion_threshold: int = Field(
        default=5000,
        ge=0,
        description="Score above which a frame counts as motion"
    )
    motion_cooldown_s: float = Field(
        default=3.0,
        ge=0.0,
        description="Minimum seconds between two motion events"
    )

    # Supervision
    max_reconnect_attempts: int = Field(default=10, ge=1)
    reconnect_delay_s: float = Field(default=3.0, ge=0.0)
    max_pending_frame_bytes: int = Field(
        default=8 * 1024 * 1024,
        ge=1024,
        description="Largest incomplete frame kept while waiting for an end marker"
    )

    # Collaborators
    snapshot_dir: Path = Field(default=Path("screenshots"))
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000, ge=1, le=65535)

    @model_validator(mode="after")
    def blank_source_is_none(self) -> Settings:
        """Treat an empty source URL as unset."""
        if self.source_url is not None and not self.source_url.strip():
            self.source_url = None
        return self


# ============================================================================
# Loading
# ============================================================================

def _read_yaml(path: Path) -> dict[str, Any]:
    """Read settings mapping from YAML, recovering from bad files."""
    if not path.exists():
        logger.debug(f"No config file at {path}")
        return {}

    try:
        with io.open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"YAML parsing error in {path}: {e}", exc_info=True)
        logger.warning("Ignoring corrupted config file")
        return {}
    except OSError as e:
        logger.warning(f"Config file unreadable ({path}): {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Invalid config format in {path} (expected mapping), ignoring")
        return {}

    logger.info(f"Config: loaded {len(data)} key(s) from {path}")
    return data


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """Collect overrides from environment variables."""
    overrides: dict[str, Any] = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        if field_name == "auto_start":
            overrides[field_name] = raw.strip().lower() in TRUTHY
        else:
            overrides[field_name] = raw.strip()
        logger.debug(f"Config override from {env_name}")
    return overrides


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None
) -> Settings:
    """Load settings from YAML and environment.

    Args:
        path: YAML file (default: CONFIG_PATH or ./config.yml)
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated Settings

    Raises:
        pydantic.ValidationError: Merged values are invalid
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    env = os.environ if environ is None else environ

    data = _read_yaml(config_path)
    data.update(_env_overrides(env))

    settings = Settings.model_validate(data)
    logger.debug(
        f"Settings: {settings.video_width}x{settings.video_height}@{settings.stream_fps}fps, "
        f"motion_threshold={settings.motion_threshold}, cooldown={settings.motion_cooldown_s}s, "
        f"max_attempts={settings.max_reconnect_attempts}"
    )
    return settings
