"""FFmpeg default parameter configuration.

Single source of truth for the decoder arguments. The decoder turns any
camera source into a headless stream of baseline JPEG images on stdout
(image2pipe), one image per frame, no audio.
"""
from typing import Final

# ============================================================================
# Base FFmpeg Parameters
# ============================================================================

BASE_FFMPEG_PARAMS: Final[list[str]] = [
    '-hide_banner',
    '-loglevel', 'warning',
    '-nostdin',
]
"""Input-independent parameters placed before -i."""

RTSP_INPUT_PARAMS: Final[list[str]] = [
    '-rtsp_transport', 'tcp',
]
"""Extra input parameters for rtsp:// and rtsps:// sources."""

# ============================================================================
# Output Parameters
# ============================================================================

OUTPUT_CODEC: Final[str] = 'mjpeg'
"""Baseline JPEG codec, one complete image per frame."""

OUTPUT_FORMAT: Final[str] = 'image2pipe'
"""Concatenated images on a pipe (no container)."""

OUTPUT_TARGET: Final[str] = '-'
"""stdout."""

# ============================================================================
# Helper Functions
# ============================================================================

def get_output_params(width: int, height: int, fps: int, quality: int) -> list[str]:
    """Get output parameters for the JPEG image pipe.

    Args:
        width: Output width in pixels
        height: Output height in pixels
        fps: Output frame rate
        quality: JPEG quality (-q:v, 2-31, lower is better)

    Returns:
        Parameters placed after the input
    """
    return [
        '-vf', f'scale={width}:{height}',
        '-r', str(fps),
        '-an',
        '-c:v', OUTPUT_CODEC,
        '-q:v', str(quality),
        '-f', OUTPUT_FORMAT,
        OUTPUT_TARGET,
    ]


def get_default_ffmpeg_params_string(width: int, height: int, fps: int, quality: int) -> str:
    """Get output parameters as a space-separated string for display."""
    return ' '.join(list(BASE_FFMPEG_PARAMS) + get_output_params(width, height, fps, quality))
