"""Exception hierarchy for the capture core.

Only terminal conditions are raised to callers. Per-frame faults (truncated
frames, undecodable JPEGs) are dropped inside the pipeline and never reach
this hierarchy.
"""
from __future__ import annotations


class CamWatchError(RuntimeError):
    """Base class for all camwatch errors."""


# ============================================================================
# Decoder
# ============================================================================

class DecoderError(CamWatchError):
    """Decoder process could not be kept alive."""


class DecoderSpawnError(DecoderError):
    """Decoder process failed to spawn at all (binary missing, bad args)."""


class DecoderFailedError(DecoderError):
    """Decoder kept exiting until the reconnect budget was exhausted."""

    def __init__(self, message: str, attempts: int, returncode: int | None = None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.returncode = returncode


# ============================================================================
# Session
# ============================================================================

class SessionError(CamWatchError):
    """Stream session misuse or failure."""


class SessionStartError(SessionError):
    """Session could not be started."""


class SessionNotRunningError(SessionError):
    """Operation requires a running session."""
