"""Service container for the process-wide stream session.

Holds the single StreamSession so API modules can reach it without
importing main.py. Pattern: main.py builds the session → container stores
it → API routes receive it through Depends(get_stream_session).

Exactly one session exists per process: install_session() refuses to
replace a session that is still running, because two decoders writing into
one frame history would interleave frames from different sources.

Logging Strategy:
    DEBUG - Session injection
    INFO  - Session installed/replaced
    ERROR - Session requested before initialization
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .session import StreamSession
    from .snapshots import SnapshotStore

logger = logging.getLogger(__name__)

# ============================================================================
# Global Singleton Instances
# ============================================================================

stream_session: StreamSession | None = None
"""Global StreamSession initialized during app startup."""

snapshot_store: SnapshotStore | None = None
"""Motion snapshot store (optional collaborator)."""


# ============================================================================
# Installation
# ============================================================================

def install_session(session: Optional[StreamSession]) -> None:
    """Install the process-wide session.

    Raises:
        RuntimeError: A different session is installed and still running
    """
    global stream_session

    current = stream_session
    if current is not None and current is not session and current.is_running:
        raise RuntimeError("A running stream session is already installed; stop it first")

    stream_session = session
    if session is not None:
        logger.info("Stream session installed")


# ============================================================================
# Dependency Injection
# ============================================================================

def get_stream_session() -> StreamSession:
    """Get the global StreamSession for dependency injection.

    Raises:
        RuntimeError: Called before app startup
    """
    if stream_session is None:
        logger.error("StreamSession dependency requested before initialization")
        raise RuntimeError(
            "StreamSession not initialized. "
            "Application startup may have failed."
        )

    logger.debug("Injecting StreamSession singleton")
    return stream_session


def get_snapshot_store() -> SnapshotStore:
    """Get the global SnapshotStore for dependency injection."""
    if snapshot_store is None:
        raise RuntimeError("SnapshotStore not initialized")
    return snapshot_store
