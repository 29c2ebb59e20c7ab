"""REST API endpoints for saved motion snapshots.

Logging Strategy:
    DEBUG - Listing requests
    WARN  - Unknown or rejected snapshot names
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..models.session import SnapshotInfo
from ..services.container import get_snapshot_store
from ..services.snapshots import SnapshotStore
from .errors import raise_not_found

logger = logging.getLogger(__name__)

router = APIRouter(tags=["snapshots"])


@router.get("/screenshots", response_model=list[SnapshotInfo])
async def list_snapshots(
    store: SnapshotStore = Depends(get_snapshot_store)
) -> list[SnapshotInfo]:
    """Saved motion snapshots, newest first."""
    snapshots = store.list()
    logger.debug(f"Listing {len(snapshots)} snapshot(s)")
    return snapshots


@router.get("/screenshot/{filename}")
async def get_snapshot(
    filename: str,
    store: SnapshotStore = Depends(get_snapshot_store)
) -> FileResponse:
    path = store.path_for(filename)
    if path is None:
        logger.warning(f"Snapshot not found: {filename!r}")
        raise_not_found("snapshot", filename)

    return FileResponse(path, media_type="image/jpeg")
