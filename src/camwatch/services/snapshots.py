"""Motion snapshot persistence.

Writes the frame that triggered each motion event to disk as
motion_<epoch_ms>.jpg and lists saved snapshots newest first. The store is
a plain motion-event collaborator: the session knows nothing about it.

Writes triggered by motion events run on the loop's default executor so a
slow disk never stalls the decoder pipe. Viewers that want to name the file
await saved(), which reports None when the write failed.

Logging Strategy:
    DEBUG - Directory scans
    INFO  - Snapshot saved
    WARN  - Rejected filenames
    ERROR - Write failures
"""
from __future__ import annotations

import asyncio
import io
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Final, Optional

from ..models.frame import MotionEvent
from ..models.session import SnapshotInfo
from ..utils.strings import parse_snapshot_timestamp, snapshot_filename

logger = logging.getLogger(__name__)

RECENT_SAVES: Final[int] = 64
"""Pending or finished background writes remembered for saved()."""


class SnapshotStore:
    """Directory of motion snapshots."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._saves: OrderedDict[int, asyncio.Future] = OrderedDict()

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    def save(self, event: MotionEvent) -> SnapshotInfo:
        """Persist the frame of a motion event."""
        return self.save_frame(event.frame.data, event.timestamp)

    def save_frame(self, frame_bytes: bytes, timestamp: float) -> SnapshotInfo:
        """Write frame bytes under the name derived from timestamp (seconds).

        Raises:
            OSError: Directory not writable
        """
        timestamp_ms = int(timestamp * 1000)
        filename = snapshot_filename(timestamp_ms)
        self.ensure_directory()

        path = self.directory / filename
        try:
            with io.open(path, "wb") as f:
                f.write(frame_bytes)
        except OSError as e:
            logger.error(f"Failed to save snapshot {path}: {e}")
            raise

        logger.info(f"Snapshot saved: {filename} ({len(frame_bytes)} bytes)")
        return SnapshotInfo(filename=filename, timestamp=timestamp_ms, size_bytes=len(frame_bytes))

    def on_motion_event(self, score: int, timestamp: float, frame_bytes: bytes) -> None:
        """Motion callback: save the triggering frame in the background.

        Must be called from the event loop.
        """
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self._save_logged, frame_bytes, timestamp)

        self._saves[int(timestamp * 1000)] = future
        while len(self._saves) > RECENT_SAVES:
            self._saves.popitem(last=False)

    def _save_logged(self, frame_bytes: bytes, timestamp: float) -> Optional[SnapshotInfo]:
        try:
            return self.save_frame(frame_bytes, timestamp)
        except OSError:
            # Already logged by save_frame
            return None

    async def saved(self, timestamp_ms: int) -> Optional[SnapshotInfo]:
        """Wait for the background write of an event; None if it failed or never ran."""
        future = self._saves.get(timestamp_ms)
        if future is None:
            return None
        return await asyncio.shield(future)

    def list(self) -> list[SnapshotInfo]:
        """Saved snapshots, newest first."""
        if not self.directory.is_dir():
            return []

        snapshots: list[SnapshotInfo] = []
        for path in self.directory.iterdir():
            timestamp_ms = parse_snapshot_timestamp(path.name)
            if timestamp_ms is None or not path.is_file():
                continue
            snapshots.append(SnapshotInfo(
                filename=path.name,
                timestamp=timestamp_ms,
                size_bytes=path.stat().st_size
            ))

        snapshots.sort(key=lambda s: s.timestamp, reverse=True)
        logger.debug(f"Found {len(snapshots)} snapshot(s) in {self.directory}")
        return snapshots

    def path_for(self, filename: str) -> Optional[Path]:
        """Resolve a snapshot name to its file, or None.

        Only names of the form motion_<digits>.jpg are accepted, so path
        separators and parent references never reach the filesystem.
        """
        if parse_snapshot_timestamp(filename) is None:
            logger.warning(f"Rejected snapshot name: {filename!r}")
            return None

        path = self.directory / filename
        return path if path.is_file() else None
