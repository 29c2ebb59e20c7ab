"""JPEG frame demuxer for the decoder's image pipe.

Cuts an unbounded, arbitrarily chunked byte stream into complete JPEG
images, bounded by the SOI (FF D8) and EOI (FF D9) markers.

Scan loop per feed():
    1. No SOI in the buffer      → discard it, except a trailing FF that
                                   may be half of a split SOI (the only
                                   byte ever kept without an SOI)
    2. SOI but no EOI after it   → keep bytes from the SOI onward, wait
    3. SOI ... EOI               → emit [SOI, EOI+2), continue with the rest

The EOI search starts strictly after the matched SOI and takes the first EOI
found. A partial frame that grows past max_pending_bytes is abandoned and
the scan resynchronizes on the next SOI, so a decoder that never closes a
frame cannot grow the buffer without bound.

Logging Strategy:
    DEBUG - Frames extracted, discarded noise
    WARN  - Buffer overflow resynchronization
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Final, Iterator

from ..models.frame import Frame
from .. import metrics

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

JPEG_START_MARKER: Final[bytes] = b'\xff\xd8'
"""JPEG SOI (Start of Image) marker."""

JPEG_END_MARKER: Final[bytes] = b'\xff\xd9'
"""JPEG EOI (End of Image) marker."""

DEFAULT_MAX_PENDING_BYTES: Final[int] = 8 * 1024 * 1024
"""Largest incomplete frame kept while waiting for an end marker."""

# ============================================================================
# Frame Demuxer
# ============================================================================

class FrameDemuxer:
    """Accumulates byte chunks and yields complete JPEG frames.

    One instance per decoder stream; the accumulation buffer is owned
    exclusively by the instance. Not thread-safe: chunks must be fed in
    arrival order from a single caller.

    Attributes:
        max_pending_bytes: Bound on a retained partial frame
    """

    def __init__(
        self,
        max_pending_bytes: int = DEFAULT_MAX_PENDING_BYTES,
        clock: Callable[[], float] = time.time
    ) -> None:
        if max_pending_bytes < len(JPEG_START_MARKER) + len(JPEG_END_MARKER):
            raise ValueError("max_pending_bytes too small to hold a frame")
        self.max_pending_bytes = max_pending_bytes
        self._clock = clock
        self._buffer = bytearray()
        self._sequence = 0

    @property
    def pending(self) -> bytes:
        """Bytes not yet resolved into a frame."""
        return bytes(self._buffer)

    @property
    def frames_emitted(self) -> int:
        """Frames emitted since creation (or the last sequence reset)."""
        return self._sequence

    def reset(self, sequence: bool = False) -> None:
        """Drop buffered bytes. Optionally restart frame numbering."""
        self._buffer.clear()
        if sequence:
            self._sequence = 0

    def feed(self, chunk: bytes) -> Iterator[Frame]:
        """Append a chunk and return the frames it completes.

        The chunk is buffered immediately; frames are cut lazily as the
        returned iterator is consumed. Frames not consumed before the next
        feed() are returned by that call instead.

        Args:
            chunk: Raw bytes from the decoder (may be empty)

        Returns:
            Finite iterator of complete frames, in stream order
        """
        if chunk:
            self._buffer.extend(chunk)
        return self._drain()

    def _drain(self) -> Iterator[Frame]:
        buffer = self._buffer

        while True:
            start = buffer.find(JPEG_START_MARKER)
            if start == -1:
                self._discard_noise()
                return

            end = buffer.find(JPEG_END_MARKER, start + len(JPEG_START_MARKER))
            if end == -1:
                if start:
                    del buffer[:start]
                if len(buffer) > self.max_pending_bytes:
                    self._resync()
                    continue
                return

            stop = end + len(JPEG_END_MARKER)
            data = bytes(buffer[start:stop])
            del buffer[:stop]

            self._sequence += 1
            frame = Frame(data=data, sequence=self._sequence, timestamp=self._clock())
            metrics.frames_demuxed_total.inc()
            metrics.frame_size_bytes.observe(len(data))
            logger.debug(f"Frame extracted: #{frame.sequence} ({len(data)} bytes)")
            yield frame

    def _discard_noise(self) -> None:
        """Drop a buffer that holds no start marker."""
        buffer = self._buffer
        if not buffer:
            return

        # Keep a trailing FF: the D8 may arrive in the next chunk
        keep = 1 if buffer[-1] == JPEG_START_MARKER[0] else 0
        dropped = len(buffer) - keep
        if dropped:
            del buffer[:dropped]
            metrics.demux_discarded_bytes_total.labels(reason="no_start_marker").inc(dropped)
            logger.debug(f"Discarded {dropped} bytes without start marker")

    def _resync(self) -> None:
        """Abandon the oversized partial frame at the head of the buffer."""
        buffer = self._buffer
        next_start = buffer.find(JPEG_START_MARKER, len(JPEG_START_MARKER))
        dropped = next_start if next_start != -1 else len(buffer)
        del buffer[:dropped]

        metrics.demux_resyncs_total.inc()
        metrics.demux_discarded_bytes_total.labels(reason="overflow").inc(dropped)
        logger.warning(
            f"Partial frame exceeded {self.max_pending_bytes} bytes without end marker, "
            f"dropped {dropped} bytes and resynchronized"
        )
