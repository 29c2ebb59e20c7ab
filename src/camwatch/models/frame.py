"""Pydantic models for demuxed frames and motion events.

This module defines data models for:
- Frame: One complete JPEG image cut from the decoder byte stream
- FramePair: Immutable (previous, current) snapshot handed to the scorer
- MotionEvent: Debounced rising edge of the motion score
- MotionMeasurement: Raw output of a frame comparison

All models are frozen: once demuxed, frame bytes are never mutated, so they
can be shared between the event loop and the scoring worker without locks.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ============================================================================
# Frames
# ============================================================================

class Frame(BaseModel):
    """Complete encoded image (SOI through EOI inclusive)."""

    model_config = {"frozen": True}

    data: bytes = Field(
        ...,
        repr=False,
        description="Encoded JPEG bytes, start marker through end marker"
    )

    sequence: int = Field(
        ...,
        ge=1,
        description="Monotonically increasing frame number within a stream"
    )

    timestamp: float = Field(
        ...,
        description="Arrival time (epoch seconds, best effort)"
    )

    @property
    def size(self) -> int:
        """Encoded size in bytes."""
        return len(self.data)


class FramePair(BaseModel):
    """Atomic snapshot of the two-slot frame history."""

    model_config = {"frozen": True}

    previous: Optional[Frame] = Field(
        default=None,
        description="Frame displaced by the current one (None for the first frame)"
    )

    current: Frame = Field(
        ...,
        description="Most recently demuxed frame"
    )

    @property
    def comparable(self) -> bool:
        """True once there are two frames to compare."""
        return self.previous is not None


# ============================================================================
# Motion
# ============================================================================

class MotionMeasurement(BaseModel):
    """Result of comparing two frames on the analysis grid."""

    model_config = {"frozen": True}

    score: int = Field(
        default=0,
        ge=0,
        description="Sum of absolute differences over changed pixels"
    )

    changed_pixels: int = Field(
        default=0,
        ge=0,
        description="Pixels whose difference exceeded the noise threshold"
    )


class MotionEvent(BaseModel):
    """Debounced motion event. Created only on a rising edge."""

    model_config = {"frozen": True}

    score: int = Field(..., ge=0, description="Motion score that triggered the event")

    timestamp: float = Field(..., description="Event time (epoch seconds)")

    frame: Frame = Field(..., description="Frame that triggered the event")

    @property
    def timestamp_ms(self) -> int:
        """Event time in epoch milliseconds (snapshot naming)."""
        return int(self.timestamp * 1000)
