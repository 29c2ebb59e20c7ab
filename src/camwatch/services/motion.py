"""
Motion scoring and debouncing.

This module handles:
- Frame differencing on a small grayscale analysis grid (OpenCV)
- Noise-gated scoring: only pixels that changed by more than the per-pixel
  threshold contribute, so a few large changes outweigh widespread sensor noise
- Edge-triggered debouncing with a cooldown between events

Scoring is fail-safe to quiet: a frame that cannot be decoded yields a
score of 0, never an exception.
"""

import logging
import math
import time
from typing import Optional, Tuple, Union

import cv2
import numpy as np

from camwatch.models.frame import Frame, MotionMeasurement
from camwatch.models.session import DebounceState
from camwatch import metrics

logger = logging.getLogger(__name__)

FrameLike = Union[Frame, bytes, bytearray, memoryview]


class MotionScorer:
    """CPU-based motion scoring by absolute frame difference."""

    def __init__(
        self,
        width: int = 160,
        height: int = 120,
        pixel_threshold: int = 30
    ):
        """
        Initialize scorer.

        Args:
            width: Analysis grid width (frames are downsampled to this)
            height: Analysis grid height
            pixel_threshold: Per-pixel intensity delta a pixel must exceed to count
        """
        if width <= 0 or height <= 0:
            raise ValueError("Analysis grid must be positive")
        if not 0 <= pixel_threshold <= 255:
            raise ValueError("pixel_threshold must be within 0-255")

        self.width = width
        self.height = height
        self.pixel_threshold = pixel_threshold

    def score(self, prev: FrameLike, curr: FrameLike) -> int:
        """Return the motion score between two encoded frames (0 if undecodable)."""
        return self.analyze(prev, curr).score

    __call__ = score

    def analyze(self, prev: FrameLike, curr: FrameLike) -> MotionMeasurement:
        """
        Compare two encoded frames.

        Args:
            prev: Earlier frame (Frame or encoded bytes)
            curr: Later frame

        Returns:
            MotionMeasurement with the score and changed-pixel count
        """
        start = time.perf_counter()

        gray_prev = self._decode(prev)
        gray_curr = self._decode(curr) if gray_prev is not None else None
        if gray_prev is None or gray_curr is None:
            metrics.motion_decode_failures_total.inc()
            return MotionMeasurement()

        diff = cv2.absdiff(gray_prev, gray_curr)
        changed = diff > self.pixel_threshold
        changed_pixels = int(np.count_nonzero(changed))
        score = int(diff[changed].sum(dtype=np.int64))

        metrics.motion_scoring_duration_seconds.observe(time.perf_counter() - start)
        metrics.motion_score.observe(score)

        return MotionMeasurement(score=score, changed_pixels=changed_pixels)

    def _decode(self, frame: FrameLike) -> Optional[np.ndarray]:
        """Decode to an 8-bit grayscale grid of the analysis size, or None."""
        data = frame.data if isinstance(frame, Frame) else bytes(frame)
        if not data:
            return None

        try:
            encoded = np.frombuffer(data, dtype=np.uint8)
            gray = cv2.imdecode(encoded, cv2.IMREAD_GRAYSCALE)
            if gray is None:
                logger.debug(f"Frame decode failed ({len(data)} bytes)")
                return None

            if gray.shape != (self.height, self.width):
                gray = cv2.resize(gray, (self.width, self.height), interpolation=cv2.INTER_AREA)
            return gray

        except cv2.error as e:
            logger.debug(f"OpenCV decode error: {e}")
            return None


class MotionDebouncer:
    """Edge-triggered motion state machine with cooldown.

    IDLE → ACTIVE when score > threshold and the cooldown since the last
    event has elapsed; that transition is the only one that fires.
    ACTIVE → IDLE whenever score <= threshold. Cooldown gates re-firing only,
    never the return to IDLE.
    """

    def __init__(self, motion_threshold: int = 5000, cooldown_s: float = 3.0):
        """
        Args:
            motion_threshold: Score above which a frame counts as motion
            cooldown_s: Minimum seconds between two fires
        """
        if cooldown_s < 0:
            raise ValueError("cooldown_s must be non-negative")

        self.motion_threshold = motion_threshold
        self.cooldown_s = cooldown_s
        self.state = DebounceState.IDLE
        self.last_fire_time = -math.inf

    @property
    def active(self) -> bool:
        return self.state is DebounceState.ACTIVE

    def update(self, score: float, now: float) -> bool:
        """
        Feed one score.

        Args:
            score: Motion score of the newest frame pair
            now: Current time in seconds (same clock for every call)

        Returns:
            True exactly when a motion event fires
        """
        if score <= self.motion_threshold:
            if self.state is DebounceState.ACTIVE:
                logger.debug(f"Motion ended (score={score})")
            self.state = DebounceState.IDLE
            return False

        if self.state is DebounceState.ACTIVE:
            return False

        if now - self.last_fire_time < self.cooldown_s:
            logger.debug(f"Motion suppressed by cooldown (score={score})")
            return False

        self.state = DebounceState.ACTIVE
        self.last_fire_time = now
        return True

    def snapshot(self) -> Tuple[DebounceState, float]:
        """Return (state, last_fire_time)."""
        return self.state, self.last_fire_time

    def reset(self) -> None:
        """Return to IDLE and forget the last fire."""
        self.state = DebounceState.IDLE
        self.last_fire_time = -math.inf
