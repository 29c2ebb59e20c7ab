"""
Unit tests for motion scoring and debouncing.

Scoring uses losslessly encoded (PNG) frames where exact scores matter.
"""

import pytest

from camwatch.models.frame import Frame
from camwatch.models.session import DebounceState
from camwatch.services.motion import MotionDebouncer, MotionScorer


class TestMotionScorer:
    """Tests for MotionScorer.score / analyze."""

    def test_identical_frames_score_zero(self, png_bytes, jpeg_bytes):
        scorer = MotionScorer()
        still = png_bytes(block=(10, 10, 20))
        assert scorer.score(still, still) == 0

        still_jpeg = jpeg_bytes(90, width=160, height=120)
        assert scorer.score(still_jpeg, still_jpeg) == 0

    def test_block_of_200_scores_80000(self, png_bytes):
        """20x20 block at 200 on black: 400 pixels x 200."""
        scorer = MotionScorer()
        before = png_bytes()
        after = png_bytes(block=(70, 50, 20))

        measurement = scorer.analyze(before, after)

        assert measurement.score == 80000
        assert measurement.changed_pixels == 400

    def test_score_is_symmetric(self, png_bytes):
        scorer = MotionScorer()
        a, b = png_bytes(), png_bytes(block=(0, 0, 20))
        assert scorer.score(a, b) == scorer.score(b, a)

    def test_changes_below_pixel_threshold_are_ignored(self, png_bytes):
        scorer = MotionScorer(pixel_threshold=30)
        before = png_bytes(background=100)
        flicker = png_bytes(background=125)
        faint = png_bytes(background=100, block=(0, 0, 50), block_value=120)

        assert scorer.score(before, flicker) == 0
        assert scorer.score(before, faint) == 0

    def test_change_equal_to_threshold_is_ignored(self, png_bytes):
        scorer = MotionScorer(pixel_threshold=30)
        assert scorer.score(png_bytes(background=0), png_bytes(background=30)) == 0
        assert scorer.score(png_bytes(background=0), png_bytes(background=31)) == 31 * 160 * 120

    def test_larger_frames_are_downsampled(self, png_bytes):
        """A 40x40 block on a 320x240 frame covers exactly 20x20 analysis pixels."""
        scorer = MotionScorer()
        before = png_bytes(width=320, height=240)
        after = png_bytes(width=320, height=240, block=(100, 60, 40))

        assert scorer.score(before, after) == 80000

    def test_accepts_frame_models(self, png_bytes):
        scorer = MotionScorer()
        prev = Frame(data=png_bytes(), sequence=1, timestamp=0.0)
        curr = Frame(data=png_bytes(block=(70, 50, 20)), sequence=2, timestamp=0.1)
        assert scorer(prev, curr) == 80000

    def test_undecodable_frame_scores_zero(self, png_bytes):
        scorer = MotionScorer()
        good = png_bytes(block=(0, 0, 20))

        assert scorer.score(b"\xff\xd8garbage\xff\xd9", good) == 0
        assert scorer.score(good, b"not an image") == 0
        assert scorer.score(b"", good) == 0

    @pytest.mark.parametrize("kwargs", [
        {"width": 0},
        {"height": -1},
        {"pixel_threshold": 256},
        {"pixel_threshold": -1},
    ])
    def test_rejects_invalid_parameters(self, kwargs):
        with pytest.raises(ValueError):
            MotionScorer(**kwargs)


class TestMotionDebouncer:
    """Tests for the edge-triggered debouncer."""

    def test_fires_once_for_sustained_motion(self):
        """Ten high-motion frames 100ms apart fire a single event."""
        debouncer = MotionDebouncer(motion_threshold=5000, cooldown_s=3.0)
        fired = [debouncer.update(80000, now=i * 0.1) for i in range(10)]

        assert fired == [True] + [False] * 9
        assert debouncer.active

    def test_score_at_threshold_is_not_motion(self):
        debouncer = MotionDebouncer(motion_threshold=5000)
        assert debouncer.update(5000, now=0.0) is False
        assert debouncer.update(5001, now=0.1) is True

    def test_returns_to_idle_during_cooldown(self):
        debouncer = MotionDebouncer(motion_threshold=5000, cooldown_s=3.0)
        assert debouncer.update(9000, now=0.0)
        assert debouncer.update(0, now=0.5) is False
        assert debouncer.state is DebounceState.IDLE

    def test_cooldown_suppresses_refire(self):
        debouncer = MotionDebouncer(motion_threshold=5000, cooldown_s=3.0)
        assert debouncer.update(9000, now=0.0)
        debouncer.update(0, now=0.1)

        assert debouncer.update(9000, now=1.0) is False
        debouncer.update(0, now=1.1)
        assert debouncer.update(9000, now=3.0) is True

    def test_suppressed_motion_fires_once_cooldown_elapses(self):
        debouncer = MotionDebouncer(motion_threshold=5000, cooldown_s=3.0)
        debouncer.update(9000, now=0.0)
        debouncer.update(0, now=0.1)

        results = [debouncer.update(9000, now=t) for t in (2.0, 2.5, 3.2, 3.3)]
        assert results == [False, False, True, False]

    def test_snapshot_and_reset(self):
        debouncer = MotionDebouncer()
        debouncer.update(10000, now=12.0)
        assert debouncer.snapshot() == (DebounceState.ACTIVE, 12.0)

        debouncer.reset()
        state, _ = debouncer.snapshot()
        assert state is DebounceState.IDLE
        assert debouncer.update(10000, now=12.5) is True

    def test_rejects_negative_cooldown(self):
        with pytest.raises(ValueError):
            MotionDebouncer(cooldown_s=-1)
