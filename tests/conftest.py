"""Shared fixtures: synthetic frames and a scriptable decoder supervisor."""

import cv2
import numpy as np
import pytest

from camwatch.config_io import Settings
from camwatch.exceptions import DecoderSpawnError
from camwatch.models.session import SupervisorState


def gray_image(width=160, height=120, background=0, block=None, block_value=200):
    """Grayscale image, optionally with a square block (x, y, size)."""
    image = np.full((height, width), background, dtype=np.uint8)
    if block is not None:
        x, y, size = block
        image[y:y + size, x:x + size] = block_value
    return image


def encode(image, ext=".jpg", quality=95):
    params = [cv2.IMWRITE_JPEG_QUALITY, quality] if ext == ".jpg" else []
    ok, buf = cv2.imencode(ext, image, params)
    assert ok
    return buf.tobytes()


class FakeSupervisor:
    """Stands in for ProcessSupervisor; the test drives its callbacks."""

    def __init__(self, settings, on_output, on_failure=None, on_exit=None):
        self.settings = settings
        self.on_output = on_output
        self.on_failure = on_failure
        self.on_exit = on_exit
        self.state = SupervisorState.STOPPED
        self.attempts = 0
        self.started = []
        self.stop_calls = 0
        self.spawn_error = None

    async def start(self, source_url):
        if self.spawn_error is not None:
            self.state = SupervisorState.FAILED
            raise DecoderSpawnError(self.spawn_error)
        self.started.append(source_url)
        self.state = SupervisorState.RUNNING
        self.attempts = 1

    async def stop(self):
        self.stop_calls += 1
        self.state = SupervisorState.STOPPED
        self.attempts = 0


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def settings(tmp_path):
    return Settings(snapshot_dir=tmp_path / "screenshots", reconnect_delay_s=0.0)


@pytest.fixture
def jpeg_bytes():
    """Factory for small JPEG frames: jpeg_bytes(value) or jpeg_bytes(block=...)."""
    def factory(background=0, block=None, width=32, height=24, quality=95):
        return encode(gray_image(width, height, background, block), ".jpg", quality)
    return factory


@pytest.fixture
def png_bytes():
    def factory(background=0, block=None, width=160, height=120, block_value=200):
        return encode(gray_image(width, height, background, block, block_value), ".png")
    return factory


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def supervisor_holder():
    """Factory for StreamSession that keeps the FakeSupervisor it built."""
    holder = {}

    def factory(settings, on_output, on_failure=None, on_exit=None):
        holder["supervisor"] = FakeSupervisor(settings, on_output, on_failure, on_exit)
        return holder["supervisor"]

    holder["factory"] = factory
    return holder
