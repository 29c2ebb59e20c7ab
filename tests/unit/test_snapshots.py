"""
Unit tests for the motion snapshot store.
"""

import pytest

from camwatch.models.frame import Frame, MotionEvent
from camwatch.services.snapshots import RECENT_SAVES, SnapshotStore


@pytest.fixture
def store(tmp_path):
    return SnapshotStore(tmp_path / "screenshots")


class TestSave:
    """Tests for writing snapshots."""

    def test_save_frame_names_by_milliseconds(self, store, jpeg_bytes):
        data = jpeg_bytes(120)

        info = store.save_frame(data, 1730000000.123)

        assert info.filename == "motion_1730000000123.jpg"
        assert info.timestamp == 1730000000123
        assert info.size_bytes == len(data)
        assert (store.directory / info.filename).read_bytes() == data

    def test_creates_missing_directory(self, store, jpeg_bytes):
        assert not store.directory.exists()
        store.save_frame(jpeg_bytes(), 1.0)
        assert store.directory.is_dir()

    def test_save_event(self, store, jpeg_bytes):
        frame = Frame(data=jpeg_bytes(50), sequence=7, timestamp=5.0)
        event = MotionEvent(score=80000, timestamp=6.5, frame=frame)

        info = store.save(event)

        assert info.filename == "motion_6500.jpg"
        assert (store.directory / "motion_6500.jpg").read_bytes() == frame.data

    @pytest.mark.asyncio
    async def test_motion_callback_writes_in_background(self, store, jpeg_bytes):
        data = jpeg_bytes(10)
        store.on_motion_event(90000, 2.0, data)

        info = await store.saved(2000)

        assert info.filename == "motion_2000.jpg"
        assert [s.filename for s in store.list()] == ["motion_2000.jpg"]
        assert (store.directory / "motion_2000.jpg").read_bytes() == data

    @pytest.mark.asyncio
    async def test_failed_background_write_reports_none(self, tmp_path, jpeg_bytes):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")
        store = SnapshotStore(blocker)

        store.on_motion_event(90000, 2.0, jpeg_bytes())

        assert await store.saved(2000) is None

    @pytest.mark.asyncio
    async def test_saved_for_unknown_event_is_none(self, store):
        assert await store.saved(12345) is None

    @pytest.mark.asyncio
    async def test_only_recent_saves_are_remembered(self, store, jpeg_bytes):
        data = jpeg_bytes()
        for i in range(RECENT_SAVES + 1):
            store.on_motion_event(90000, float(i + 1), data)

        assert await store.saved(1000) is None
        assert (await store.saved((RECENT_SAVES + 1) * 1000)).filename == \
            f"motion_{(RECENT_SAVES + 1) * 1000}.jpg"

    def test_unwritable_directory_raises(self, tmp_path, jpeg_bytes):
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("file in the way")
        store = SnapshotStore(blocker)

        with pytest.raises(OSError):
            store.save_frame(jpeg_bytes(), 1.0)


class TestList:
    """Tests for listing and resolving snapshots."""

    def test_missing_directory_lists_nothing(self, store):
        assert store.list() == []

    def test_newest_first_and_ignores_other_files(self, store, jpeg_bytes):
        for ts in (1.0, 3.0, 2.0):
            store.save_frame(jpeg_bytes(), ts)
        (store.directory / "notes.txt").write_text("x")
        (store.directory / "motion_abc.jpg").write_text("x")

        names = [s.filename for s in store.list()]

        assert names == ["motion_3000.jpg", "motion_2000.jpg", "motion_1000.jpg"]

    def test_path_for_existing_snapshot(self, store, jpeg_bytes):
        store.save_frame(jpeg_bytes(), 4.0)
        assert store.path_for("motion_4000.jpg") == store.directory / "motion_4000.jpg"

    @pytest.mark.parametrize("name", [
        "motion_9999.jpg",
        "../motion_4000.jpg",
        "motion_4000.jpg/../../etc/passwd",
        "notes.txt",
    ])
    def test_path_for_rejects(self, store, jpeg_bytes, name):
        store.save_frame(jpeg_bytes(), 4.0)
        assert store.path_for(name) is None
