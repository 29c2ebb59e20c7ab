"""
Unit tests for the process-wide session container.
"""

import pytest

from camwatch.services import container
from camwatch.services.session import StreamSession


@pytest.fixture(autouse=True)
def clean_container(monkeypatch):
    monkeypatch.setattr(container, "stream_session", None)
    monkeypatch.setattr(container, "snapshot_store", None)


def make_session(settings, holder):
    return StreamSession(settings, supervisor_factory=holder["factory"])


class TestContainer:

    def test_get_before_install_raises(self):
        with pytest.raises(RuntimeError):
            container.get_stream_session()
        with pytest.raises(RuntimeError):
            container.get_snapshot_store()

    def test_install_and_get(self, settings, supervisor_holder):
        session = make_session(settings, supervisor_holder)
        container.install_session(session)
        assert container.get_stream_session() is session

    def test_replacing_idle_session_is_allowed(self, settings, supervisor_holder):
        first = make_session(settings, supervisor_holder)
        second = make_session(settings, supervisor_holder)

        container.install_session(first)
        container.install_session(second)

        assert container.get_stream_session() is second

    @pytest.mark.asyncio
    async def test_replacing_running_session_is_refused(self, settings, supervisor_holder):
        first = make_session(settings, supervisor_holder)
        container.install_session(first)
        await first.start("rtsp://cam/one")

        with pytest.raises(RuntimeError):
            container.install_session(make_session(settings, supervisor_holder))

        # Reinstalling the same session is fine
        container.install_session(first)
        await first.close()
        container.install_session(None)
        assert container.stream_session is None
