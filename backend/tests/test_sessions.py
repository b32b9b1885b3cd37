"""
Per-session state and idle expiry.
"""

import time
import uuid

import pytest

from compresslimit import sessions
from compresslimit.compression.models import TaskStatus

from conftest import jpeg_asset


@pytest.fixture
def new_id():
    created = []

    def make():
        sid = f"test-{uuid.uuid4()}"
        created.append(sid)
        return sid

    yield make
    for sid in created:
        sessions.drop_session(sid)


def age(state, seconds):
    state.last_access = time.monotonic() - seconds


class TestSessions:

    def test_same_id_returns_same_state(self, new_id):
        sid = new_id()

        assert sessions.get_session(sid) is sessions.get_session(sid)

    def test_lookup_refreshes_last_access(self, new_id):
        sid = new_id()
        state = sessions.get_session(sid)
        age(state, 120)

        sessions.get_session(sid)

        assert state.idle_seconds(time.monotonic()) < 60

    def test_drop_session_releases_previews(self, new_id):
        state = sessions.get_session(new_id())
        orch = state.orchestrator
        orch.enqueue([jpeg_asset(64, 64)])
        orch.run_all(1024 * 1024)
        assert orch.previews.live_count == 1

        assert sessions.drop_session(state.session_id) is True
        assert orch.previews.live_count == 0
        assert sessions.drop_session(state.session_id) is False


class TestExpiry:

    def test_idle_session_is_evicted_and_previews_released(self, new_id, monkeypatch):
        monkeypatch.setattr(sessions, "SESSION_TTL_MINUTES", 1)
        idle = sessions.get_session(new_id())
        orch = idle.orchestrator
        orch.enqueue([jpeg_asset(64, 64)])
        orch.run_all(1024 * 1024)
        assert orch.snapshot()[0].status == TaskStatus.COMPLETED
        assert orch.previews.live_count == 1
        age(idle, 61)

        sessions.get_session(new_id())

        assert idle.session_id not in sessions._sessions
        assert orch.previews.live_count == 0
        assert orch.previews.released_count == 1
        assert len(orch) == 0

    def test_recent_session_is_kept(self, new_id, monkeypatch):
        monkeypatch.setattr(sessions, "SESSION_TTL_MINUTES", 1)
        recent = sessions.get_session(new_id())
        recent.orchestrator.enqueue([jpeg_asset(32, 32)])
        age(recent, 30)

        sessions.get_session(new_id())

        assert sessions._sessions[recent.session_id] is recent
        assert len(recent.orchestrator) == 1

    def test_expired_id_gets_a_fresh_session(self, new_id, monkeypatch):
        monkeypatch.setattr(sessions, "SESSION_TTL_MINUTES", 1)
        sid = new_id()
        old = sessions.get_session(sid)
        old.orchestrator.enqueue([jpeg_asset(32, 32)])
        age(old, 61)

        fresh = sessions.get_session(sid)

        assert fresh is not old
        assert len(fresh.orchestrator) == 0

    def test_running_session_is_not_evicted(self, new_id, monkeypatch):
        monkeypatch.setattr(sessions, "SESSION_TTL_MINUTES", 1)
        busy = sessions.get_session(new_id())
        orch = busy.orchestrator
        (task_id,) = orch.enqueue([jpeg_asset(32, 32)])
        kept = []

        class LookupDuringRun:
            """Ages the session and triggers eviction mid-run, then compresses normally."""

            def __init__(self, engine):
                self.engine = engine

            def compress(self, asset, budget, progress):
                age(busy, 61)
                sessions.get_session(new_id())
                kept.append(sessions._sessions.get(busy.session_id) is busy)
                return self.engine.compress(asset, budget, progress)

        orch.image_engine = LookupDuringRun(orch.image_engine)
        orch.run_all(1024 * 1024)

        assert kept == [True]
        assert orch.get_task(task_id).status == TaskStatus.COMPLETED
