"""Tests for the session controller and session stores."""
from __future__ import annotations

import json
import threading

import pytest
import requests

from conftest import frame, make_session
from zenfocus.config import EngineConfig
from zenfocus.controller import ActiveSession, SessionController
from zenfocus.errors import ConfigError, PersistenceError, SessionNotFound, SessionStateError
from zenfocus.models import FocusState, Session, SessionStatus
from zenfocus.storage import HttpSessionStore, InMemorySessionStore, JsonFileSessionStore

# Raw state == smoothed state, and side glances are distracting immediately.
INSTANT = {"window_size": 1, "side_glance_grace_frames": 0}


class FailingStore:
    def save(self, session: Session) -> str:
        raise PersistenceError("disk full")

    def query(self, user_id, start_ms=None, end_ms=None):
        return []


class BrokenDiskStore(FailingStore):
    def save(self, session: Session) -> str:
        raise OSError("disk gone")


def _plain_text_reply(*args, **kwargs):
    r = requests.Response()
    r.status_code = 200
    r._content = b"OK"
    return r


def test_frames_flow_through_the_pipeline():
    store = InMemorySessionStore()
    ctl = SessionController(store=store)
    session = ctl.start_session("u1", now_ms=0, overrides=INSTANT)

    assert ctl.ingest_frame(session.id, frame("center", ts=1_000)).transitioned is False
    res = ctl.ingest_frame(session.id, frame("left", ts=2_000))
    assert res.raw_state == FocusState.DISTRACTED
    assert res.smoothed_state == FocusState.DISTRACTED
    assert res.transitioned is True
    ctl.ingest_frame(session.id, frame("center", ts=5_000))

    result = ctl.end_session(session.id, now_ms=6_000)
    done = result.session
    assert [(s.start, s.end, s.state) for s in done.timeline] == [
        (0, 2_000, FocusState.FOCUSED),
        (2_000, 5_000, FocusState.DISTRACTED),
        (5_000, 6_000, FocusState.FOCUSED),
    ]
    assert done.distraction_count == 1
    assert done.productivity_score == 48
    assert result.saved_id == session.id
    assert store.query("u1") == [done]
    assert result.activity_counts == {"screen_work": 2, "distracted": 1}


def test_frames_after_end_are_discarded():
    ctl = SessionController()
    session = ctl.start_session("u1", now_ms=0)
    done = ctl.end_session(session.id, now_ms=1_000).session

    assert ctl.ingest_frame(session.id, frame("left", ts=2_000)) is None
    assert ctl.is_finalized(session.id)
    assert done.timeline[-1].end == 1_000
    with pytest.raises(SessionNotFound):
        ctl.pause_session(session.id)


def test_unknown_session():
    ctl = SessionController()
    with pytest.raises(SessionNotFound):
        ctl.ingest_frame("nope", frame())


def test_persistence_failure_keeps_the_scored_session():
    ctl = SessionController(store=FailingStore())
    session = ctl.start_session("u1", now_ms=0)
    result = ctl.end_session(session.id, now_ms=120_000)
    assert result.saved is False
    assert "disk full" in result.save_error
    assert result.session.status == SessionStatus.COMPLETED
    assert result.session.total_focus_minutes == 2
    assert result.session.productivity_score == 100


def test_sessions_have_independent_pipelines():
    ctl = SessionController()
    a = ctl.start_session("u1", now_ms=0, overrides={"side_glance_grace_frames": 2})
    b = ctl.start_session("u2", now_ms=0)
    ctl.ingest_frame(a.id, frame("left", ts=100))
    assert ctl.ingest_frame(a.id, frame("left", ts=200)).raw_state == FocusState.DISTRACTED
    assert ctl.ingest_frame(b.id, frame("left", ts=200)).raw_state == FocusState.FOCUSED
    assert set(ctl.active_session_ids()) == {a.id, b.id}


def test_pause_and_resume_through_controller():
    ctl = SessionController()
    s = ctl.start_session("u1", now_ms=0, overrides=INSTANT)
    assert ctl.pause_session(s.id, now_ms=1_000).status == SessionStatus.PAUSED
    assert ctl.ingest_frame(s.id, frame("left", ts=1_500)).transitioned is False
    assert ctl.resume_session(s.id, now_ms=3_000).status == SessionStatus.ACTIVE
    done = ctl.end_session(s.id, now_ms=4_000).session
    assert [(x.start, x.end) for x in done.timeline] == [(0, 1_000), (3_000, 4_000)]


def test_unknown_override_is_rejected():
    with pytest.raises(ConfigError):
        SessionController().start_session("u1", overrides={"not_a_knob": 1})


def test_duplicate_session_id_is_rejected():
    ctl = SessionController()
    ctl.start_session("u1", session_id="same", now_ms=0)
    with pytest.raises(ValueError):
        ctl.start_session("u1", session_id="same", now_ms=0)


def test_json_store_filters_by_user_and_range(tmp_path):
    store = JsonFileSessionStore(tmp_path)
    old = make_session(10, session_id="old")
    new = make_session(1, session_id="new")
    other = make_session(1, session_id="other", user_id="user-2")
    for s in (new, old, other):
        assert store.save(s) == s.id

    assert [s.id for s in store.query("user-1")] == ["old", "new"]
    assert [s.id for s in store.query("user-1", start_ms=new.start_time)] == ["new"]
    assert store.query("missing") == []

    raw = json.loads((tmp_path / "sessions" / "user-1" / "new.json").read_text())
    assert raw["userId"] == "user-1"
    assert raw["productivityScore"] == new.productivity_score


def test_json_store_skips_corrupt_files(tmp_path):
    store = JsonFileSessionStore(tmp_path)
    store.save(make_session(1, session_id="good"))
    (tmp_path / "sessions" / "user-1" / "bad.json").write_text("{not json")
    assert [s.id for s in store.query("user-1")] == ["good"]


def test_any_store_error_keeps_the_scored_session():
    ctl = SessionController(store=BrokenDiskStore())
    session = ctl.start_session("u1", now_ms=0)
    result = ctl.end_session(session.id, now_ms=60_000)
    assert result.saved is False
    assert result.save_error == "disk gone"
    assert result.session.productivity_score == 100
    assert ctl.is_finalized(session.id)


def test_http_store_non_json_reply_is_a_persistence_error(monkeypatch):
    monkeypatch.setattr(requests, "post", _plain_text_reply)
    monkeypatch.setattr(requests, "get", _plain_text_reply)
    store = HttpSessionStore("http://backend.invalid")
    with pytest.raises(PersistenceError):
        store.save(make_session(0))
    with pytest.raises(PersistenceError):
        store.query("user-1")

    ctl = SessionController(store=store)
    session = ctl.start_session("u1", now_ms=0)
    result = ctl.end_session(session.id, now_ms=60_000)
    assert result.saved is False
    assert result.session.status == SessionStatus.COMPLETED


def test_frame_racing_with_end_is_discarded():
    ctl = SessionController()
    session = ctl.start_session("u1", now_ms=0)
    handle = ctl._sessions[session.id]
    results = []

    # Hold the session lock so the frame is stuck while the session ends.
    with handle.lock:
        worker = threading.Thread(
            target=lambda: results.append(ctl.ingest_frame(session.id, frame("left", ts=2_000)))
        )
        worker.start()
        handle.segmenter.end(1_000)
        with ctl._lock:
            ctl._mark_finalized(session.id)
    worker.join(timeout=5)

    assert results == [None]


def test_finalized_ids_are_bounded():
    ctl = SessionController(finalized_history=2)
    ids = []
    for i in range(3):
        s = ctl.start_session("u1", now_ms=0)
        ctl.end_session(s.id, now_ms=1_000)
        ids.append(s.id)

    assert [ctl.is_finalized(i) for i in ids] == [False, True, True]
    assert ctl.ingest_frame(ids[-1], frame()) is None
    with pytest.raises(SessionNotFound):
        ctl.ingest_frame(ids[0], frame())


def test_current_before_start_is_a_state_error():
    ctl = SessionController()
    ctl._sessions["pending"] = ActiveSession.create("u1", EngineConfig())
    with pytest.raises(SessionStateError):
        ctl.current("pending")
