"""Tests for session scoring."""
from __future__ import annotations

import pytest

from conftest import MINUTE_MS, timeline
from zenfocus.models import Session, SessionStatus
from zenfocus.scoring import (
    count_distractions,
    finalize_session,
    productivity_score_from,
    round_half_up,
    score_timeline,
    summary_to_payload,
)


def test_reference_session_scores_77():
    tl = timeline(
        ("FOCUSED", 20 * MINUTE_MS),
        ("DISTRACTED", 4 * MINUTE_MS),
        ("FOCUSED", 20 * MINUTE_MS),
        ("DISTRACTED", 3 * MINUTE_MS),
        ("FOCUSED", 10 * MINUTE_MS),
        ("DISTRACTED", 3 * MINUTE_MS),
    )
    score = score_timeline(tl)
    assert score.total_focus_minutes == 50
    assert score.total_distracted_minutes == 10
    assert score.distraction_count == 3
    assert score.focus_ratio == pytest.approx(0.8333, abs=1e-4)
    assert score.penalty == 6
    assert score.productivity_score == 77


def test_score_formula_directly():
    ratio, penalty, score = productivity_score_from(50 * MINUTE_MS, 10 * MINUTE_MS, 3)
    assert ratio == pytest.approx(5 / 6)
    assert penalty == 6
    assert score == 77


def test_distraction_count_counts_transitions_only():
    tl = timeline(("FOCUSED", 10), ("DISTRACTED", 10), ("DISTRACTED", 10), ("FOCUSED", 10), ("DISTRACTED", 10))
    assert count_distractions(tl) == 2
    assert count_distractions(timeline(("DISTRACTED", 10))) == 1
    assert count_distractions(timeline(("AWAY", 10), ("DISTRACTED", 10), ("IDLE", 5), ("DISTRACTED", 5))) == 2


def test_inactive_states_are_excluded():
    tl = timeline(
        ("FOCUSED", 30 * MINUTE_MS),
        ("AWAY", 60 * MINUTE_MS),
        ("SLEEPING", 10 * MINUTE_MS),
        ("IDLE", 5 * MINUTE_MS),
    )
    score = score_timeline(tl)
    assert score.focus_ratio == 1.0
    assert score.productivity_score == 100
    assert score.total_distracted_minutes == 0
    assert score.state_durations_ms["AWAY"] == 60 * MINUTE_MS


def test_no_active_time_scores_zero():
    assert score_timeline([]).productivity_score == 0
    assert score_timeline(timeline(("AWAY", 1000))).productivity_score == 0


def test_penalty_is_capped():
    parts = [("FOCUSED", MINUTE_MS)]
    for _ in range(15):
        parts += [("DISTRACTED", 0), ("FOCUSED", MINUTE_MS)]
    score = score_timeline(timeline(*parts))
    assert score.distraction_count == 15
    assert score.penalty == 20
    assert score.productivity_score == 80


def test_score_is_clamped_at_zero():
    score = score_timeline(timeline(("DISTRACTED", MINUTE_MS), ("FOCUSED", 0), ("DISTRACTED", MINUTE_MS)))
    assert score.productivity_score == 0


def test_minutes_round_half_up():
    score = score_timeline(timeline(("FOCUSED", 90_000), ("DISTRACTED", 150_000)))
    assert score.total_focus_minutes == 2
    assert score.total_distracted_minutes == 3
    assert round_half_up(2.5) == 3
    assert round_half_up(0.49) == 0


def test_streak_metrics():
    tl = timeline(("FOCUSED", 4000), ("DISTRACTED", 1000), ("FOCUSED", 2000), ("DISTRACTED", 3000))
    score = score_timeline(tl)
    assert score.longest_focus_ms == 4000
    assert score.longest_distracted_ms == 3000
    assert score.avg_focus_before_distract_ms == 3000
    assert score.focus_percent == 60.0
    assert score_timeline(timeline(("FOCUSED", 10))).avg_focus_before_distract_ms is None


def test_finalize_session_fills_scores():
    session = Session(id="s1", user_id="u1", start_time=0)
    tl = timeline(("FOCUSED", 45 * MINUTE_MS), ("DISTRACTED", 15 * MINUTE_MS))
    done = finalize_session(session, tl, end_ms=60 * MINUTE_MS)
    assert done.status == SessionStatus.COMPLETED
    assert done.end_time == 60 * MINUTE_MS
    assert done.timeline == tuple(tl)
    assert done.total_focus_minutes == 45
    assert done.distraction_count == 1
    assert done.productivity_score == 73

    payload = summary_to_payload(done)
    assert payload["sessionId"] == "s1"
    assert payload["productivityScore"] == 73
    assert payload["focusPercent"] == 75.0
