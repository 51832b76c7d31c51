"""Shared pytest fixtures."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from zenfocus.models import EventSegment, FocusState, FrameSignal, GazeDirection, HeadPose, Session, SessionStatus

MINUTE_MS = 60_000

# Fixed clock for date arithmetic: 2026-10-19 12:00 UTC
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def frame(
    gaze: str = "center",
    *,
    face: bool = True,
    eyes_open: bool = True,
    yaw: float = 0.0,
    pitch: float = 0.0,
    ts: int | None = None,
) -> FrameSignal:
    return FrameSignal(
        face_detected=face,
        eyes_open=eyes_open,
        gaze_direction=GazeDirection(gaze),
        head_pose=HeadPose(yaw=yaw, pitch=pitch),
        timestamp_ms=ts,
    )


def timeline(*parts: tuple[str, int], start: int = 0) -> list[EventSegment]:
    """Contiguous segments from (state, duration_ms) pairs."""
    out: list[EventSegment] = []
    t = start
    for state, duration in parts:
        out.append(EventSegment(start=t, end=t + duration, state=FocusState(state)))
        t += duration
    return out


def make_session(
    days_ago: int,
    *,
    score: int | None = 80,
    focus_minutes: int = 30,
    distracted_minutes: int = 5,
    status: SessionStatus = SessionStatus.COMPLETED,
    user_id: str = "user-1",
    session_id: str | None = None,
    hour: int = 10,
) -> Session:
    start = (NOW - timedelta(days=days_ago)).replace(hour=hour, minute=0)
    start_ms = int(start.timestamp() * 1000)
    return Session(
        id=session_id or f"s-{days_ago}-{hour}-{score}",
        user_id=user_id,
        start_time=start_ms,
        end_time=start_ms + (focus_minutes + distracted_minutes) * MINUTE_MS,
        status=status,
        total_focus_minutes=focus_minutes,
        total_distracted_minutes=distracted_minutes,
        productivity_score=score,
    )


@pytest.fixture
def now() -> datetime:
    return NOW
