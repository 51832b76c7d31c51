from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time as dtime, timedelta, tzinfo
from typing import Iterable, Literal, Sequence

import numpy as np

from .models import DailyAggregate, Session, SessionStatus, StreakState, UserStats
from .scoring import round_half_up
from .storage import SessionStore

BucketMode = Literal["running", "mean"]

DEFAULT_LOOKBACK_DAYS = 365


def _resolve_now(now: datetime | None, tz: tzinfo | None) -> tuple[datetime, tzinfo | None]:
    """Pin the clock once; an aware `now` supplies the zone when tz is omitted."""
    if now is None:
        return datetime.now(tz), tz
    if now.tzinfo is None:
        return now, tz
    if tz is None:
        return now, now.tzinfo
    return now.astimezone(tz), tz


def session_date(session: Session, tz: tzinfo | None = None) -> date:
    """Calendar date of the session start (local time unless tz is given)."""
    return datetime.fromtimestamp(session.start_time / 1000.0, tz).date()


def completed_only(sessions: Iterable[Session]) -> list[Session]:
    return [s for s in sessions if s.status == SessionStatus.COMPLETED]


def day_start_ms(day: date, tz: tzinfo | None = None) -> int:
    return int(datetime.combine(day, dtime.min, tzinfo=tz).timestamp() * 1000)


def compute_streaks(dates: Iterable[date], today: date) -> StreakState:
    present = set(dates)
    if not present:
        return StreakState()

    yesterday = today - timedelta(days=1)
    current = 0
    if today in present or yesterday in present:
        check = today if today in present else yesterday
        while check in present:
            current += 1
            check -= timedelta(days=1)

    longest = 0
    run = 0
    ordered = sorted(present, reverse=True)
    for i, d in enumerate(ordered):
        if i == 0:
            run = 1
        elif (ordered[i - 1] - d).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    return StreakState(current_streak=current, longest_streak=longest)


def average_score(sessions: Sequence[Session]) -> int:
    scores = [s.productivity_score for s in sessions if s.productivity_score is not None]
    if not scores:
        return 0
    return round_half_up(float(np.mean(scores)))


def aggregate_user_stats(
    sessions: Sequence[Session],
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> UserStats:
    """
    Totals, averages and streaks over one snapshot of a user's history.

    `now` is captured once so the whole computation sees a single calendar day.
    Sessions that are not completed are ignored.
    """
    now, tz = _resolve_now(now, tz)
    today = now.date()
    done = completed_only(sessions)
    if not done:
        return UserStats()

    dates = [session_date(s, tz) for s in done]
    streaks = compute_streaks(dates, today)

    return UserStats(
        total_focus_minutes=sum(s.total_focus_minutes for s in done),
        total_sessions=len(done),
        current_streak=streaks.current_streak,
        longest_streak=streaks.longest_streak,
        average_productivity_score=average_score(done),
        today_focus_minutes=sum(s.total_focus_minutes for s, d in zip(done, dates) if d == today),
        last_session_date=max(dates).isoformat(),
    )


def daily_buckets(
    sessions: Sequence[Session],
    days_back: int = 7,
    now: datetime | None = None,
    tz: tzinfo | None = None,
    mode: BucketMode = "running",
) -> list[DailyAggregate]:
    """
    One bucket per calendar day, oldest first, including empty days.

    mode="running" folds each arriving session score into the bucket as
    round((prev + new) / 2), in the order the sessions are given. The
    first scored session of a day seeds the bucket with its own score. The
    result depends on arrival order. mode="mean" gives the count-weighted
    mean of the scored sessions of the day instead.
    """
    if mode not in ("running", "mean"):
        raise ValueError(f"Unknown bucket mode: {mode}")
    now, tz = _resolve_now(now, tz)
    today = now.date()
    days = [today - timedelta(days=i) for i in range(max(days_back, 0) - 1, -1, -1)]
    buckets = {d: DailyAggregate(date=d.isoformat(), day_name=f"{d:%a}") for d in days}
    scored: dict[date, list[int]] = {d: [] for d in days}

    for s in completed_only(sessions):
        d = session_date(s, tz)
        bucket = buckets.get(d)
        if bucket is None:
            continue
        bucket.focus_minutes += s.total_focus_minutes
        bucket.distracted_minutes += s.total_distracted_minutes
        bucket.sessions_count += 1
        if s.productivity_score is None:
            continue
        if mode == "running":
            if not scored[d]:
                bucket.productivity_score = s.productivity_score
            else:
                bucket.productivity_score = round_half_up((bucket.productivity_score + s.productivity_score) / 2)
        scored[d].append(s.productivity_score)

    if mode == "mean":
        for d, scores in scored.items():
            if scores:
                buckets[d].productivity_score = round_half_up(float(np.mean(scores)))

    return [buckets[d] for d in days]


@dataclass
class WeeklySummary:
    days: list[DailyAggregate]
    total_focus_minutes: int
    total_sessions: int
    average_score: int


def weekly_summary(
    sessions: Sequence[Session],
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> WeeklySummary:
    now, tz = _resolve_now(now, tz)
    days = daily_buckets(sessions, days_back=7, now=now, tz=tz)
    in_week = [s for s in completed_only(sessions) if session_date(s, tz) >= now.date() - timedelta(days=6)]
    return WeeklySummary(
        days=days,
        total_focus_minutes=sum(s.total_focus_minutes for s in in_week),
        total_sessions=len(in_week),
        average_score=average_score(in_week),
    )


@dataclass
class RecentSession:
    session_id: str
    date: str
    display_date: str
    focus_minutes: int
    distracted_minutes: int
    score: int


def recent_sessions(
    sessions: Sequence[Session],
    now: datetime | None = None,
    tz: tzinfo | None = None,
    count: int = 5,
) -> list[RecentSession]:
    now, tz = _resolve_now(now, tz)
    today = now.date()
    yesterday = today - timedelta(days=1)
    newest_first = sorted(completed_only(sessions), key=lambda s: s.start_time, reverse=True)[:count]
    out: list[RecentSession] = []
    for s in newest_first:
        d = session_date(s, tz)
        if d == today:
            label = "Today"
        elif d == yesterday:
            label = "Yesterday"
        else:
            label = f"{d:%a}, {d:%b} {d.day}"
        out.append(
            RecentSession(
                session_id=s.id,
                date=d.isoformat(),
                display_date=label,
                focus_minutes=s.total_focus_minutes,
                distracted_minutes=s.total_distracted_minutes,
                score=s.productivity_score or 0,
            )
        )
    return out


def query_lookback(
    store: SessionStore,
    user_id: str,
    days_back: int = DEFAULT_LOOKBACK_DAYS,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> tuple[datetime, list[Session]]:
    """Single read of the user's history; returns the `now` it was taken at."""
    now, tz = _resolve_now(now, tz)
    start_day = now.date() - timedelta(days=days_back)
    start_ms = day_start_ms(start_day, tz)
    end_ms = int(now.timestamp() * 1000)
    return now, store.query(user_id, start_ms, end_ms)


def collect_user_stats(
    store: SessionStore,
    user_id: str,
    days_back: int = DEFAULT_LOOKBACK_DAYS,
    now: datetime | None = None,
    tz: tzinfo | None = None,
) -> UserStats:
    now, sessions = query_lookback(store, user_id, days_back=days_back, now=now, tz=tz)
    return aggregate_user_stats(sessions, now=now, tz=tz)
