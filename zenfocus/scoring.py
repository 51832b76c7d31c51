from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from .models import EventSegment, FocusState, Session, SessionStatus

MS_PER_MINUTE = 60_000
PENALTY_PER_DISTRACTION = 2
MAX_DISTRACTION_PENALTY = 20


def round_half_up(value: float) -> int:
    """Round .5 upward (2.5 -> 3), unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


@dataclass
class SessionScore:
    total_focus_ms: int
    total_distracted_ms: int
    distraction_count: int
    focus_ratio: float
    penalty: int
    productivity_score: int
    total_focus_minutes: int
    total_distracted_minutes: int
    longest_focus_ms: int = 0
    longest_distracted_ms: int = 0
    avg_focus_before_distract_ms: int | None = None
    state_durations_ms: dict[str, int] = field(default_factory=dict)

    @property
    def focus_percent(self) -> float:
        return round(self.focus_ratio * 100.0, 2)


def count_distractions(timeline: Sequence[EventSegment]) -> int:
    """Transitions into DISTRACTED, not the number of distracted segments."""
    count = 0
    for i, seg in enumerate(timeline):
        if seg.state != FocusState.DISTRACTED:
            continue
        if i == 0 or timeline[i - 1].state != FocusState.DISTRACTED:
            count += 1
    return count


def productivity_score_from(focus_ms: int, distracted_ms: int, distraction_count: int) -> tuple[float, int, int]:
    """Returns (focus_ratio, penalty, productivity_score)."""
    active_ms = focus_ms + distracted_ms
    focus_ratio = focus_ms / active_ms if active_ms > 0 else 0.0
    penalty = min(distraction_count * PENALTY_PER_DISTRACTION, MAX_DISTRACTION_PENALTY)
    score = max(0, min(100, round_half_up(focus_ratio * 100 - penalty)))
    return focus_ratio, penalty, score


def score_timeline(timeline: Sequence[EventSegment]) -> SessionScore:
    # IDLE / AWAY / SLEEPING count toward neither total nor the ratio denominator.
    durations: dict[str, int] = {s.value: 0 for s in FocusState}
    longest: dict[FocusState, int] = {FocusState.FOCUSED: 0, FocusState.DISTRACTED: 0}
    for seg in timeline:
        d = seg.duration_ms
        durations[seg.state.value] += d
        if seg.state in longest:
            longest[seg.state] = max(longest[seg.state], d)

    focus_ms = durations[FocusState.FOCUSED.value]
    distracted_ms = durations[FocusState.DISTRACTED.value]
    distraction_count = count_distractions(timeline)
    focus_ratio, penalty, score = productivity_score_from(focus_ms, distracted_ms, distraction_count)

    # Focus run immediately preceding each distraction.
    focus_before: list[int] = []
    for i in range(1, len(timeline)):
        prev, seg = timeline[i - 1], timeline[i]
        if seg.state == FocusState.DISTRACTED and prev.state == FocusState.FOCUSED:
            focus_before.append(prev.duration_ms)
    avg_focus_before = round_half_up(sum(focus_before) / len(focus_before)) if focus_before else None

    return SessionScore(
        total_focus_ms=focus_ms,
        total_distracted_ms=distracted_ms,
        distraction_count=distraction_count,
        focus_ratio=focus_ratio,
        penalty=penalty,
        productivity_score=score,
        total_focus_minutes=round_half_up(focus_ms / MS_PER_MINUTE),
        total_distracted_minutes=round_half_up(distracted_ms / MS_PER_MINUTE),
        longest_focus_ms=longest[FocusState.FOCUSED],
        longest_distracted_ms=longest[FocusState.DISTRACTED],
        avg_focus_before_distract_ms=avg_focus_before,
        state_durations_ms=durations,
    )


def finalize_session(
    session: Session,
    timeline: Sequence[EventSegment],
    *,
    end_ms: int,
    status: SessionStatus = SessionStatus.COMPLETED,
) -> Session:
    computed = score_timeline(timeline)
    return session.model_copy(
        update={
            "end_time": end_ms,
            "status": status,
            "timeline": tuple(timeline),
            "total_focus_minutes": computed.total_focus_minutes,
            "total_distracted_minutes": computed.total_distracted_minutes,
            "distraction_count": computed.distraction_count,
            "productivity_score": computed.productivity_score,
        }
    )


def summary_to_payload(session: Session, computed: SessionScore | None = None) -> dict[str, Any]:
    computed = computed or score_timeline(session.timeline)
    return {
        "sessionId": session.id,
        "userId": session.user_id,
        "status": session.status.value,
        "startTime": session.start_time,
        "endTime": session.end_time,
        "segments": len(session.timeline),
        "focusedMs": computed.total_focus_ms,
        "distractedMs": computed.total_distracted_ms,
        "longestFocusedMs": computed.longest_focus_ms,
        "longestDistractedMs": computed.longest_distracted_ms,
        "distractions": computed.distraction_count,
        "avgFocusBeforeDistractMs": computed.avg_focus_before_distract_ms,
        "focusPercent": computed.focus_percent,
        "penalty": computed.penalty,
        "productivityScore": session.productivity_score,
        "totalFocusMinutes": session.total_focus_minutes,
        "totalDistractedMinutes": session.total_distracted_minutes,
        "stateDurationsMs": computed.state_durations_ms,
    }
