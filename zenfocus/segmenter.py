from __future__ import annotations

import logging
import time
import uuid
from enum import Enum

from .errors import SessionFinalizedError, SessionStateError
from .models import EventSegment, FocusState, Session, SessionStatus
from .scoring import finalize_session

logger = logging.getLogger(__name__)

# Confidence stamped on segments closed by pause/end rather than by a state change.
LIFECYCLE_SEGMENT_CONFIDENCE = 0.8


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_session_id() -> str:
    return f"session_{_now_ms()}_{uuid.uuid4().hex[:9]}"


class Phase(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    PAUSED = "paused"
    ENDED = "ended"


class SessionSegmenter:
    """
    Builds the timeline of one session from smoothed-state changes.

    INACTIVE -> ACTIVE <-> PAUSED -> ENDED. The paused interval is not written to
    the timeline, so timeline duration can be shorter than wall-clock duration.
    """

    def __init__(self) -> None:
        self.phase = Phase.INACTIVE
        self.current_state: FocusState = FocusState.IDLE
        self.last_transition_ms: int = 0
        self.segments: list[EventSegment] = []
        self._session: Session | None = None

    @property
    def session(self) -> Session | None:
        return self._session

    def _require(self, *phases: Phase) -> None:
        if self.phase == Phase.ENDED:
            raise SessionFinalizedError("Session already finalized")
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise SessionStateError(f"Expected session phase in ({allowed}), got {self.phase.value}")

    def _close_segment(self, now_ms: int, confidence: float) -> None:
        # Clamp out-of-order clocks so end >= start always holds.
        end = max(now_ms, self.last_transition_ms)
        self.segments.append(
            EventSegment(
                start=self.last_transition_ms,
                end=end,
                state=self.current_state,
                confidence=confidence,
            )
        )
        self.last_transition_ms = end

    def start(self, user_id: str, now_ms: int | None = None, session_id: str | None = None) -> Session:
        self._require(Phase.INACTIVE)
        ts = now_ms if now_ms is not None else _now_ms()
        self.current_state = FocusState.FOCUSED
        self.last_transition_ms = ts
        self.segments = []
        self.phase = Phase.ACTIVE
        self._session = Session(
            id=session_id or new_session_id(),
            user_id=user_id,
            start_time=ts,
            status=SessionStatus.ACTIVE,
        )
        logger.info("Session %s started for user %s", self._session.id, user_id)
        return self._session

    def on_state(self, state: FocusState, now_ms: int | None = None, confidence: float = 0.8) -> bool:
        """Record a smoothed state; returns True when a segment was closed."""
        if self.phase == Phase.PAUSED:
            return False
        self._require(Phase.ACTIVE)
        state = FocusState(state)
        if state == self.current_state:
            return False
        ts = now_ms if now_ms is not None else _now_ms()
        self._close_segment(ts, confidence)
        logger.debug("Session %s: %s -> %s", self._session.id, self.current_state.value, state.value)
        self.current_state = state
        return True

    def pause(self, now_ms: int | None = None) -> Session:
        self._require(Phase.ACTIVE)
        ts = now_ms if now_ms is not None else _now_ms()
        self._close_segment(ts, LIFECYCLE_SEGMENT_CONFIDENCE)
        self.phase = Phase.PAUSED
        self._session = self._session.model_copy(update={"status": SessionStatus.PAUSED})
        logger.info("Session %s paused", self._session.id)
        return self._session

    def resume(self, now_ms: int | None = None) -> Session:
        self._require(Phase.PAUSED)
        self.last_transition_ms = now_ms if now_ms is not None else _now_ms()
        self.phase = Phase.ACTIVE
        self._session = self._session.model_copy(update={"status": SessionStatus.ACTIVE})
        logger.info("Session %s resumed", self._session.id)
        return self._session

    def end(self, now_ms: int | None = None, status: SessionStatus = SessionStatus.COMPLETED) -> Session:
        """Close the final segment, freeze the timeline and return the scored session."""
        self._require(Phase.ACTIVE, Phase.PAUSED)
        ts = now_ms if now_ms is not None else _now_ms()
        if self.phase == Phase.ACTIVE:
            self._close_segment(ts, LIFECYCLE_SEGMENT_CONFIDENCE)
        self.phase = Phase.ENDED
        self._session = finalize_session(self._session, self.segments, end_ms=ts, status=status)
        logger.info(
            "Session %s %s: %d segments, score=%s",
            self._session.id,
            status.value,
            len(self._session.timeline),
            self._session.productivity_score,
        )
        return self._session

    def abort(self, now_ms: int | None = None) -> Session:
        return self.end(now_ms, status=SessionStatus.ABORTED)
