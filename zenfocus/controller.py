from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any

from .classifier import FrameClassifier
from .config import EngineConfig
from .errors import SessionNotFound, SessionStateError
from .models import Activity, FocusState, FrameSignal, Session, SessionStatus
from .segmenter import Phase, SessionSegmenter
from .smoothing import StateSmoother
from .storage import SessionStore

logger = logging.getLogger(__name__)

# Recently ended session ids kept so late frames can be told apart from unknown ids.
FINALIZED_HISTORY = 4096


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ActiveSession:
    """Everything one live session owns. Created at start, dropped at end."""

    session_id: str
    user_id: str
    config: EngineConfig
    classifier: FrameClassifier
    smoother: StateSmoother
    segmenter: SessionSegmenter
    lock: threading.Lock = field(default_factory=threading.Lock)
    frames: int = 0
    activity_counts: dict[str, int] = field(default_factory=lambda: {a.value: 0 for a in Activity})

    @classmethod
    def create(cls, user_id: str, config: EngineConfig) -> "ActiveSession":
        return cls(
            session_id="",
            user_id=user_id,
            config=config,
            classifier=FrameClassifier(config),
            smoother=StateSmoother(config.window_size),
            segmenter=SessionSegmenter(),
        )


@dataclass(frozen=True)
class FrameResult:
    session_id: str
    timestamp_ms: int
    raw_state: FocusState
    raw_confidence: float
    activity: Activity
    smoothed_state: FocusState
    transitioned: bool


@dataclass(frozen=True)
class EndResult:
    session: Session
    saved_id: str | None = None
    save_error: str | None = None
    activity_counts: dict[str, int] = field(default_factory=dict)

    @property
    def saved(self) -> bool:
        return self.saved_id is not None


class SessionController:
    """
    Routes frames and lifecycle calls to per-session pipelines.

    Each session's calls are serialized by its own lock. Frames that arrive for a
    recently ended session are dropped. Only the last finalized_history ended
    ids are remembered; older ids are treated as unknown.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        store: SessionStore | None = None,
        finalized_history: int = FINALIZED_HISTORY,
    ):
        self.config = config or EngineConfig()
        self.store = store
        self._sessions: dict[str, ActiveSession] = {}
        self._finalized: OrderedDict[str, None] = OrderedDict()
        self._finalized_history = max(finalized_history, 1)
        self._lock = threading.Lock()

    def active_session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def _get(self, session_id: str) -> ActiveSession:
        with self._lock:
            handle = self._sessions.get(session_id)
        if handle is None:
            raise SessionNotFound(session_id)
        return handle

    def is_finalized(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._finalized

    def _mark_finalized(self, session_id: str) -> None:
        # Caller holds self._lock
        self._sessions.pop(session_id, None)
        self._finalized[session_id] = None
        while len(self._finalized) > self._finalized_history:
            self._finalized.popitem(last=False)

    def start_session(
        self,
        user_id: str,
        *,
        session_id: str | None = None,
        now_ms: int | None = None,
        overrides: dict[str, Any] | None = None,
    ) -> Session:
        config = self.config.with_overrides(**overrides) if overrides else self.config
        handle = ActiveSession.create(user_id, config)
        session = handle.segmenter.start(user_id, now_ms=now_ms, session_id=session_id)
        handle.session_id = session.id
        with self._lock:
            if session.id in self._sessions or session.id in self._finalized:
                raise ValueError(f"Duplicate session_id: {session.id}")
            self._sessions[session.id] = handle
        return session

    def current(self, session_id: str) -> Session:
        handle = self._get(session_id)
        with handle.lock:
            session = handle.segmenter.session
        if session is None:
            raise SessionStateError(f"Session {session_id} has not started")
        return session

    def ingest_frame(self, session_id: str, signal: FrameSignal, now_ms: int | None = None) -> FrameResult | None:
        """Classify, smooth and segment one frame. Returns None if the frame was discarded."""
        with self._lock:
            finalized = session_id in self._finalized
            handle = None if finalized else self._sessions.get(session_id)
        if finalized:
            logger.debug("Discarding frame for finalized session %s", session_id)
            return None
        if handle is None:
            raise SessionNotFound(session_id)
        ts = signal.timestamp_ms if signal.timestamp_ms is not None else (now_ms if now_ms is not None else _now_ms())

        with handle.lock:
            if handle.segmenter.phase == Phase.ENDED:
                logger.debug("Discarding frame for finalized session %s", session_id)
                return None
            instant = handle.classifier.classify(signal)
            smoothed = handle.smoother.push(instant.state)
            transitioned = handle.segmenter.on_state(smoothed, now_ms=ts, confidence=instant.confidence)
            handle.frames += 1
            handle.activity_counts[instant.activity.value] += 1

        return FrameResult(
            session_id=session_id,
            timestamp_ms=ts,
            raw_state=instant.state,
            raw_confidence=instant.confidence,
            activity=instant.activity,
            smoothed_state=smoothed,
            transitioned=transitioned,
        )

    def pause_session(self, session_id: str, now_ms: int | None = None) -> Session:
        handle = self._get(session_id)
        with handle.lock:
            return handle.segmenter.pause(now_ms)

    def resume_session(self, session_id: str, now_ms: int | None = None) -> Session:
        handle = self._get(session_id)
        with handle.lock:
            return handle.segmenter.resume(now_ms)

    def end_session(
        self,
        session_id: str,
        now_ms: int | None = None,
        status: SessionStatus = SessionStatus.COMPLETED,
    ) -> EndResult:
        """
        Finalize and score the session, then hand it to the store.

        A failed save is reported on the result; the scored session is returned either way.
        """
        handle = self._get(session_id)
        with handle.lock:
            session = handle.segmenter.end(now_ms, status=status)
            counts = {k: v for k, v in handle.activity_counts.items() if v > 0}
        with self._lock:
            self._mark_finalized(session_id)
        logger.info("Session %s closed after %d frames", session_id, handle.frames)

        if self.store is None:
            return EndResult(session=session, activity_counts=counts)
        try:
            saved_id = self.store.save(session)
        except Exception as e:
            logger.warning("Session %s scored but not saved: %s", session_id, e)
            return EndResult(session=session, save_error=str(e), activity_counts=counts)
        return EndResult(session=session, saved_id=saved_id, activity_counts=counts)

    def abort_session(self, session_id: str, now_ms: int | None = None) -> EndResult:
        return self.end_session(session_id, now_ms=now_ms, status=SessionStatus.ABORTED)
