from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from . import ACTIVITIES, STATES, __version__
from .config import load_config
from .controller import EndResult, FrameResult, SessionController
from .errors import ConfigError, InvalidSignal, SessionNotFound, SessionStateError
from .models import DailyAggregate, FrameSignal, Session, UserStats, parse_signal
from .scoring import summary_to_payload
from .stats import (
    DEFAULT_LOOKBACK_DAYS,
    aggregate_user_stats,
    daily_buckets,
    query_lookback,
    recent_sessions,
)
from .storage import JsonFileSessionStore, SessionStore

logger = logging.getLogger(__name__)


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartSessionRequest(_Body):
    user_id: str
    session_id: str | None = None
    timestamp_ms: int | None = None
    config: dict[str, Any] = Field(default_factory=dict)


class LifecycleRequest(_Body):
    # Client clock, matching the timestampMs its frames carry. Server time if omitted.
    timestamp_ms: int | None = None


class FramePayload(_Body):
    session_id: str
    discarded: bool = False
    timestamp_ms: int | None = None
    raw_state: str | None = None
    raw_confidence: float | None = None
    activity: str | None = None
    smoothed_state: str | None = None
    transitioned: bool = False


class StopSessionResponse(_Body):
    session: Session
    summary: dict[str, Any]
    saved: bool
    saved_id: str | None = None
    save_error: str | None = None
    activity_counts: dict[str, int] = Field(default_factory=dict)


def _frame_payload(session_id: str, result: FrameResult | None) -> FramePayload:
    if result is None:
        return FramePayload(session_id=session_id, discarded=True)
    return FramePayload(
        session_id=session_id,
        timestamp_ms=result.timestamp_ms,
        raw_state=result.raw_state.value,
        raw_confidence=round(result.raw_confidence, 4),
        activity=result.activity.value,
        smoothed_state=result.smoothed_state.value,
        transitioned=result.transitioned,
    )


def _client_ms(payload: LifecycleRequest | None) -> int | None:
    return payload.timestamp_ms if payload is not None else None


def _stop_payload(result: EndResult) -> StopSessionResponse:
    return StopSessionResponse(
        session=result.session,
        summary=summary_to_payload(result.session),
        saved=result.saved,
        saved_id=result.saved_id,
        save_error=result.save_error,
        activity_counts=result.activity_counts,
    )


def create_app(controller: SessionController | None = None, store: SessionStore | None = None) -> FastAPI:
    if controller is None:
        cfg = load_config()
        store = store or JsonFileSessionStore(cfg.state_dir)
        controller = SessionController(cfg.engine, store=store)
    elif store is None:
        store = controller.store

    app = FastAPI(title="ZenFocus Attention Engine", version=__version__)
    app.state.controller = controller
    app.state.store = store

    @app.exception_handler(SessionNotFound)
    async def _not_found(_: Request, exc: SessionNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionStateError)
    async def _bad_state(_: Request, exc: SessionStateError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(ConfigError)
    async def _bad_config(_: Request, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    def _require_store() -> SessionStore:
        if store is None:
            raise HTTPException(status_code=503, detail="No session store configured")
        return store

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "ok": True,
            "version": __version__,
            "states": STATES,
            "activities": ACTIVITIES,
            "activeSessions": len(controller.active_session_ids()),
        }

    @app.post("/session/start", response_model=Session)
    async def start_session(payload: StartSessionRequest) -> Session:
        try:
            return controller.start_session(
                payload.user_id,
                session_id=payload.session_id,
                now_ms=payload.timestamp_ms,
                overrides=payload.config or None,
            )
        except ConfigError:
            raise
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

    @app.get("/session/{session_id}", response_model=Session)
    async def get_session(session_id: str) -> Session:
        return controller.current(session_id)

    @app.post("/session/{session_id}/frame", response_model=FramePayload)
    async def ingest_frame(session_id: str, signal: FrameSignal) -> FramePayload:
        return _frame_payload(session_id, controller.ingest_frame(session_id, signal))

    @app.post("/session/{session_id}/pause", response_model=Session)
    async def pause_session(session_id: str, payload: LifecycleRequest | None = None) -> Session:
        return controller.pause_session(session_id, now_ms=_client_ms(payload))

    @app.post("/session/{session_id}/resume", response_model=Session)
    async def resume_session(session_id: str, payload: LifecycleRequest | None = None) -> Session:
        return controller.resume_session(session_id, now_ms=_client_ms(payload))

    @app.post("/session/{session_id}/stop", response_model=StopSessionResponse)
    async def stop_session(session_id: str, payload: LifecycleRequest | None = None) -> StopSessionResponse:
        return _stop_payload(controller.end_session(session_id, now_ms=_client_ms(payload)))

    @app.post("/session/{session_id}/abort", response_model=StopSessionResponse)
    async def abort_session(session_id: str, payload: LifecycleRequest | None = None) -> StopSessionResponse:
        return _stop_payload(controller.abort_session(session_id, now_ms=_client_ms(payload)))

    @app.get("/users/{user_id}/stats", response_model=UserStats)
    async def user_stats(user_id: str, days: int = Query(DEFAULT_LOOKBACK_DAYS, ge=1, le=3650)) -> UserStats:
        now, sessions = query_lookback(_require_store(), user_id, days_back=days)
        return aggregate_user_stats(sessions, now=now)

    @app.get("/users/{user_id}/daily", response_model=list[DailyAggregate])
    async def user_daily(
        user_id: str,
        days: int = Query(7, ge=1, le=366),
        mode: str = Query("running", pattern="^(running|mean)$"),
    ) -> list[DailyAggregate]:
        now, sessions = query_lookback(_require_store(), user_id, days_back=days)
        return daily_buckets(sessions, days_back=days, now=now, mode=mode)  # type: ignore[arg-type]

    @app.get("/users/{user_id}/recent")
    async def user_recent(user_id: str, count: int = Query(5, ge=1, le=100)) -> list[dict[str, Any]]:
        now, sessions = query_lookback(_require_store(), user_id, days_back=14)
        return [
            {
                "sessionId": r.session_id,
                "date": r.date,
                "displayDate": r.display_date,
                "focusMinutes": r.focus_minutes,
                "distractedMinutes": r.distracted_minutes,
                "score": r.score,
            }
            for r in recent_sessions(sessions, now=now, count=count)
        ]

    @app.websocket("/ws/session/{session_id}")
    async def ws_session(websocket: WebSocket, session_id: str) -> None:
        await websocket.accept()
        try:
            while True:
                text = (await websocket.receive_text()).strip()
                if text.lower() == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
                    continue
                if text.lower() == "stop":
                    try:
                        stopped = _stop_payload(controller.end_session(session_id))
                    except (SessionNotFound, SessionStateError) as e:
                        await websocket.send_text(json.dumps({"type": "error", "message": str(e)}))
                        break
                    await websocket.send_text(
                        json.dumps({"type": "stopped", **stopped.model_dump(mode="json", by_alias=True)})
                    )
                    break
                try:
                    signal = parse_signal(json.loads(text))
                    payload = _frame_payload(session_id, controller.ingest_frame(session_id, signal))
                except (json.JSONDecodeError, InvalidSignal, SessionNotFound, SessionStateError) as e:
                    await websocket.send_text(json.dumps({"type": "error", "message": str(e)}))
                    continue
                await websocket.send_text(payload.model_dump_json(by_alias=True))
        except WebSocketDisconnect:
            logger.debug("WebSocket for session %s disconnected", session_id)

    return app
