from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Iterator

from .config import EngineConfig
from .controller import EndResult, SessionController
from .models import parse_signal
from .storage import SessionStore

logger = logging.getLogger(__name__)

# Frames without a timestamp are spaced at the nominal 10 Hz capture rate.
DEFAULT_FRAME_INTERVAL_MS = 100


def iter_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{path}:{line_no}: invalid JSON ({e})") from e
            if not isinstance(row, dict):
                raise ValueError(f"{path}:{line_no}: expected a JSON object")
            yield row


def replay_session(
    rows: Iterable[dict[str, Any]],
    *,
    user_id: str,
    config: EngineConfig | None = None,
    store: SessionStore | None = None,
    start_ms: int = 0,
    session_id: str | None = None,
    frame_interval_ms: int = DEFAULT_FRAME_INTERVAL_MS,
) -> EndResult:
    """
    Drive one session from recorded rows.

    Each row is either a frame signal (camelCase keys, optional timestampMs) or a
    control row {"event": "pause" | "resume" | "end", "timestampMs": ...}.
    The session ends at the last timestamp seen if no "end" row is present.
    """
    controller = SessionController(config, store=store)
    session = controller.start_session(user_id, session_id=session_id, now_ms=start_ms)
    ts = start_ms
    frames = 0

    for row in rows:
        raw_ts = row.get("timestampMs", row.get("timestamp_ms"))
        ts = int(raw_ts) if raw_ts is not None else ts + frame_interval_ms
        event = row.get("event")
        if event == "pause":
            controller.pause_session(session.id, now_ms=ts)
        elif event == "resume":
            controller.resume_session(session.id, now_ms=ts)
        elif event == "end":
            break
        elif event is not None:
            raise ValueError(f"Unknown replay event: {event!r}")
        else:
            signal = parse_signal({**row, "timestampMs": ts})
            controller.ingest_frame(session.id, signal)
            frames += 1

    logger.info("Replayed %d frames for session %s", frames, session.id)
    return controller.end_session(session.id, now_ms=ts)
