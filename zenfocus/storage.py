from __future__ import annotations

import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Protocol

import requests
from pydantic import ValidationError

from .errors import PersistenceError
from .models import Session

logger = logging.getLogger(__name__)

_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class SessionStore(Protocol):
    def save(self, session: Session) -> str: ...

    def query(self, user_id: str, start_ms: int | None = None, end_ms: int | None = None) -> list[Session]: ...


def _in_range(session: Session, start_ms: int | None, end_ms: int | None) -> bool:
    if start_ms is not None and session.start_time < start_ms:
        return False
    if end_ms is not None and session.start_time > end_ms:
        return False
    return True


def session_to_payload(session: Session) -> dict[str, Any]:
    return session.model_dump(mode="json", by_alias=True)


def session_from_payload(payload: dict[str, Any]) -> Session:
    return Session.model_validate(payload)


class InMemorySessionStore:
    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def save(self, session: Session) -> str:
        with self._lock:
            self._sessions[session.id] = session
        return session.id

    def query(self, user_id: str, start_ms: int | None = None, end_ms: int | None = None) -> list[Session]:
        with self._lock:
            snapshot = list(self._sessions.values())
        found = [s for s in snapshot if s.user_id == user_id and _in_range(s, start_ms, end_ms)]
        return sorted(found, key=lambda s: s.start_time)


def ensure_dir(path: str | Path) -> Path:
    p = Path(path).expanduser()
    p.mkdir(parents=True, exist_ok=True)
    return p


class JsonFileSessionStore:
    """One JSON file per session under <state_dir>/sessions/<user_id>/."""

    def __init__(self, state_dir: str | Path):
        self.root = Path(state_dir).expanduser() / "sessions"
        self._lock = threading.Lock()

    def _user_dir(self, user_id: str) -> Path:
        return self.root / _SAFE_NAME.sub("_", user_id)

    def save(self, session: Session) -> str:
        out = self._user_dir(session.user_id)
        p = out / f"{_SAFE_NAME.sub('_', session.id)}.json"
        try:
            with self._lock:
                ensure_dir(out)
                tmp = p.with_suffix(".json.tmp")
                tmp.write_text(json.dumps(session_to_payload(session), indent=2, sort_keys=True))
                tmp.replace(p)
        except OSError as e:
            raise PersistenceError(f"Failed to write session {session.id} to {p}: {e}") from e
        return session.id

    def query(self, user_id: str, start_ms: int | None = None, end_ms: int | None = None) -> list[Session]:
        d = self._user_dir(user_id)
        if not d.exists():
            return []
        found: list[Session] = []
        for p in sorted(d.glob("*.json")):
            try:
                session = session_from_payload(json.loads(p.read_text()))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                logger.warning("Skipping unreadable session file %s: %s", p, e)
                continue
            if _in_range(session, start_ms, end_ms):
                found.append(session)
        return sorted(found, key=lambda s: s.start_time)


class HttpSessionStore:
    """Client for a remote session backend exposing POST /sessions and GET /sessions."""

    def __init__(self, base_url: str, token: str | None = None, timeout_seconds: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def save(self, session: Session) -> str:
        try:
            r = requests.post(
                f"{self.base_url}/sessions",
                json=session_to_payload(session),
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
            r.raise_for_status()
            data = r.json() if r.content else {}
        except requests.RequestException as e:
            raise PersistenceError(f"Failed to upload session {session.id}: {e}") from e
        saved_id = data.get("id") if isinstance(data, dict) else None
        return str(saved_id or session.id)

    def query(self, user_id: str, start_ms: int | None = None, end_ms: int | None = None) -> list[Session]:
        params: dict[str, Any] = {"userId": user_id}
        if start_ms is not None:
            params["start"] = start_ms
        if end_ms is not None:
            params["end"] = end_ms
        try:
            r = requests.get(
                f"{self.base_url}/sessions",
                params=params,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
            r.raise_for_status()
            payload = r.json()
        except requests.RequestException as e:
            raise PersistenceError(f"Failed to query sessions for {user_id}: {e}") from e
        items = payload.get("sessions", []) if isinstance(payload, dict) else payload
        return sorted((session_from_payload(item) for item in items), key=lambda s: s.start_time)
