from __future__ import annotations


class ZenFocusError(Exception):
    """Base class for engine errors."""


class InvalidSignal(ZenFocusError, ValueError):
    """A frame signal carried a value outside the accepted enums."""


class ConfigError(ZenFocusError, ValueError):
    pass


class SessionStateError(ZenFocusError):
    """An operation is not allowed in the segmenter's current lifecycle state."""


class SessionFinalizedError(SessionStateError):
    pass


class SessionNotFound(ZenFocusError, KeyError):
    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Unknown session_id: {self.session_id}"


class PersistenceError(ZenFocusError):
    pass
