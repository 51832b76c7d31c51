from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import InvalidSignal


class FocusState(str, Enum):
    FOCUSED = "FOCUSED"
    DISTRACTED = "DISTRACTED"
    IDLE = "IDLE"
    SLEEPING = "SLEEPING"
    AWAY = "AWAY"


class Activity(str, Enum):
    SCREEN_WORK = "screen_work"
    READING = "reading"
    WRITING = "writing"
    THINKING = "thinking"
    DISTRACTED = "distracted"
    SLEEPING = "sleeping"
    AWAY = "away"


class GazeDirection(str, Enum):
    CENTER = "center"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"


class _WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HeadPose(_WireModel):
    pitch: float = 0.0  # looking up/down
    yaw: float = 0.0  # looking left/right
    roll: float = 0.0  # head tilt


class FrameSignal(_WireModel):
    face_detected: bool = False
    eyes_open: bool = True
    gaze_direction: GazeDirection = GazeDirection.CENTER
    head_pose: HeadPose = Field(default_factory=HeadPose)
    timestamp_ms: int | None = None

    @field_validator("face_detected", mode="before")
    @classmethod
    def _fail_safe_face(cls, value: Any) -> bool:
        # Anything but a real True routes the frame to AWAY.
        return value is True


def parse_signal(payload: dict[str, Any]) -> FrameSignal:
    """Validate a raw frame payload, raising InvalidSignal on bad enum values."""
    try:
        return FrameSignal.model_validate(payload)
    except ValidationError as e:
        raise InvalidSignal(str(e)) from e


@dataclass(frozen=True)
class InstantState:
    state: FocusState
    confidence: float
    activity: Activity


class EventSegment(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    start: int  # epoch ms
    end: int  # epoch ms
    state: FocusState
    confidence: float = 0.8

    @model_validator(mode="after")
    def _check_order(self) -> "EventSegment":
        if self.end < self.start:
            raise ValueError(f"segment end {self.end} precedes start {self.start}")
        return self

    @property
    def duration_ms(self) -> int:
        return self.end - self.start


class Session(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    user_id: str
    start_time: int  # epoch ms
    end_time: int | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    timeline: tuple[EventSegment, ...] = ()
    total_focus_minutes: int = 0
    total_distracted_minutes: int = 0
    distraction_count: int = 0
    productivity_score: int | None = None

    @property
    def is_final(self) -> bool:
        return self.status in (SessionStatus.COMPLETED, SessionStatus.ABORTED)


class DailyAggregate(_WireModel):
    date: str  # YYYY-MM-DD
    day_name: str = ""
    focus_minutes: int = 0
    distracted_minutes: int = 0
    sessions_count: int = 0
    productivity_score: int = 0


class StreakState(_WireModel):
    current_streak: int = 0
    longest_streak: int = 0


class UserStats(_WireModel):
    total_focus_minutes: int = 0
    total_sessions: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    average_productivity_score: int = 0
    today_focus_minutes: int = 0
    last_session_date: str | None = None
