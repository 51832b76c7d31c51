from __future__ import annotations

from .config import EngineConfig
from .models import Activity, FocusState, FrameSignal, GazeDirection, InstantState


class FrameClassifier:
    """
    Per-frame attention classification with cross-frame hysteresis.

    Rules are evaluated in priority order, first match wins:

    - no face                   -> AWAY
    - eyes closed               -> SLEEPING after sleep_confirm_frames, else FOCUSED (blink)
    - gaze center               -> FOCUSED / screen_work
    - gaze down + study mode    -> FOCUSED / reading or writing
    - gaze up                   -> FOCUSED / thinking during the up-glance grace, else fallback
    - gaze left/right           -> FOCUSED / thinking during the side-glance grace, else DISTRACTED
    - fallback                  -> DISTRACTED once looking away is sustained, else FOCUSED

    One instance belongs to one session; counters never leak between sessions.
    """

    def __init__(self, config: EngineConfig | None = None):
        self.config = config or EngineConfig()
        self.eyes_closed_frames: int = 0
        self.looking_away_frames: int = 0

    def reset(self) -> None:
        self.eyes_closed_frames = 0
        self.looking_away_frames = 0

    def classify(self, signal: FrameSignal) -> InstantState:
        cfg = self.config

        if not signal.face_detected:
            self.looking_away_frames += 1
            self.eyes_closed_frames = 0
            return InstantState(FocusState.AWAY, 0.9, Activity.AWAY)

        if not signal.eyes_open:
            self.eyes_closed_frames += 1
            self.looking_away_frames = 0
            if self.eyes_closed_frames > cfg.sleep_confirm_frames:
                return InstantState(FocusState.SLEEPING, 0.85, Activity.SLEEPING)
            # Brief closures are blinks
            return InstantState(FocusState.FOCUSED, 0.6, Activity.THINKING)
        self.eyes_closed_frames = 0

        gaze = signal.gaze_direction

        if gaze == GazeDirection.CENTER:
            self.looking_away_frames = 0
            return InstantState(FocusState.FOCUSED, 0.9, Activity.SCREEN_WORK)

        if gaze == GazeDirection.DOWN and cfg.study_mode:
            self.looking_away_frames = 0
            yaw = signal.head_pose.yaw
            activity = Activity.READING if abs(yaw) < cfg.reading_yaw_deg else Activity.WRITING
            return InstantState(FocusState.FOCUSED, 0.8, activity)

        if gaze == GazeDirection.UP:
            self.looking_away_frames += 1
            if self.looking_away_frames < cfg.up_glance_grace_frames:
                return InstantState(FocusState.FOCUSED, 0.7, Activity.THINKING)

        elif gaze in (GazeDirection.LEFT, GazeDirection.RIGHT):
            self.looking_away_frames += 1
            if self.looking_away_frames < cfg.side_glance_grace_frames:
                return InstantState(FocusState.FOCUSED, 0.6, Activity.THINKING)
            return InstantState(FocusState.DISTRACTED, 0.75, Activity.DISTRACTED)

        # Looking up too long, or looking down outside study mode
        if self.looking_away_frames > cfg.sustained_away_frames:
            return InstantState(FocusState.DISTRACTED, 0.7, Activity.DISTRACTED)
        return InstantState(FocusState.FOCUSED, 0.7, Activity.SCREEN_WORK)
