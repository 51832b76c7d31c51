from __future__ import annotations

import math
from typing import Sequence

from .config import EngineConfig
from .models import FrameSignal, GazeDirection, HeadPose

Point = Sequence[float]  # (x, y) in normalized image coordinates


def relative_pose(nose: Point, left_eye: Point, right_eye: Point, mouth: Point, forehead: Point) -> tuple[float, float, float]:
    """
    Relative (yaw, pitch, roll) from five face landmarks.

    Yaw is the nose offset from the eye midpoint in eye-distance units, pitch the
    vertical offset in face-height units. Roll is the eye-line slope.
    """
    eye_distance = math.hypot(right_eye[0] - left_eye[0], right_eye[1] - left_eye[1])
    face_height = abs(mouth[1] - forehead[1])
    eye_cx = (left_eye[0] + right_eye[0]) / 2.0
    eye_cy = (left_eye[1] + right_eye[1]) / 2.0
    yaw = (nose[0] - eye_cx) / max(eye_distance, 1e-6)
    pitch = (nose[1] - eye_cy) / max(face_height, 1e-6)
    roll = right_eye[1] - left_eye[1]
    return yaw, pitch, roll


def decide_gaze(relative_yaw: float, relative_pitch: float, config: EngineConfig | None = None) -> GazeDirection:
    # Horizontal wins over vertical; looking up needs a larger offset than down.
    cfg = config or EngineConfig()
    if relative_yaw > cfg.gaze_yaw_threshold:
        return GazeDirection.RIGHT
    if relative_yaw < -cfg.gaze_yaw_threshold:
        return GazeDirection.LEFT
    if relative_pitch > cfg.gaze_pitch_threshold:
        return GazeDirection.DOWN
    if relative_pitch < -cfg.gaze_pitch_threshold * cfg.up_pitch_factor:
        return GazeDirection.UP
    return GazeDirection.CENTER


def signal_from_pose(
    *,
    face_detected: bool,
    relative_yaw: float = 0.0,
    relative_pitch: float = 0.0,
    relative_roll: float = 0.0,
    blink_left: float = 0.0,
    blink_right: float = 0.0,
    timestamp_ms: int | None = None,
    config: EngineConfig | None = None,
) -> FrameSignal:
    """Build a FrameSignal from pose-model outputs (relative angles and blink scores)."""
    cfg = config or EngineConfig()
    if not face_detected:
        return FrameSignal(face_detected=False, timestamp_ms=timestamp_ms)
    eyes_closed = (blink_left + blink_right) / 2.0 > cfg.blink_threshold
    return FrameSignal(
        face_detected=True,
        eyes_open=not eyes_closed,
        gaze_direction=decide_gaze(relative_yaw, relative_pitch, cfg),
        # Scaled x100 so yaw is comparable with reading_yaw_deg
        head_pose=HeadPose(pitch=relative_pitch * 100, yaw=relative_yaw * 100, roll=relative_roll * 100),
        timestamp_ms=timestamp_ms,
    )
