"""Tests for deriving frame signals from pose-model outputs."""
from __future__ import annotations

import pytest

from zenfocus.classifier import FrameClassifier
from zenfocus.config import EngineConfig
from zenfocus.gaze import decide_gaze, relative_pose, signal_from_pose
from zenfocus.models import Activity, FocusState, GazeDirection


@pytest.mark.parametrize(
    "yaw, pitch, expected",
    [
        (0.0, 0.0, GazeDirection.CENTER),
        (0.33, 0.0, GazeDirection.RIGHT),
        (-0.33, 0.5, GazeDirection.LEFT),  # horizontal wins
        (0.0, 0.21, GazeDirection.DOWN),
        (0.0, -0.25, GazeDirection.CENTER),  # up needs 1.5x the pitch threshold
        (0.0, -0.31, GazeDirection.UP),
    ],
)
def test_decide_gaze(yaw, pitch, expected):
    assert decide_gaze(yaw, pitch) == expected


def test_thresholds_come_from_config():
    strict = EngineConfig(gaze_yaw_threshold=0.1)
    assert decide_gaze(0.2, 0.0, strict) == GazeDirection.RIGHT
    assert decide_gaze(0.2, 0.0) == GazeDirection.CENTER


def test_relative_pose_of_a_frontal_face():
    yaw, pitch, roll = relative_pose(
        nose=(0.5, 0.5), left_eye=(0.4, 0.4), right_eye=(0.6, 0.4), mouth=(0.5, 0.7), forehead=(0.5, 0.2)
    )
    assert yaw == pytest.approx(0.0)
    assert pitch == pytest.approx(0.2)
    assert roll == pytest.approx(0.0)


def test_signal_from_pose_blinks_and_scaling():
    sig = signal_from_pose(face_detected=True, relative_yaw=0.02, relative_pitch=0.3, blink_left=0.2, blink_right=0.3)
    assert sig.eyes_open is True
    assert sig.gaze_direction == GazeDirection.DOWN
    assert sig.head_pose.yaw == pytest.approx(2.0)
    res = FrameClassifier().classify(sig)
    assert (res.state, res.activity) == (FocusState.FOCUSED, Activity.READING)

    closed = signal_from_pose(face_detected=True, blink_left=0.7, blink_right=0.7)
    assert closed.eyes_open is False

    gone = signal_from_pose(face_detected=False, relative_yaw=0.9)
    assert gone.face_detected is False
