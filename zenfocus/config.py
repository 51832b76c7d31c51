from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class EngineConfig:
    # Classifier hysteresis (frames, ~10 Hz)
    sleep_confirm_frames: int = 20
    up_glance_grace_frames: int = 15
    side_glance_grace_frames: int = 10
    sustained_away_frames: int = 20

    # Looking down with |yaw| below this is reading, otherwise writing
    reading_yaw_deg: float = 5.0

    # Smoothing
    window_size: int = 15

    # Gaze derivation from relative head pose (see gaze.py)
    gaze_yaw_threshold: float = 0.32
    gaze_pitch_threshold: float = 0.20
    up_pitch_factor: float = 1.5
    blink_threshold: float = 0.6

    # Looking down counts as focused (book / notes on the desk)
    study_mode: bool = True

    # 0-1, lower = more lenient; carried for collaborators, the rule chain does not read it
    sensitivity: float = 0.5

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ConfigError("window_size must be >= 1")
        for name in (
            "sleep_confirm_frames",
            "up_glance_grace_frames",
            "side_glance_grace_frames",
            "sustained_away_frames",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        if not 0.0 <= self.sensitivity <= 1.0:
            raise ConfigError("sensitivity must be in [0, 1]")
        if not 0.0 <= self.blink_threshold <= 1.0:
            raise ConfigError("blink_threshold must be in [0, 1]")

    def with_overrides(self, **overrides: Any) -> EngineConfig:
        """Per-session copy; unknown keys are rejected."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(unknown)}")
        return replace(self, **overrides)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ServiceConfig:
    state_dir: str
    host: str
    port: int
    log_level: str
    log_file: str | None
    engine: EngineConfig


def load_engine_config() -> EngineConfig:
    base = EngineConfig()
    return EngineConfig(
        sleep_confirm_frames=int(os.getenv("ZENFOCUS_SLEEP_CONFIRM_FRAMES", str(base.sleep_confirm_frames))),
        up_glance_grace_frames=int(os.getenv("ZENFOCUS_UP_GLANCE_GRACE_FRAMES", str(base.up_glance_grace_frames))),
        side_glance_grace_frames=int(
            os.getenv("ZENFOCUS_SIDE_GLANCE_GRACE_FRAMES", str(base.side_glance_grace_frames))
        ),
        sustained_away_frames=int(os.getenv("ZENFOCUS_SUSTAINED_AWAY_FRAMES", str(base.sustained_away_frames))),
        reading_yaw_deg=float(os.getenv("ZENFOCUS_READING_YAW_DEG", str(base.reading_yaw_deg))),
        window_size=int(os.getenv("ZENFOCUS_WINDOW_SIZE", str(base.window_size))),
        gaze_yaw_threshold=float(os.getenv("ZENFOCUS_GAZE_YAW_THRESHOLD", str(base.gaze_yaw_threshold))),
        gaze_pitch_threshold=float(os.getenv("ZENFOCUS_GAZE_PITCH_THRESHOLD", str(base.gaze_pitch_threshold))),
        up_pitch_factor=float(os.getenv("ZENFOCUS_UP_PITCH_FACTOR", str(base.up_pitch_factor))),
        blink_threshold=float(os.getenv("ZENFOCUS_BLINK_THRESHOLD", str(base.blink_threshold))),
        study_mode=_env_bool("ZENFOCUS_STUDY_MODE", base.study_mode),
        sensitivity=float(os.getenv("ZENFOCUS_SENSITIVITY", str(base.sensitivity))),
    )


def load_config_file(path: str | Path, base: EngineConfig | None = None) -> EngineConfig:
    """
    Load engine overrides from a YAML mapping, e.g.

        study_mode: false
        side_glance_grace_frames: 12
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p}")
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {p}")
    # Allow either a flat mapping or one nested under "engine:"
    if isinstance(data.get("engine"), dict):
        data = data["engine"]
    return (base or EngineConfig()).with_overrides(**data)


def load_config() -> ServiceConfig:
    state_dir = os.getenv("ZENFOCUS_STATE_DIR", os.path.expanduser("~/.zenfocus"))
    engine = load_engine_config()
    config_file = os.getenv("ZENFOCUS_CONFIG_FILE")
    if config_file:
        engine = load_config_file(config_file, base=engine)
    return ServiceConfig(
        state_dir=state_dir,
        host=os.getenv("ZENFOCUS_HOST", "0.0.0.0"),
        port=int(os.getenv("ZENFOCUS_PORT", "8000")),
        log_level=os.getenv("ZENFOCUS_LOG_LEVEL", "INFO"),
        log_file=os.getenv("ZENFOCUS_LOG_FILE"),
        engine=engine,
    )
