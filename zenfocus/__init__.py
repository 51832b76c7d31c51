from __future__ import annotations

__version__ = "0.1.0"

# Fixed enumeration order; the smoother breaks plurality ties with it.
STATES = ["FOCUSED", "DISTRACTED", "IDLE", "SLEEPING", "AWAY"]
ACTIVITIES = ["screen_work", "reading", "writing", "thinking", "distracted", "sleeping", "away"]