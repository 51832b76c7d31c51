from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
from typing import Callable, Iterable

from .models import FocusState

# Fixed enumeration order used to break plurality ties.
STATE_ORDER: tuple[FocusState, ...] = tuple(FocusState)


@dataclass(frozen=True)
class WindowCounts:
    counts: dict[FocusState, int]
    total: int

    def count(self, state: FocusState) -> int:
        return self.counts.get(state, 0)

    def fraction(self, state: FocusState) -> float:
        return self.count(state) / self.total if self.total else 0.0


Rule = tuple[Callable[[WindowCounts], bool], FocusState]

# Override chain, evaluated top to bottom. Sustained negative patterns win first,
# then any FOCUSED presence that is not outnumbered by DISTRACTED.
SMOOTHING_RULES: tuple[Rule, ...] = (
    (lambda w: w.total == 0, FocusState.IDLE),
    (lambda w: w.fraction(FocusState.SLEEPING) > 0.6, FocusState.SLEEPING),
    (lambda w: w.fraction(FocusState.AWAY) > 0.4, FocusState.AWAY),
    (lambda w: w.fraction(FocusState.DISTRACTED) > 0.5, FocusState.DISTRACTED),
    (
        lambda w: w.count(FocusState.FOCUSED) >= 1
        and w.count(FocusState.FOCUSED) >= w.count(FocusState.DISTRACTED),
        FocusState.FOCUSED,
    ),
)


def _plurality(window: WindowCounts) -> FocusState:
    best = STATE_ORDER[0]
    best_count = -1
    for state in STATE_ORDER:
        c = window.count(state)
        if c > best_count:
            best, best_count = state, c
    return best


def vote(states: Iterable[FocusState]) -> FocusState:
    """Debounced state for one window of raw instant states."""
    counter = Counter(FocusState(s) for s in states)
    window = WindowCounts(counts=dict(counter), total=sum(counter.values()))
    for predicate, result in SMOOTHING_RULES:
        if predicate(window):
            return result
    return _plurality(window)


class StateSmoother:
    def __init__(self, window_size: int = 15):
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.window_size = window_size
        self._window: deque[FocusState] = deque(maxlen=window_size)

    def __len__(self) -> int:
        return len(self._window)

    @property
    def window(self) -> list[FocusState]:
        return list(self._window)

    def push(self, state: FocusState) -> FocusState:
        self._window.append(FocusState(state))
        return self.vote()

    def vote(self) -> FocusState:
        return vote(self._window)

    def clear(self) -> None:
        self._window.clear()


def smooth_states(states: Iterable[FocusState], window_size: int = 15) -> list[FocusState]:
    smoother = StateSmoother(window_size)
    return [smoother.push(s) for s in states]
